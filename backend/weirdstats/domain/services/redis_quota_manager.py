"""
StravaQuotaTracker : suivi des quotas API Strava dans Redis.

Strava renvoie l'usage courant dans ses en-tetes (X-RateLimit-Usage /
X-RateLimit-Limit, "court,long"). On recopie ces valeurs dans deux cles :
  - strava:quota:15min   → usage de la fenetre de 15 min (TTL = 900 s)
  - strava:quota:daily   → usage journalier (TTL = secondes jusqu'a minuit UTC)

Avant chaque requete, le client demande `seconds_until_available()` ; si une
fenetre est epuisee il leve un 429 local sans consommer d'appel. Redis est
optionnel : toute erreur Redis est loggee puis ignoree (fail-open).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import redis

from weirdstats.core.redis import get_redis_client

logger = logging.getLogger(__name__)

DAILY_KEY = "strava:quota:daily"
SHORT_KEY = "strava:quota:15min"

SHORT_WINDOW_SECONDS = 900

# Limites par defaut, remplacees par celles annoncees dans X-RateLimit-Limit
DAILY_LIMIT = 1000
PER_15MIN_LIMIT = 100


def _seconds_until_midnight_utc() -> int:
    """Nombre de secondes restantes jusqu'au prochain minuit UTC (au minimum 1)."""
    now = datetime.now(timezone.utc)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(int((midnight - now).total_seconds()), 1)


class StravaQuotaTracker:
    """Compteurs de quota Strava partages entre processus via Redis."""

    def __init__(self, redis_client: redis.Redis | None = None):
        self._redis: redis.Redis | None = redis_client
        self.daily_limit = DAILY_LIMIT
        self.per_15min_limit = PER_15MIN_LIMIT

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    def _safe_get(self, key: str) -> int:
        """Lit un compteur ; 0 si la cle n'existe pas ou si Redis est down."""
        try:
            val = self._get_redis().get(key)
            return int(val) if val is not None else 0
        except redis.RedisError as exc:
            logger.warning(f"Redis indisponible (lecture {key}): {exc}")
            return 0

    def _safe_ttl(self, key: str) -> int:
        try:
            return self._get_redis().ttl(key)
        except redis.RedisError as exc:
            logger.warning(f"Redis indisponible (ttl {key}): {exc}")
            return -2

    def _safe_set(self, key: str, value: int, ttl: int) -> None:
        """Ecrit la valeur en conservant le TTL existant de la fenetre, sinon pose `ttl`."""
        try:
            r = self._get_redis()
            current_ttl = r.ttl(key)
            r.set(key, value)
            r.expire(key, current_ttl if current_ttl and current_ttl > 0 else ttl)
        except redis.RedisError as exc:
            logger.warning(f"Redis indisponible (set {key}): {exc}")

    def _safe_incr(self, key: str, ttl: int) -> int:
        """Incremente un compteur, TTL pose a la creation ou si la cle est orpheline."""
        try:
            r = self._get_redis()
            new_val = r.incr(key)
            if new_val == 1 or r.ttl(key) == -1:
                r.expire(key, ttl)
            return new_val
        except redis.RedisError as exc:
            logger.warning(f"Redis indisponible (incr {key}): {exc}")
            return 0

    # ------------------------------------------------------------------
    # Interface publique
    # ------------------------------------------------------------------

    def record(self, rate_limit: Any) -> None:
        """
        Enregistre l'usage rapporte par Strava (RateLimitInfo). Sans en-tete
        d'usage, incremente simplement les compteurs locaux.
        """
        if rate_limit.limit_short > 0:
            self.per_15min_limit = rate_limit.limit_short
        if rate_limit.limit_long > 0:
            self.daily_limit = rate_limit.limit_long

        if rate_limit.usage_short < 0 and rate_limit.usage_long < 0:
            self.increment_usage()
            return
        if rate_limit.usage_short >= 0:
            self._safe_set(SHORT_KEY, rate_limit.usage_short, SHORT_WINDOW_SECONDS)
        if rate_limit.usage_long >= 0:
            self._safe_set(DAILY_KEY, rate_limit.usage_long, _seconds_until_midnight_utc())

    def increment_usage(self) -> None:
        self._safe_incr(DAILY_KEY, _seconds_until_midnight_utc())
        self._safe_incr(SHORT_KEY, SHORT_WINDOW_SECONDS)

    def seconds_until_available(self) -> int:
        """0 si un appel est possible, sinon le TTL restant de la fenetre epuisee."""
        if self._safe_get(DAILY_KEY) >= self.daily_limit:
            ttl = self._safe_ttl(DAILY_KEY)
            wait = ttl if ttl > 0 else _seconds_until_midnight_utc()
            logger.warning(f"Quota journalier Strava atteint, reprise dans {wait}s")
            return wait
        if self._safe_get(SHORT_KEY) >= self.per_15min_limit:
            ttl = self._safe_ttl(SHORT_KEY)
            wait = ttl if ttl > 0 else SHORT_WINDOW_SECONDS
            logger.info(f"Quota 15min Strava atteint, reprise dans {wait}s")
            return wait
        return 0

    def get_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        daily_ttl = self._safe_ttl(DAILY_KEY)
        short_ttl = self._safe_ttl(SHORT_KEY)

        return {
            "daily_used": self._safe_get(DAILY_KEY),
            "daily_limit": self.daily_limit,
            "per_15min_used": self._safe_get(SHORT_KEY),
            "per_15min_limit": self.per_15min_limit,
            "next_15min_reset": (now + timedelta(seconds=short_ttl)).isoformat() if short_ttl > 0 else None,
            "daily_reset": (now + timedelta(seconds=daily_ttl)).isoformat() if daily_ttl > 0 else None,
        }


def build_quota_tracker(redis_url: Optional[str]) -> Optional[StravaQuotaTracker]:
    """Tracker partage sur `redis_url`, ou None si aucun Redis n'est configure."""
    if not redis_url:
        return None
    return StravaQuotaTracker(get_redis_client(redis_url))
