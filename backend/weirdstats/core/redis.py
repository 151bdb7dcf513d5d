"""
Connexion Redis de weirdstats.

Redis ne porte que les compteurs de quota Strava (StravaQuotaTracker) :
il est optionnel. Sans REDIS_URL, ou si le serveur ne repond pas, le
tracker fonctionne en fail-open et /health passe en "degraded".
"""
import logging
from functools import lru_cache
from typing import Optional

import redis

from weirdstats.core.settings import get_settings

logger = logging.getLogger(__name__)

# Un Redis absent ne doit pas bloquer une requete Strava ni /health
SOCKET_TIMEOUT_SECONDS = 2.0


@lru_cache()
def _client_for(url: str) -> redis.Redis:
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
    )


def get_redis_client(url: Optional[str] = None) -> redis.Redis:
    """Client partage pour `url` (REDIS_URL par defaut), un par URL."""
    return _client_for(url or get_settings().REDIS_URL)


def check_redis_health(url: Optional[str] = None) -> bool:
    """True si Redis repond a un PING ; False s'il n'est pas configure ou injoignable."""
    url = url if url is not None else get_settings().REDIS_URL
    if not url:
        return False
    try:
        return bool(get_redis_client(url).ping())
    except redis.RedisError as exc:
        logger.warning(f"Redis health check echoue, quotas Strava en fail-open: {exc}")
        return False
