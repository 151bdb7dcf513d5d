"""
Client Overpass (OpenStreetMap) : feux de circulation et routes autour d'un point.

Les requetes sont envoyees en GET (?data=...) avec retry et backoff
exponentiel sur les erreurs transitoires (429/502/503/504, timeouts,
coupures reseau). Les miroirs configures sont utilises a tour de role,
une tentative par miroir. Les reponses sont mises en cache en memoire
par texte de requete ; les entrees expirees sont purgees a la lecture
comme a l'ecriture et le cache est borne a `cache_max_entries`.
"""
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from weirdstats.domain.gps.types import LatLon, Road
from weirdstats.domain.services.map_features import Feature, FeatureType

logger = logging.getLogger(__name__)

DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"
DEFAULT_TIMEOUT = 15
DEFAULT_CACHE_TTL = timedelta(hours=24)
DEFAULT_CACHE_MAX_ENTRIES = 4096
DEFAULT_MAX_ATTEMPTS = 5
RETRYABLE_STATUSES = {429, 502, 503, 504}
MAX_ERROR_BODY = 512

# Rayon de recherche des feux autour d'un arret (metres)
TRAFFIC_LIGHT_RADIUS_M = 40


class OverpassError(Exception):
    """Echec d'une requete Overpass (statut non 200 ou reseau)."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class OverpassClient:

    def __init__(
        self,
        base_url: str = "",
        mirror_urls: Sequence[str] = (),
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: timedelta = DEFAULT_CACHE_TTL,
        disable_cache: bool = False,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = 1.0,
        session: Optional[requests.Session] = None,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url
        self.mirror_urls = [url for url in mirror_urls if url]
        self.timeout = timeout if timeout > 0 else DEFAULT_TIMEOUT
        self.cache_ttl = cache_ttl
        self.disable_cache = disable_cache
        self.max_attempts = max_attempts if max_attempts > 0 else DEFAULT_MAX_ATTEMPTS
        self.backoff_base = backoff_base if backoff_base > 0 else 1.0
        self.session = session or requests.Session()
        self.cache_max_entries = cache_max_entries if cache_max_entries > 0 else DEFAULT_CACHE_MAX_ENTRIES
        self.clock = clock

        # requete -> (expiration monotonic, elements), dans l'ordre d'insertion
        self._cache: Dict[str, tuple] = {}
        self._lock = threading.Lock()
        # Permet d'interrompre un backoff en cours (arret du worker)
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Requetes metier
    # ------------------------------------------------------------------

    def nearby_features(self, lat: float, lon: float) -> List[Feature]:
        """Feux de circulation a moins de 40 m du point."""
        query = (
            "[out:json][timeout:25];\n"
            "(\n"
            f"  node(around:{TRAFFIC_LIGHT_RADIUS_M},{lat:.6f},{lon:.6f})[\"highway\"=\"traffic_signals\"];\n"
            ");\n"
            "out body;"
        )
        features = []
        for element in self._fetch(query):
            tags = element.get("tags") or {}
            if tags.get("highway") == "traffic_signals":
                features.append(Feature(type=FeatureType.TRAFFIC_LIGHT.value, name=tags.get("name", "")))
        return features

    def fetch_nearby_roads(self, lat: float, lon: float, radius_m: int) -> List[Road]:
        """Routes (ways `highway`) dans le rayon, avec leur geometrie."""
        query = (
            "[out:json][timeout:25];\n"
            "(\n"
            f"  way(around:{radius_m},{lat:.6f},{lon:.6f})[\"highway\"];\n"
            ");\n"
            "out geom;"
        )
        roads = []
        for element in self._fetch(query):
            geometry = element.get("geometry") or []
            if element.get("type") != "way" or len(geometry) < 2:
                continue
            tags = element.get("tags") or {}
            roads.append(Road(
                id=int(element.get("id") or 0),
                name=tags.get("name", ""),
                highway=tags.get("highway", ""),
                geometry=[LatLon(lat=float(node["lat"]), lon=float(node["lon"])) for node in geometry],
            ))
        return roads

    def close(self) -> None:
        """Interrompt les backoffs en cours."""
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Mecanique HTTP
    # ------------------------------------------------------------------

    def _endpoints(self) -> List[str]:
        if self.mirror_urls:
            return self.mirror_urls
        if self.base_url:
            return [self.base_url]
        return [DEFAULT_OVERPASS_URL]

    def _cache_enabled(self) -> bool:
        return not self.disable_cache and self.cache_ttl.total_seconds() > 0

    def _cache_get(self, query: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            cached = self._cache.get(query)
            if cached is None:
                return None
            if cached[0] <= self.clock():
                del self._cache[query]
                return None
            return cached[1]

    def _cache_put(self, query: str, elements: List[Dict[str, Any]]) -> None:
        now = self.clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._cache.items() if expires_at <= now]
            for key in expired:
                del self._cache[key]
            self._cache.pop(query, None)
            # les entrees les plus anciennes sortent en premier
            while len(self._cache) >= self.cache_max_entries:
                del self._cache[next(iter(self._cache))]
            self._cache[query] = (now + self.cache_ttl.total_seconds(), elements)
        if expired:
            logger.debug(f"Cache Overpass: {len(expired)} entrees expirees purgees")

    def _fetch(self, query: str) -> List[Dict[str, Any]]:
        if self._cache_enabled():
            cached = self._cache_get(query)
            if cached is not None:
                return cached

        elements = self._run_with_retry(query)

        if self._cache_enabled():
            self._cache_put(query, elements)
        return elements

    def _run_with_retry(self, query: str) -> List[Dict[str, Any]]:
        endpoints = self._endpoints()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            endpoint = endpoints[attempt % len(endpoints)]
            try:
                return self._run_once(endpoint, query)
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc
                retryable = True
            except OverpassError as exc:
                last_error = exc
                retryable = exc.status_code in RETRYABLE_STATUSES

            if not retryable or attempt == self.max_attempts - 1:
                break
            delay = self.backoff_base * (2 ** attempt)
            logger.warning(
                f"Overpass indisponible ({endpoint}, tentative {attempt + 1}/{self.max_attempts}): "
                f"{last_error}, retry dans {delay:.1f}s"
            )
            if self._stop_event.wait(delay):
                break

        if isinstance(last_error, OverpassError):
            raise last_error
        raise OverpassError(f"overpass request failed: {last_error}") from last_error

    def _run_once(self, endpoint: str, query: str) -> List[Dict[str, Any]]:
        response = self.session.get(
            endpoint,
            params={"data": query},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        if response.status_code != 200:
            body = (response.text or "")[:MAX_ERROR_BODY].strip()
            raise OverpassError(f"overpass status {response.status_code}: {body}", status_code=response.status_code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise OverpassError(f"invalid overpass response: {exc}", status_code=response.status_code) from exc
        return payload.get("elements") or []


def build_overpass_client(settings: Any) -> OverpassClient:
    cache_hours = settings.OVERPASS_CACHE_HOURS
    return OverpassClient(
        base_url=settings.OVERPASS_URL,
        mirror_urls=settings.overpass_urls,
        timeout=settings.OVERPASS_TIMEOUT_SECONDS,
        cache_ttl=timedelta(hours=max(cache_hours, 0)),
        disable_cache=cache_hours <= 0,
    )
