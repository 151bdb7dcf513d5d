"""
Client HTTP de l'API Strava (requests).

Toute reponse non 2xx leve StravaAPIError, qui porte le statut, la requete
fautive, le corps tronque et les informations de rate-limit extraites des
en-tetes. Les erreurs de transport remontent en requests.RequestException.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

from weirdstats.core.settings import DEFAULT_STRAVA_AUTH_BASE_URL, DEFAULT_STRAVA_BASE_URL

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
MAX_ERROR_BODY = 2048
# Le token est renouvele une minute avant son expiration
TOKEN_REFRESH_MARGIN = 60


# ------------------------------------------------------------------
# Erreurs et rate-limit
# ------------------------------------------------------------------

@dataclass
class RateLimitInfo:
    limit_short: int = -1
    limit_long: int = -1
    usage_short: int = -1
    usage_long: int = -1
    retry_after: float = 0.0
    retry_at: Optional[datetime] = None
    retry_after_raw: str = ""

    def has_data(self) -> bool:
        return (
            self.limit_short >= 0 or self.limit_long >= 0
            or self.usage_short >= 0 or self.usage_long >= 0
            or self.retry_after > 0 or self.retry_at is not None or bool(self.retry_after_raw)
        )

    def __str__(self) -> str:
        if not self.has_data():
            return ""
        parts = ["rate-limit"]
        if self.usage_short >= 0 or self.limit_short >= 0:
            parts.append(f"short={_usage_limit(self.usage_short, self.limit_short)}")
        if self.usage_long >= 0 or self.limit_long >= 0:
            parts.append(f"long={_usage_limit(self.usage_long, self.limit_long)}")
        if self.retry_after > 0:
            parts.append(f"retry-after={int(self.retry_after)}s")
        elif self.retry_at is not None:
            parts.append(f"retry-at={self.retry_at.astimezone(timezone.utc).isoformat()}")
        elif self.retry_after_raw:
            parts.append(f"retry-after={self.retry_after_raw}")
        return " ".join(parts)


def _usage_limit(usage: int, limit: int) -> str:
    usage_text = str(usage) if usage >= 0 else "?"
    limit_text = str(limit) if limit >= 0 else "?"
    return f"{usage_text}/{limit_text}"


def _parse_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return -1


def _parse_pair(value: str) -> Tuple[int, int]:
    parts = value.split(",")
    short = _parse_int(parts[0]) if len(parts) > 0 else -1
    long = _parse_int(parts[1]) if len(parts) > 1 else -1
    return short, long


def parse_rate_limit(headers: Any) -> RateLimitInfo:
    """Extrait X-RateLimit-Limit / X-RateLimit-Usage / Retry-After des en-tetes."""
    info = RateLimitInfo()
    limit_header = headers.get("X-RateLimit-Limit")
    if limit_header:
        info.limit_short, info.limit_long = _parse_pair(limit_header)
    usage_header = headers.get("X-RateLimit-Usage")
    if usage_header:
        info.usage_short, info.usage_long = _parse_pair(usage_header)

    retry_after = (headers.get("Retry-After") or "").strip()
    if retry_after:
        info.retry_after_raw = retry_after
        seconds = _parse_int(retry_after)
        if seconds > 0:
            info.retry_after = float(seconds)
        elif seconds < 0:
            try:
                retry_at = parsedate_to_datetime(retry_after)
            except (TypeError, ValueError):
                retry_at = None
            if retry_at is not None and retry_at.tzinfo is None:
                retry_at = retry_at.replace(tzinfo=timezone.utc)
            info.retry_at = retry_at
    return info


class StravaAPIError(Exception):
    """Reponse non 2xx de l'API Strava."""

    def __init__(
        self,
        status_code: int,
        body: str = "",
        method: str = "",
        path: str = "",
        request_id: str = "",
        rate_limit: Optional[RateLimitInfo] = None,
    ):
        self.status_code = status_code
        self.body = body[:MAX_ERROR_BODY]
        self.method = method
        self.path = path
        self.request_id = request_id
        self.rate_limit = rate_limit or RateLimitInfo()
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"strava error {self.status_code}"
        target = " ".join(part for part in (self.method, self.path) if part)
        if target:
            text += f" {target}"
        if self.body.strip():
            text += f": {self.body.strip()}"
        rate_limit = str(self.rate_limit)
        if rate_limit:
            text += f" ({rate_limit})"
        if self.request_id:
            text += f" request_id={self.request_id}"
        return text


def is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, StravaAPIError) and exc.status_code == 429


def rate_limit_backoff(exc: BaseException) -> Optional[float]:
    """Delai annonce par l'amont (Retry-After), None s'il n'y en a pas."""
    if not isinstance(exc, StravaAPIError) or not exc.rate_limit.has_data():
        return None
    if exc.rate_limit.retry_after > 0:
        return exc.rate_limit.retry_after
    if exc.rate_limit.retry_at is not None:
        wait = (exc.rate_limit.retry_at - datetime.now(timezone.utc)).total_seconds()
        if wait > 0:
            return wait
    return None


# ------------------------------------------------------------------
# Tokens
# ------------------------------------------------------------------

class TokenSource(Protocol):
    def get_access_token(self) -> str:
        ...


class StaticTokenSource:
    def __init__(self, token: str):
        self.token = token

    def get_access_token(self) -> str:
        return self.token


class RefreshTokenSource:
    """Renouvelle le token d'acces via le refresh token, et garde le refresh token tourne."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        auth_base_url: str = DEFAULT_STRAVA_AUTH_BASE_URL,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.auth_base_url = (auth_base_url or DEFAULT_STRAVA_AUTH_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self._access_token = ""
        self._expires_at = 0
        self._lock = threading.Lock()

    def get_access_token(self) -> str:
        with self._lock:
            if self._access_token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN:
                return self._access_token
            self._refresh()
            return self._access_token

    def _refresh(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ValueError("missing strava client credentials")
        if not self.refresh_token:
            raise ValueError("missing refresh token")

        logger.info("Rafraichissement du token Strava")
        response = self.session.post(
            f"{self.auth_base_url}/oauth/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
            },
            timeout=REQUEST_TIMEOUT,
        )
        if not 200 <= response.status_code < 300:
            raise StravaAPIError(
                response.status_code,
                body=response.text,
                method="POST",
                path="/oauth/token",
                rate_limit=parse_rate_limit(response.headers),
            )

        payload = response.json()
        if not payload.get("access_token"):
            raise ValueError("refresh response missing access_token")
        self._access_token = payload["access_token"]
        self._expires_at = int(payload.get("expires_at") or 0)
        if payload.get("refresh_token"):
            self.refresh_token = payload["refresh_token"]


# ------------------------------------------------------------------
# Modeles
# ------------------------------------------------------------------

@dataclass
class ActivityDetail:
    id: int
    name: str
    type: str
    start_date: datetime
    description: str = ""
    distance: float = 0.0
    moving_time: int = 0
    average_power: float = 0.0
    average_heartrate: float = 0.0
    visibility: str = ""
    private: bool = False
    hide_from_home: bool = False


@dataclass
class ActivitySummary:
    id: int
    name: str
    type: str
    start_date: datetime


@dataclass
class StreamSet:
    latlng: List[Tuple[float, float]] = field(default_factory=list)
    time_offsets_sec: List[int] = field(default_factory=list)
    velocity_smooth: List[float] = field(default_factory=list)


def parse_strava_datetime(value: str) -> datetime:
    """ISO-8601 Strava ('2024-01-01T10:00:00Z') vers datetime naive UTC."""
    if not value:
        raise ValueError("missing start_date")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------

class StravaClient:
    """Acces en lecture aux activites et streams Strava."""

    def __init__(
        self,
        base_url: str = DEFAULT_STRAVA_BASE_URL,
        token_source: Optional[TokenSource] = None,
        session: Optional[requests.Session] = None,
        timeout: int = REQUEST_TIMEOUT,
        quota_tracker: Optional[Any] = None,
    ):
        self.base_url = (base_url or DEFAULT_STRAVA_BASE_URL).rstrip("/")
        self.token_source = token_source
        self.session = session or requests.Session()
        self.timeout = timeout
        self.quota_tracker = quota_tracker

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self.quota_tracker is not None:
            wait = self.quota_tracker.seconds_until_available()
            if wait > 0:
                raise StravaAPIError(
                    429,
                    body="local quota exhausted",
                    method="GET",
                    path=path,
                    rate_limit=RateLimitInfo(retry_after=float(wait)),
                )

        headers = {"Accept": "application/json"}
        if self.token_source is not None:
            token = self.token_source.get_access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"Strava GET {path} params={params}")
        response = self.session.get(
            f"{self.base_url}{path}",
            params=params,
            headers=headers,
            timeout=self.timeout,
        )
        rate_limit = parse_rate_limit(response.headers)
        if self.quota_tracker is not None:
            self.quota_tracker.record(rate_limit)

        if not 200 <= response.status_code < 300:
            request_id = response.headers.get("X-Request-Id") or response.headers.get("X-Request-ID") or ""
            error = StravaAPIError(
                response.status_code,
                body=response.text or "",
                method="GET",
                path=path,
                request_id=request_id,
                rate_limit=rate_limit,
            )
            logger.warning(str(error))
            raise error

        return response.json()

    def get_activity(self, activity_id: int) -> ActivityDetail:
        payload = self._get_json(f"/activities/{activity_id}")
        return ActivityDetail(
            id=int(payload["id"]),
            name=payload.get("name") or "",
            type=payload.get("type") or "",
            start_date=parse_strava_datetime(payload.get("start_date") or ""),
            description=payload.get("description") or "",
            distance=float(payload.get("distance") or 0.0),
            moving_time=int(payload.get("moving_time") or 0),
            average_power=float(payload.get("average_watts") or 0.0),
            average_heartrate=float(payload.get("average_heartrate") or 0.0),
            visibility=payload.get("visibility") or "",
            private=bool(payload.get("private")),
            hide_from_home=bool(payload.get("hide_from_home")),
        )

    def get_streams(self, activity_id: int) -> StreamSet:
        payload = self._get_json(
            f"/activities/{activity_id}/streams",
            params={"keys": "latlng,time,velocity_smooth", "key_by_type": "true"},
        )

        def _data(key: str) -> List[Any]:
            stream = payload.get(key) if isinstance(payload, dict) else None
            return (stream or {}).get("data") or []

        streams = StreamSet()
        for entry in _data("latlng"):
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise ValueError(f"malformed latlng entry: {entry!r}")
            streams.latlng.append((float(entry[0]), float(entry[1])))
        streams.time_offsets_sec = [int(value) for value in _data("time")]
        streams.velocity_smooth = [float(value) for value in _data("velocity_smooth")]
        return streams

    def list_activities(
        self,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        page: int = 0,
        per_page: int = 0,
    ) -> List[ActivitySummary]:
        """Activites de l'athlete, plus recentes d'abord. `after`/`before` en UTC."""
        params: Dict[str, Any] = {}
        if after is not None:
            params["after"] = _to_unix(after)
        if before is not None:
            params["before"] = _to_unix(before)
        if page > 0:
            params["page"] = page
        if per_page > 0:
            params["per_page"] = per_page

        payload = self._get_json("/athlete/activities", params=params)
        return [
            ActivitySummary(
                id=int(item["id"]),
                name=item.get("name") or "",
                type=item.get("type") or "",
                start_date=parse_strava_datetime(item.get("start_date") or ""),
            )
            for item in payload or []
        ]


def _to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def build_token_source(settings: Any) -> Optional[TokenSource]:
    """Refresh token si les identifiants sont fournis, sinon token statique."""
    if settings.STRAVA_REFRESH_TOKEN and settings.STRAVA_CLIENT_ID and settings.STRAVA_CLIENT_SECRET:
        return RefreshTokenSource(
            client_id=settings.STRAVA_CLIENT_ID,
            client_secret=settings.STRAVA_CLIENT_SECRET,
            refresh_token=settings.STRAVA_REFRESH_TOKEN,
            auth_base_url=settings.STRAVA_AUTH_BASE_URL,
        )
    if settings.STRAVA_ACCESS_TOKEN:
        return StaticTokenSource(settings.STRAVA_ACCESS_TOKEN)
    return None
