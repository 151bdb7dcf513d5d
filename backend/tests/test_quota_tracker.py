"""
Tests pour le suivi des quotas Strava dans Redis (client Redis mocke).
"""
import redis
from unittest.mock import MagicMock, patch

from weirdstats.core.redis import check_redis_health, get_redis_client
from weirdstats.domain.services.redis_quota_manager import (
    DAILY_KEY,
    SHORT_KEY,
    SHORT_WINDOW_SECONDS,
    StravaQuotaTracker,
    build_quota_tracker,
)
from weirdstats.domain.services.strava_client import RateLimitInfo


def _redis(values=None, ttls=None):
    values = values or {}
    ttls = ttls or {}
    client = MagicMock()
    client.get.side_effect = lambda key: values.get(key)
    client.ttl.side_effect = lambda key: ttls.get(key, -2)
    client.incr.return_value = 1
    return client


# ============================================================
# Disponibilite
# ============================================================

class TestSecondsUntilAvailable:
    def test_available(self):
        tracker = StravaQuotaTracker(_redis({DAILY_KEY: "10", SHORT_KEY: "5"}))
        assert tracker.seconds_until_available() == 0

    def test_short_window_exhausted(self):
        tracker = StravaQuotaTracker(_redis({DAILY_KEY: "10", SHORT_KEY: "100"}, {SHORT_KEY: 420}))
        assert tracker.seconds_until_available() == 420

    def test_short_window_without_ttl(self):
        tracker = StravaQuotaTracker(_redis({SHORT_KEY: "100"}))
        assert tracker.seconds_until_available() == SHORT_WINDOW_SECONDS

    def test_daily_window_exhausted(self):
        tracker = StravaQuotaTracker(_redis({DAILY_KEY: "1000"}, {DAILY_KEY: 3600}))
        assert tracker.seconds_until_available() == 3600

    def test_redis_down_fails_open(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        assert StravaQuotaTracker(client).seconds_until_available() == 0


# ============================================================
# Enregistrement
# ============================================================

class TestRecord:
    def test_usage_headers_are_copied(self):
        client = _redis(ttls={SHORT_KEY: 300})
        tracker = StravaQuotaTracker(client)
        tracker.record(RateLimitInfo(limit_short=200, limit_long=2000, usage_short=12, usage_long=340))

        assert tracker.per_15min_limit == 200
        assert tracker.daily_limit == 2000
        client.set.assert_any_call(SHORT_KEY, 12)
        client.set.assert_any_call(DAILY_KEY, 340)
        # le TTL existant de la fenetre 15 min est conserve
        client.expire.assert_any_call(SHORT_KEY, 300)

    def test_without_headers_increments(self):
        client = _redis()
        StravaQuotaTracker(client).record(RateLimitInfo())
        client.incr.assert_any_call(DAILY_KEY)
        client.incr.assert_any_call(SHORT_KEY)
        client.expire.assert_any_call(SHORT_KEY, SHORT_WINDOW_SECONDS)

    def test_redis_errors_are_ignored(self):
        client = MagicMock()
        client.incr.side_effect = redis.ConnectionError("down")
        client.ttl.side_effect = redis.ConnectionError("down")
        tracker = StravaQuotaTracker(client)
        tracker.record(RateLimitInfo())
        tracker.record(RateLimitInfo(usage_short=1, usage_long=1))


class TestStatus:
    def test_status(self):
        tracker = StravaQuotaTracker(_redis({DAILY_KEY: "50", SHORT_KEY: "7"}, {SHORT_KEY: 60}))
        status = tracker.get_status()
        assert status["daily_used"] == 50
        assert status["per_15min_used"] == 7
        assert status["per_15min_limit"] == 100
        assert status["next_15min_reset"] is not None
        assert status["daily_reset"] is None

    def test_build_without_url(self):
        assert build_quota_tracker("") is None
        assert isinstance(build_quota_tracker("redis://localhost:6379"), StravaQuotaTracker)

    def test_build_uses_given_url(self):
        tracker = build_quota_tracker("redis://quota-host:6390/2")
        kwargs = tracker._redis.connection_pool.connection_kwargs
        assert kwargs["host"] == "quota-host"
        assert kwargs["port"] == 6390
        assert kwargs["db"] == 2


# ============================================================
# Connexion Redis
# ============================================================

class TestRedisConnection:
    def test_client_is_shared_per_url(self):
        first = get_redis_client("redis://shared-a:6379")
        assert get_redis_client("redis://shared-a:6379") is first
        assert get_redis_client("redis://shared-b:6379") is not first

    def test_health_without_url(self):
        with patch("weirdstats.core.redis.get_redis_client") as get_client:
            assert check_redis_health("") is False
        get_client.assert_not_called()

    def test_health_ping(self):
        client = MagicMock()
        client.ping.return_value = True
        with patch("weirdstats.core.redis.get_redis_client", return_value=client):
            assert check_redis_health("redis://localhost:6379") is True

    def test_health_unreachable(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        with patch("weirdstats.core.redis.get_redis_client", return_value=client):
            assert check_redis_health("redis://localhost:6379") is False
