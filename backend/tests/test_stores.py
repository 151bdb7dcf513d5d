"""
Tests pour les stores SQLModel : activites, queue et jobs.
"""
import pytest
from unittest.mock import patch
from datetime import datetime, timedelta

from weirdstats.domain.entities import Activity, ActivityStats, ActivityStop, HideRule, JobStatus
from weirdstats.domain.gps import Point
from weirdstats.domain.services.activity_store import ActivityStore
from weirdstats.domain.services.queue_store import entry_retry_delay

T0 = datetime(2024, 5, 1, 8, 0, 0)


def _activity(activity_id=42, **overrides):
    fields = dict(id=activity_id, user_id=1, type="Ride", name="Morning Ride", start_time=T0, distance=12000.0)
    fields.update(overrides)
    return Activity(**fields)


def _points(count, start=T0):
    return [
        Point(lat=48.0 + i * 0.0001, lon=2.0, time=start + timedelta(seconds=i), speed=float(i))
        for i in range(count)
    ]


# ============================================================
# ActivityStore
# ============================================================

class TestActivityStore:
    def test_upsert_and_load_points_in_order(self, activity_store):
        activity_store.upsert_activity(_activity(), _points(3))
        points = activity_store.load_activity_points(42)
        assert [p.speed for p in points] == [0.0, 1.0, 2.0]
        assert points[0].time == T0
        assert activity_store.count_activity_points(42) == 3

    def test_points_are_replaced(self, activity_store):
        activity_store.upsert_activity(_activity(), _points(5))
        activity_store.upsert_activity(_activity(), _points(2))
        assert activity_store.count_activity_points(42) == 2

    def test_upsert_without_points_keeps_existing(self, activity_store):
        activity_store.upsert_activity(_activity(), _points(4))
        activity_store.upsert_activity(_activity(name="Renamed"))
        assert activity_store.count_activity_points(42) == 4
        assert activity_store.get_activity(42).name == "Renamed"

    def test_upsert_preserves_hidden_by_rule(self, activity_store):
        activity_store.upsert_activity(_activity())
        activity_store.update_activity_hidden_by_rule(42, True)
        activity_store.upsert_activity(_activity(name="Update from Strava"))
        assert activity_store.get_activity(42).hidden_by_rule is True

    def test_naive_utc_datetimes_round_trip(self, activity_store, job_store):
        activity_store.upsert_activity(_activity())
        stored = activity_store.get_activity(42)
        assert stored.start_time == T0
        assert stored.start_time.tzinfo is None
        assert stored.updated_at.tzinfo is None

        job = job_store.get_job(job_store.create_job("a", "{}", next_run_at=T0))
        assert job.next_run_at == T0

    def test_upsert_requires_id(self, activity_store):
        with pytest.raises(ValueError):
            activity_store.upsert_activity(Activity(start_time=T0))

    def test_has_activity(self, activity_store):
        assert not activity_store.has_activity(42)
        activity_store.upsert_activity(_activity())
        assert activity_store.has_activity(42)

    def test_update_hidden_on_missing_activity_is_noop(self, activity_store):
        activity_store.update_activity_hidden_by_rule(999, True)
        assert activity_store.get_activity(999) is None

    def test_recent_average_heartrates(self, activity_store):
        activity_store.upsert_activity(_activity(1, start_time=T0 - timedelta(days=3), average_heartrate=130))
        activity_store.upsert_activity(_activity(2, start_time=T0 - timedelta(days=2), average_heartrate=0))
        activity_store.upsert_activity(_activity(3, start_time=T0 - timedelta(days=1), average_heartrate=150))
        activity_store.upsert_activity(_activity(4, start_time=T0 + timedelta(days=1), average_heartrate=170))
        activity_store.upsert_activity(_activity(5, user_id=2, start_time=T0 - timedelta(days=1), average_heartrate=110))

        assert activity_store.list_recent_average_heartrates(1, T0, 10) == [150, 130]
        assert activity_store.list_recent_average_heartrates(1, T0, 1) == [150]

    def test_stats_upsert(self, activity_store):
        activity_store.upsert_activity_stats(ActivityStats(activity_id=42, stop_count=3))
        activity_store.upsert_activity_stats(ActivityStats(activity_id=42, stop_count=1, road_crossing_count=1))
        stats = activity_store.get_activity_stats(42)
        assert stats.stop_count == 1
        assert stats.road_crossing_count == 1

    def test_stops_are_replaced(self, activity_store):
        first = [
            ActivityStop(activity_id=42, seq=i, lat=0, lon=0, start_seconds=i * 10, duration_seconds=60)
            for i in range(3)
        ]
        activity_store.replace_activity_analysis(ActivityStats(activity_id=42, stop_count=3), first)
        activity_store.replace_activity_analysis(ActivityStats(activity_id=42, stop_count=1), [
            ActivityStop(activity_id=42, seq=0, lat=1, lon=1, start_seconds=5, duration_seconds=90),
        ])
        stops = activity_store.load_activity_stops(42)
        assert len(stops) == 1
        assert stops[0].duration_seconds == 90
        assert activity_store.get_activity_stats(42).stop_count == 1

    def test_failed_stop_write_rolls_back_stats(self, activity_store):
        old_stops = [
            ActivityStop(activity_id=42, seq=i, lat=0, lon=0, start_seconds=i * 10, duration_seconds=60)
            for i in range(9)
        ]
        activity_store.replace_activity_analysis(ActivityStats(activity_id=42, stop_count=9), old_stops)

        with patch.object(ActivityStore, "_write_stops", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                activity_store.replace_activity_analysis(ActivityStats(activity_id=42, stop_count=1), [])

        assert activity_store.get_activity_stats(42).stop_count == 9
        assert len(activity_store.load_activity_stops(42)) == 9

    def test_hide_rule_crud(self, activity_store):
        created = activity_store.create_hide_rule(HideRule(user_id=1, name="a", condition="{}"))
        assert created.id is not None
        created.name = "b"
        created.enabled = False
        updated = activity_store.update_hide_rule(created)
        assert updated.name == "b"
        assert updated.enabled is False
        assert [r.id for r in activity_store.list_hide_rules(1)] == [created.id]
        assert activity_store.list_hide_rules(2) == []
        assert activity_store.delete_hide_rule(created.id)
        assert not activity_store.delete_hide_rule(created.id)

    def test_update_missing_rule(self, activity_store):
        with pytest.raises(LookupError):
            activity_store.update_hide_rule(HideRule(id=123, user_id=1, condition="{}"))


# ============================================================
# QueueStore
# ============================================================

class TestQueueStore:
    def test_fifo(self, queue_store):
        first = queue_store.enqueue_activity(10)
        queue_store.enqueue_activity(20)
        assert queue_store.dequeue_activity() == (first, 10)
        # dequeue ne consomme pas l'entree
        assert queue_store.dequeue_activity() == (first, 10)
        queue_store.mark_processed(first)
        assert queue_store.dequeue_activity()[1] == 20

    def test_empty(self, queue_store):
        assert queue_store.dequeue_activity() is None
        assert queue_store.pending_count() == 0

    def test_same_activity_can_be_enqueued_twice(self, queue_store):
        queue_store.enqueue_activity(10)
        queue_store.enqueue_activity(10)
        assert queue_store.pending_count() == 2

    def test_queue_status(self, queue_store):
        first = queue_store.enqueue_activity(10)
        queue_store.enqueue_activity(20)
        queue_store.mark_processed(first)
        status = queue_store.get_queue_status()
        assert status["pending"] == 1
        assert status["processed"] == 1
        assert status["oldest_pending_at"] is not None

    def test_mark_missing_entry(self, queue_store):
        queue_store.mark_processed(999)
        assert queue_store.mark_failed(999, "boom") is None
        assert queue_store.pending_count() == 0

    def test_failed_entry_is_deferred_with_backoff(self, queue_store):
        now = datetime(2024, 6, 1, 12, 0, 0)
        failing = queue_store.enqueue_activity(10)
        queue_store.enqueue_activity(20)

        assert queue_store.mark_failed(failing, "404", now=now) == now + timedelta(seconds=30)
        assert queue_store.dequeue_activity(now)[1] == 20
        assert queue_store.dequeue_activity(now + timedelta(seconds=30)) == (failing, 10)

        assert queue_store.mark_failed(failing, "404", now=now) == now + timedelta(seconds=60)
        assert queue_store.pending_count() == 2

    def test_entry_retry_delay_is_capped(self):
        assert entry_retry_delay(1) == timedelta(seconds=30)
        assert entry_retry_delay(3) == timedelta(minutes=2)
        assert entry_retry_delay(100) == timedelta(minutes=10)


# ============================================================
# JobStore
# ============================================================

class TestJobStore:
    def test_claim_marks_running_and_counts_attempts(self, job_store):
        job_id = job_store.create_job("sync_latest", "{}")
        job = job_store.claim_job()
        assert job.id == job_id
        assert job.status == JobStatus.RUNNING
        assert job.attempts == 1
        # deja reclame : plus rien a prendre
        assert job_store.claim_job() is None

    def test_claim_respects_next_run_at(self, job_store):
        now = datetime.utcnow()
        job_store.create_job("sync_latest", "{}", next_run_at=now + timedelta(minutes=5))
        assert job_store.claim_job(now) is None
        assert job_store.claim_job(now + timedelta(minutes=6)) is not None

    def test_claim_orders_by_next_run_at(self, job_store):
        now = datetime.utcnow()
        later = job_store.create_job("b", "{}", next_run_at=now - timedelta(seconds=10))
        sooner = job_store.create_job("a", "{}", next_run_at=now - timedelta(seconds=60))
        assert job_store.claim_job(now).id == sooner
        assert job_store.claim_job(now).id == later

    def test_stale_running_job_is_reclaimed(self, job_store):
        job_store.create_job("sync_latest", "{}")
        claimed = job_store.claim_job()
        stale_after = timedelta(minutes=10)

        assert job_store.claim_job(claimed.updated_at + timedelta(minutes=5), stale_after) is None
        reclaimed = job_store.claim_job(claimed.updated_at + timedelta(minutes=11), stale_after)
        assert reclaimed.id == claimed.id
        assert reclaimed.attempts == 2

    def test_retry_then_claim(self, job_store):
        now = datetime.utcnow()
        job_id = job_store.create_job("sync_latest", "{}")
        job_store.claim_job(now)
        job_store.mark_retry(job_id, '{"page": 2}', now + timedelta(seconds=30), "boom")

        job = job_store.get_job(job_id)
        assert job.status == JobStatus.RETRY
        assert job.last_error == "boom"
        assert job.cursor == '{"page": 2}'
        assert job_store.claim_job(now) is None
        assert job_store.claim_job(now + timedelta(seconds=31)).attempts == 2

    def test_terminal_statuses_are_not_claimed(self, job_store):
        done = job_store.create_job("a", "{}")
        failed = job_store.create_job("b", "{}")
        job_store.mark_completed(done, "{}")
        job_store.mark_failed(failed, "{}", "x" * 5000)
        assert job_store.claim_job() is None
        assert len(job_store.get_job(failed).last_error) == 2000

    def test_mark_queued_clears_error(self, job_store):
        now = datetime.utcnow()
        job_id = job_store.create_job("a", "{}")
        job_store.mark_retry(job_id, "{}", now, "transient")
        job_store.mark_queued(job_id, '{"page": 3}', now)
        job = job_store.get_job(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.last_error == ""

    def test_mark_queued_resets_attempts(self, job_store):
        now = datetime.utcnow()
        job_id = job_store.create_job("a", "{}")
        job_store.claim_job(now)
        job_store.mark_retry(job_id, "{}", now, "transient")
        assert job_store.claim_job(now).attempts == 2

        job_store.mark_queued(job_id, '{"page": 2}', now)
        assert job_store.get_job(job_id).attempts == 0
        assert job_store.claim_job(now).attempts == 1

    def test_transition_uses_caller_clock(self, job_store):
        now = datetime(2024, 6, 1, 12, 0, 0)
        stale_after = timedelta(minutes=10)
        job_id = job_store.create_job("a", "{}", next_run_at=now)
        job_store.claim_job(now, stale_after)
        job_store.mark_retry(job_id, "{}", now + timedelta(hours=1), "boom", now=now)
        assert job_store.get_job(job_id).updated_at == now

        job_store.mark_completed(job_id, "{}", now=now + timedelta(minutes=1))
        assert job_store.get_job(job_id).updated_at == now + timedelta(minutes=1)

    def test_status_counts(self, job_store):
        job_store.create_job("a", "{}")
        done = job_store.create_job("b", "{}")
        job_store.mark_completed(done, "{}")
        counts = job_store.status_counts()
        assert counts["queued"] == 1
        assert counts["completed"] == 1
        assert counts["failed"] == 0
        assert set(counts) == {s.value for s in JobStatus}

    def test_list_jobs_newest_first(self, job_store):
        first = job_store.create_job("a", "{}")
        second = job_store.create_job("b", "{}")
        assert [job.id for job in job_store.list_jobs()] == [second, first]
