"""
Runner des jobs de backfill reprenables.

Chaque job porte un payload immuable et un curseur de progression (JSON).
Un tour de runner reclame un job, execute UNE etape de son handler puis
le remet en file (suite), en retry (erreur transitoire), en echec ou le
termine. `max_attempts` borne les echecs consecutifs : une etape reussie
remet le compteur a zero, un backfill peut donc compter plus de pages
que `max_attempts`. Un runner qui meurt en cours d'etape laisse le job en `running` ;
il est repris une fois `stale_after` ecoule.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

from pydantic import BaseModel, ValidationError

from weirdstats.domain.entities.job import Job, JobType
from weirdstats.domain.services.background_loop import BackgroundLoop
from weirdstats.domain.services.ingest_service import Ingestor
from weirdstats.domain.services.job_store import DEFAULT_STALE_AFTER, JobStore
from weirdstats.domain.services.queue_store import QueueStore
from weirdstats.domain.services.strava_client import StravaClient, is_rate_limited, rate_limit_backoff

logger = logging.getLogger(__name__)

RETRY_BASE = timedelta(seconds=30)
RETRY_MAX = timedelta(minutes=10)
# Attente minimale apres un rate-limit sans Retry-After
RATE_LIMIT_MIN_DELAY = timedelta(minutes=5)
# Delai avant l'etape suivante d'un backfill
CONTINUATION_DELAY = timedelta(seconds=2)
DEFAULT_PER_PAGE = 100


# ------------------------------------------------------------------
# Payloads et curseurs
# ------------------------------------------------------------------

class SyncSincePayload(BaseModel):
    user_id: int = 0
    after_unix: int = 0
    per_page: int = 0


class SyncSinceCursor(BaseModel):
    page: int = 1
    enqueued: int = 0
    before_unix: int = 0


class SyncLatestPayload(BaseModel):
    user_id: int = 0


class SyncLatestCursor(BaseModel):
    enqueued: int = 0


def _to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _from_unix(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def retry_delay(attempts: int) -> timedelta:
    """30 s * 2^(attempts-1), plafonne a 10 min."""
    if attempts < 1:
        return RETRY_BASE
    delay = RETRY_BASE
    for _ in range(1, attempts):
        delay *= 2
        if delay > RETRY_MAX:
            return RETRY_MAX
    return delay


def _retry_delay_for(job: Job, error: Exception) -> timedelta:
    delay = retry_delay(job.attempts)
    if is_rate_limited(error):
        retry_after = rate_limit_backoff(error)
        if retry_after is not None and retry_after > 0:
            delay = timedelta(seconds=retry_after)
        elif delay < RATE_LIMIT_MIN_DELAY:
            delay = RATE_LIMIT_MIN_DELAY
    return delay


class JobHandler(Protocol):
    def handle(self, job: Job) -> None:
        ...


# ------------------------------------------------------------------
# Handlers
# ------------------------------------------------------------------

class SyncSinceHandler:
    """
    Backfill pagine des activites : on descend dans le temps en deplacant
    `before_unix` sur l'activite la plus ancienne de la page ; si toute la
    page partage ce meme instant, on passe a la page suivante.
    """

    def __init__(
        self,
        jobs: JobStore,
        queue: QueueStore,
        client: Optional[StravaClient],
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.jobs = jobs
        self.queue = queue
        self.client = client
        self.clock = clock

    def _retry(self, job: Job, cursor: SyncSinceCursor, error: Exception) -> None:
        delay = _retry_delay_for(job, error)
        logger.warning(f"Job {job.id} en retry dans {delay.total_seconds():.0f}s: {error}")
        now = self.clock()
        self.jobs.mark_retry(job.id, cursor.model_dump_json(), now + delay, str(error), now=now)

    def handle(self, job: Job) -> None:
        if not job.payload:
            self.jobs.mark_failed(job.id, job.cursor, "invalid payload: empty payload", now=self.clock())
            return
        try:
            payload = SyncSincePayload.model_validate_json(job.payload)
        except ValidationError as exc:
            self.jobs.mark_failed(job.id, job.cursor, f"invalid payload: {exc}", now=self.clock())
            return

        try:
            cursor = SyncSinceCursor.model_validate_json(job.cursor or "{}")
        except ValidationError as exc:
            logger.warning(f"Job {job.id}: curseur invalide, reinitialisation: {exc}")
            cursor = SyncSinceCursor()

        if cursor.page <= 0:
            cursor.page = 1
        per_page = payload.per_page if payload.per_page > 0 else DEFAULT_PER_PAGE
        if cursor.before_unix <= 0:
            cursor.before_unix = _to_unix(self.clock())

        if self.client is None:
            self.jobs.mark_failed(job.id, job.cursor, "strava client not configured", now=self.clock())
            return

        try:
            activities = self.client.list_activities(
                after=_from_unix(payload.after_unix) if payload.after_unix > 0 else None,
                before=_from_unix(cursor.before_unix),
                page=cursor.page,
                per_page=per_page,
            )
        except Exception as exc:
            self._retry(job, cursor, exc)
            return

        if not activities:
            self.jobs.mark_completed(job.id, cursor.model_dump_json(), now=self.clock())
            return

        oldest_start = activities[0].start_date
        for activity in activities:
            try:
                self.queue.enqueue_activity(activity.id)
            except Exception as exc:
                self._retry(job, cursor, exc)
                return
            cursor.enqueued += 1
            if activity.start_date < oldest_start:
                oldest_start = activity.start_date

        oldest_unix = _to_unix(oldest_start)
        if oldest_unix == cursor.before_unix:
            cursor.page += 1
        else:
            cursor.before_unix = oldest_unix
            cursor.page = 1

        if payload.after_unix > 0 and cursor.before_unix <= payload.after_unix:
            self.jobs.mark_completed(job.id, cursor.model_dump_json(), now=self.clock())
            return

        logger.info(f"Job {job.id}: {cursor.enqueued} activites enfilees, page suivante {cursor.page}")
        now = self.clock()
        self.jobs.mark_queued(job.id, cursor.model_dump_json(), now + CONTINUATION_DELAY, now=now)


class SyncLatestHandler:

    def __init__(
        self,
        jobs: JobStore,
        ingestor: Optional[Ingestor],
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.jobs = jobs
        self.ingestor = ingestor
        self.clock = clock

    def handle(self, job: Job) -> None:
        if self.ingestor is None:
            self.jobs.mark_failed(job.id, job.cursor, "ingestor not configured", now=self.clock())
            return
        try:
            count = self.ingestor.sync_latest_activity()
        except Exception as exc:
            delay = _retry_delay_for(job, exc)
            logger.warning(f"Job {job.id} en retry dans {delay.total_seconds():.0f}s: {exc}")
            now = self.clock()
            self.jobs.mark_retry(job.id, SyncLatestCursor().model_dump_json(), now + delay, str(exc), now=now)
            return
        self.jobs.mark_completed(job.id, SyncLatestCursor(enqueued=count).model_dump_json(), now=self.clock())


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------

class JobRunner(BackgroundLoop):

    name = "Runner de jobs"

    def __init__(
        self,
        jobs: JobStore,
        handlers: Dict[str, JobHandler],
        poll_interval: float = 2.0,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        super().__init__(poll_interval)
        self.jobs = jobs
        self.handlers = dict(handlers)
        self.stale_after = stale_after if stale_after.total_seconds() > 0 else DEFAULT_STALE_AFTER
        self.clock = clock

    def process_next(self) -> bool:
        """Execute une etape d'un job. False si aucun job n'etait disponible."""
        job = self.jobs.claim_job(self.clock(), self.stale_after)
        if job is None:
            return False

        if job.max_attempts > 0 and job.attempts > job.max_attempts:
            self.jobs.mark_failed(job.id, job.cursor, "max attempts exceeded", now=self.clock())
            return True

        handler = self.handlers.get(job.type)
        if handler is None:
            self.jobs.mark_failed(job.id, job.cursor, "unknown job type", now=self.clock())
            return True

        logger.debug(f"Job {job.id} ({job.type}) tentative {job.attempts}")
        handler.handle(job)
        return True

    def run_once(self) -> float:
        try:
            processed = self.process_next()
        except Exception as exc:
            logger.error(f"Erreur du runner de jobs: {exc}")
            return self.poll_interval
        return 0.0 if processed else self.poll_interval


def build_handlers(
    jobs: JobStore,
    queue: QueueStore,
    client: Optional[StravaClient],
    ingestor: Optional[Ingestor],
) -> Dict[str, JobHandler]:
    return {
        JobType.SYNC_ACTIVITIES_SINCE.value: SyncSinceHandler(jobs, queue, client),
        JobType.SYNC_LATEST.value: SyncLatestHandler(jobs, ingestor),
    }


def enqueue_sync_since(jobs: JobStore, user_id: int, after: datetime, per_page: int = DEFAULT_PER_PAGE) -> int:
    """Cree un job de backfill depuis `after` (UTC)."""
    payload = SyncSincePayload(user_id=user_id, after_unix=_to_unix(after), per_page=per_page)
    return jobs.create_job(
        JobType.SYNC_ACTIVITIES_SINCE.value,
        payload.model_dump_json(),
        SyncSinceCursor().model_dump_json(),
    )


def enqueue_sync_latest(jobs: JobStore, user_id: int) -> int:
    return jobs.create_job(
        JobType.SYNC_LATEST.value,
        SyncLatestPayload(user_id=user_id).model_dump_json(),
    )
