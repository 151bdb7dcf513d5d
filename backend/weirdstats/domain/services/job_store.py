"""
Persistance des jobs de backfill reprenables.

Un job est reclame par un seul runner a la fois : la reclamation passe le
statut a `running` via un UPDATE conditionnel sur (id, status, attempts),
de sorte que deux runners concurrents ne puissent pas obtenir le meme job.
Un job `running` dont `updated_at` depasse `stale_after` est considere
abandonne et peut etre repris.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from weirdstats.domain.entities.job import DEFAULT_MAX_ATTEMPTS, Job, JobStatus

logger = logging.getLogger(__name__)

# Delai au-dela duquel un job `running` est repris
DEFAULT_STALE_AFTER = timedelta(minutes=10)
# Nombre de candidats essayes si un autre runner gagne la course
CLAIM_RETRIES = 3
# Taille max stockee pour last_error
MAX_ERROR_LENGTH = 2000


class JobStore:

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            from weirdstats.core.database import engine as default_engine
            engine = default_engine
        self.engine = engine

    def create_job(
        self,
        job_type: str,
        payload: str,
        cursor: str = "{}",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        next_run_at: Optional[datetime] = None,
    ) -> int:
        now = datetime.utcnow()
        job = Job(
            type=job_type,
            status=JobStatus.QUEUED,
            payload=payload or "{}",
            cursor=cursor or "{}",
            max_attempts=max_attempts if max_attempts > 0 else DEFAULT_MAX_ATTEMPTS,
            next_run_at=next_run_at or now,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(job)
            session.commit()
            session.refresh(job)
            logger.info(f"Job {job.id} cree (type={job_type})")
            return job.id

    def claim_job(self, now: Optional[datetime] = None, stale_after: timedelta = DEFAULT_STALE_AFTER) -> Optional[Job]:
        """
        Reclame le prochain job executable : `queued`/`retry` arrive a echeance,
        ou `running` abandonne. Incremente `attempts` et passe a `running`.
        Retourne None si aucun job n'est disponible.
        """
        now = now or datetime.utcnow()
        stale_before = now - stale_after

        with Session(self.engine) as session:
            for _ in range(CLAIM_RETRIES):
                candidate = session.exec(
                    select(Job)
                    .where(or_(
                        and_(
                            Job.status.in_([JobStatus.QUEUED, JobStatus.RETRY]),
                            Job.next_run_at <= now,
                        ),
                        and_(
                            Job.status == JobStatus.RUNNING,
                            Job.updated_at <= stale_before,
                        ),
                    ))
                    .order_by(Job.next_run_at, Job.id)
                    .limit(1)
                ).first()
                if candidate is None:
                    return None

                job_id = candidate.id
                previous_status = candidate.status
                result = session.exec(
                    update(Job)
                    .where(
                        Job.id == job_id,
                        Job.status == previous_status,
                        Job.attempts == candidate.attempts,
                    )
                    .values(status=JobStatus.RUNNING, attempts=Job.attempts + 1, updated_at=now)
                )
                session.commit()
                if result.rowcount == 1:
                    if previous_status == JobStatus.RUNNING:
                        logger.warning(f"Job {job_id} abandonne repris")
                    claimed = session.get(Job, job_id, populate_existing=True)
                    return claimed
                session.expire_all()

        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        job_id: int,
        status: JobStatus,
        cursor: Optional[str] = None,
        next_run_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
        reset_attempts: bool = False,
        now: Optional[datetime] = None,
    ) -> None:
        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                logger.warning(f"Job {job_id} introuvable pour transition vers {status.value}")
                return
            job.status = status
            if cursor is not None:
                job.cursor = cursor
            if next_run_at is not None:
                job.next_run_at = next_run_at
            if last_error is not None:
                job.last_error = last_error[:MAX_ERROR_LENGTH]
            if reset_attempts:
                job.attempts = 0
            # meme horloge que claim_job : la peremption compare updated_at a `now`
            job.updated_at = now or datetime.utcnow()
            session.add(job)
            session.commit()

    def mark_queued(self, job_id: int, cursor: str, next_run_at: datetime, now: Optional[datetime] = None) -> None:
        """
        Sauvegarde le curseur et replanifie la suite du job.
        Une etape reussie remet `attempts` a zero : seuls les echecs consecutifs comptent.
        """
        self._transition(
            job_id, JobStatus.QUEUED, cursor=cursor, next_run_at=next_run_at, last_error="",
            reset_attempts=True, now=now,
        )

    def mark_retry(
        self, job_id: int, cursor: str, next_run_at: datetime, error: str, now: Optional[datetime] = None
    ) -> None:
        self._transition(job_id, JobStatus.RETRY, cursor=cursor, next_run_at=next_run_at, last_error=error, now=now)

    def mark_failed(self, job_id: int, cursor: str, error: str, now: Optional[datetime] = None) -> None:
        self._transition(job_id, JobStatus.FAILED, cursor=cursor, last_error=error, now=now)
        logger.warning(f"Job {job_id} en echec: {error}")

    def mark_completed(self, job_id: int, cursor: str, now: Optional[datetime] = None) -> None:
        self._transition(job_id, JobStatus.COMPLETED, cursor=cursor, last_error="", now=now)
        logger.info(f"Job {job_id} termine")

    # ------------------------------------------------------------------
    # Lecture
    # ------------------------------------------------------------------

    def get_job(self, job_id: int) -> Optional[Job]:
        with Session(self.engine) as session:
            return session.get(Job, job_id)

    def list_jobs(self, limit: int = 50) -> List[Job]:
        """Jobs les plus recents d'abord."""
        with Session(self.engine) as session:
            return list(session.exec(
                select(Job).order_by(Job.created_at.desc(), Job.id.desc()).limit(limit)
            ).all())

    def status_counts(self) -> Dict[str, Any]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Job.status, func.count()).group_by(Job.status)
            ).all()
        counts = {status.value: 0 for status in JobStatus}
        for status, count in rows:
            key = status.value if isinstance(status, JobStatus) else str(status)
            counts[key] = count
        return counts
