"""
File FIFO des activites a traiter (table activity_queue).
Une meme activite peut etre enfilee plusieurs fois ; chaque entree est
traitee puis marquee `processed_at`.

Une entree en echec est repoussee de 30 s, doublee a chaque echec jusqu'a
10 min. Elle reste eligible sans plafond mais ne bloque plus les entrees
suivantes : `dequeue_activity` ne renvoie que les entrees arrivees a echeance.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from weirdstats.domain.entities.activity_queue import ActivityQueueEntry

logger = logging.getLogger(__name__)

ENTRY_RETRY_BASE = timedelta(seconds=30)
ENTRY_RETRY_MAX = timedelta(minutes=10)
MAX_ERROR_LENGTH = 2000


def entry_retry_delay(attempts: int) -> timedelta:
    """30 s * 2^(attempts-1), plafonne a 10 min."""
    delay = ENTRY_RETRY_BASE
    for _ in range(1, attempts):
        delay *= 2
        if delay >= ENTRY_RETRY_MAX:
            return ENTRY_RETRY_MAX
    return delay


class QueueStore:

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            from weirdstats.core.database import engine as default_engine
            engine = default_engine
        self.engine = engine

    def enqueue_activity(self, activity_id: int) -> int:
        """Ajoute une entree pour l'activite et retourne son id."""
        with Session(self.engine) as session:
            entry = ActivityQueueEntry(activity_id=activity_id, enqueued_at=datetime.utcnow())
            session.add(entry)
            session.commit()
            session.refresh(entry)
            logger.debug(f"Activite {activity_id} ajoutee a la queue (entree {entry.id})")
            return entry.id

    def dequeue_activity(self, now: Optional[datetime] = None) -> Optional[Tuple[int, int]]:
        """
        Plus ancienne entree non traitee et arrivee a echeance (queue_id, activity_id),
        None si rien n'est a traiter.
        """
        now = now or datetime.utcnow()
        with Session(self.engine) as session:
            entry = session.exec(
                select(ActivityQueueEntry)
                .where(
                    ActivityQueueEntry.processed_at.is_(None),
                    or_(
                        ActivityQueueEntry.next_attempt_at.is_(None),
                        ActivityQueueEntry.next_attempt_at <= now,
                    ),
                )
                .order_by(ActivityQueueEntry.id)
                .limit(1)
            ).first()
            if entry is None:
                return None
            return entry.id, entry.activity_id

    def mark_processed(self, queue_id: int) -> None:
        with Session(self.engine) as session:
            entry = session.get(ActivityQueueEntry, queue_id)
            if entry is None:
                logger.warning(f"Entree de queue {queue_id} introuvable")
                return
            entry.processed_at = datetime.utcnow()
            session.add(entry)
            session.commit()

    def mark_failed(self, queue_id: int, error: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """Repousse l'entree apres un echec. Retourne sa prochaine echeance."""
        now = now or datetime.utcnow()
        with Session(self.engine) as session:
            entry = session.get(ActivityQueueEntry, queue_id)
            if entry is None:
                logger.warning(f"Entree de queue {queue_id} introuvable")
                return None
            entry.attempts += 1
            entry.last_error = error[:MAX_ERROR_LENGTH]
            entry.next_attempt_at = now + entry_retry_delay(entry.attempts)
            session.add(entry)
            session.commit()
            logger.info(
                f"Entree {queue_id} (activite {entry.activity_id}) repoussee a "
                f"{entry.next_attempt_at.isoformat()} apres {entry.attempts} echec(s)"
            )
            return entry.next_attempt_at

    def pending_count(self) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count()).select_from(ActivityQueueEntry).where(
                    ActivityQueueEntry.processed_at.is_(None)
                )
            ).one()

    def get_queue_status(self) -> Dict[str, Any]:
        """Statut de la queue pour l'API."""
        with Session(self.engine) as session:
            pending = session.exec(
                select(func.count()).select_from(ActivityQueueEntry).where(
                    ActivityQueueEntry.processed_at.is_(None)
                )
            ).one()
            processed = session.exec(
                select(func.count()).select_from(ActivityQueueEntry).where(
                    ActivityQueueEntry.processed_at.is_not(None)
                )
            ).one()
            retrying = session.exec(
                select(func.count()).select_from(ActivityQueueEntry).where(
                    ActivityQueueEntry.processed_at.is_(None),
                    ActivityQueueEntry.attempts > 0,
                )
            ).one()
            oldest = session.exec(
                select(func.min(ActivityQueueEntry.enqueued_at)).where(
                    ActivityQueueEntry.processed_at.is_(None)
                )
            ).one()

        return {
            "pending": pending,
            "processed": processed,
            "retrying": retrying,
            "oldest_pending_at": oldest.isoformat() if oldest else None,
        }
