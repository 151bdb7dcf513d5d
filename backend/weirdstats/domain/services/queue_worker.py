"""
Worker de la file d'activites : depile une entree, execute le pipeline,
marque l'entree traitee. Une entree en echec reste dans la file, repoussee
de 30 s a 10 min, et les entrees suivantes continuent d'etre traitees.

Sur rate-limit Strava, le worker recule : 15 s puis double jusqu'a 10 min,
ou le Retry-After annonce par Strava s'il est fourni. Le recul repart de
zero apres un succes.
"""
import logging
from typing import Optional, Protocol

from weirdstats.domain.services.background_loop import BackgroundLoop
from weirdstats.domain.services.queue_store import QueueStore
from weirdstats.domain.services.strava_client import is_rate_limited, rate_limit_backoff

logger = logging.getLogger(__name__)

RATE_LIMIT_BACKOFF_START = 15.0
RATE_LIMIT_BACKOFF_MAX = 600.0


class ActivityProcessor(Protocol):
    def process(self, activity_id: int) -> None:
        ...


def next_backoff(current: float) -> float:
    if current <= 0:
        return RATE_LIMIT_BACKOFF_START
    return min(current * 2, RATE_LIMIT_BACKOFF_MAX)


class QueueWorker(BackgroundLoop):

    name = "Worker de queue"

    def __init__(self, queue: QueueStore, processor: ActivityProcessor, poll_interval: float = 2.0):
        super().__init__(poll_interval)
        self.queue = queue
        self.processor = processor
        self.rate_limit_backoff = 0.0

    def process_next(self) -> bool:
        """
        Traite la plus ancienne entree a echeance. False si rien n'est a traiter ;
        les erreurs remontent. Hors rate-limit, l'entree en echec est repoussee
        pour que les suivantes passent.
        """
        item = self.queue.dequeue_activity()
        if item is None:
            return False
        queue_id, activity_id = item
        try:
            self.processor.process(activity_id)
        except Exception as exc:
            # un rate-limit concerne toute la file : c'est le worker qui recule
            if not is_rate_limited(exc):
                self.queue.mark_failed(queue_id, str(exc))
            raise
        self.queue.mark_processed(queue_id)
        logger.info(f"Activite {activity_id} traitee (entree {queue_id})")
        return True

    def run_once(self) -> float:
        try:
            processed = self.process_next()
        except Exception as exc:
            if is_rate_limited(exc):
                self.rate_limit_backoff = next_backoff(self.rate_limit_backoff)
                delay = self.rate_limit_backoff
                retry_after: Optional[float] = rate_limit_backoff(exc)
                if retry_after is not None and retry_after > 0:
                    delay = retry_after
                logger.warning(f"Worker limite par Strava, pause de {delay:.0f}s: {exc}")
                return delay
            logger.error(f"Erreur du worker: {exc}")
            return self.poll_interval

        if processed:
            self.rate_limit_backoff = 0.0
            return 0.0
        return self.poll_interval
