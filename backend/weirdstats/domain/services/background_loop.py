"""
Boucle de polling en arriere-plan (asyncio.Task) partagee par le worker de
queue et le runner de jobs.

Le travail bloquant (base, HTTP) s'execute dans l'executor par defaut ;
toutes les attentes passent par un asyncio.Event pour que l'arret et le
reveil soient immediats.
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Pause apres une erreur inattendue (secondes)
ERROR_WAIT = 30


class BackgroundLoop:
    """Squelette commun : les sous-classes implementent `run_once()`."""

    name = "boucle"

    def __init__(self, poll_interval: float = 2.0):
        self.poll_interval = poll_interval if poll_interval > 0 else 2.0
        self.is_running = False
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake_event = asyncio.Event()

    def run_once(self) -> float:
        """Traite au plus un element (bloquant). Retourne l'attente avant le prochain tour."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_worker(self) -> None:
        """Demarre la boucle comme asyncio.Task. Idempotent."""
        if self._task and not self._task.done():
            return
        self.is_running = True
        self._task = asyncio.get_event_loop().create_task(self._run_loop())
        logger.info(f"{self.name} demarre")

    def stop_worker(self) -> None:
        self.is_running = False
        self._wake_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
        logger.info(f"{self.name} arrete")

    def notify_new_items(self) -> None:
        """Reveille la boucle (nouvel element en attente). Utilisable depuis un autre thread."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wake_event.set)
        else:
            self._wake_event.set()

    async def wait_stopped(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Boucle
    # ------------------------------------------------------------------

    async def _wait(self, delay: float) -> None:
        """Attend `delay` secondes ou un reveil recu depuis le debut du tour."""
        try:
            await asyncio.wait_for(self._wake_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _run_loop(self) -> None:
        self.is_running = True
        loop = asyncio.get_running_loop()
        self._loop = loop

        while self.is_running:
            try:
                self._wake_event.clear()
                delay = await loop.run_in_executor(None, self.run_once)
                if delay > 0 and self.is_running:
                    await self._wait(delay)
            except asyncio.CancelledError:
                logger.info(f"{self.name} annule")
                break
            except Exception as e:
                logger.error(f"Erreur dans {self.name}: {e}")
                if self.is_running:
                    await self._wait(ERROR_WAIT)

        self.is_running = False
        logger.info(f"{self.name} terminee")
