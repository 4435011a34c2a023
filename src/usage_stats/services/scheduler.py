"""Background task that keeps the daily visit facts up to date."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from usage_stats.core.errors import StoreError
from usage_stats.core.settings import settings
from usage_stats.services.visits import VisitLedger

logger = logging.getLogger(__name__)


class VisitsScheduler:
    """Periodically materializes daily visits for the lifetime of the process.

    A single asyncio task runs the loop, so runs never overlap: each one
    finishes, successfully or not, before the next sleep starts. A failed run
    is logged and the loop carries on with the normal interval; the ledger's
    watermark did not move, so the next run picks up the missed window.
    """

    def __init__(
        self,
        ledger: VisitLedger | None = None,
        initial_delay: float | None = None,
        interval: float | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            ledger: Ledger to drive. If None, a new one is created.
            initial_delay: Seconds to wait before the first run.
            interval: Seconds to wait between the end of one run and the next.
        """
        self.ledger = ledger or VisitLedger()
        self.initial_delay = (
            settings.visits_initial_delay_seconds if initial_delay is None else initial_delay
        )
        self.interval = settings.visits_interval_seconds if interval is None else interval
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        """Return True while the background loop is alive."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop unless it is already running."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background loop, waiting for an in-flight run to finish."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def run_once(self) -> int | None:
        """Run one materialization in a worker thread.

        Returns:
            Number of visits written, or None if the run failed.
        """
        logger.info("Executing update_daily_visits")
        try:
            return await asyncio.to_thread(self.ledger.update_daily_visits)
        except StoreError:
            logger.exception("failed to update daily user visits")
        except (OSError, ConnectionError, TimeoutError) as e:
            logger.error("update_daily_visits encountered I/O error: %s", e, exc_info=True)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error(
                "update_daily_visits encountered data processing error: %s", e, exc_info=True
            )
        except Exception:
            logger.exception("update_daily_visits failed unexpectedly")
        return None

    async def _run(self) -> None:
        if await self._sleep(self.initial_delay):
            return

        while not self._stopping.is_set():
            await self.run_once()
            if await self._sleep(self.interval):
                return

    async def _sleep(self, seconds: float) -> bool:
        """Wait for ``seconds`` or until stopped. Returns True if stopped."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=max(0.0, seconds))
        return self._stopping.is_set()
