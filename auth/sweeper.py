"""
auth/sweeper.py -- Periodic purge of abandoned unverified accounts.

An account is swept when it is unverified, was created at least
threshold_minutes ago, and still holds an email-verification code. Eligibility
keys off the account's creation time, not the time its latest code was
issued, so reissuing a code does not extend an account's life.

Deletion is one DELETE-by-filter statement (see AccountStore.delete_unverified_before).
The unverified check is re-evaluated inside that statement, so an account
whose verification commits first is never deleted.

A failed tick never escapes: it is logged, recorded on last_failure, and the
next tick runs on schedule. There is no backoff.

Lifecycle: start() runs one sweep immediately and then schedules an asyncio
task that sweeps every interval_minutes; stop() cancels it. The FastAPI
lifespan owns both calls.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from auth.codes import utcnow
from auth.errors import SweepTickFailure
from auth.store import AccountStore
from auth.verification import Clock
from core.config import Settings

logger = logging.getLogger("authgate.auth.sweeper")


class ExpirySweeper:
    def __init__(
        self,
        store: AccountStore,
        *,
        threshold_minutes: int = 10,
        interval_minutes: int = 10,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self.threshold_minutes = threshold_minutes
        self.interval_minutes = interval_minutes
        self.last_failure: SweepTickFailure | None = None
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, store: AccountStore, settings: Settings, clock: Clock = utcnow) -> ExpirySweeper:
        return cls(
            store,
            threshold_minutes=settings.sweep_threshold_minutes,
            interval_minutes=settings.sweep_interval_minutes,
            clock=clock,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, threshold_minutes: int | None = None) -> int:
        """Delete abandoned unverified accounts and return how many were removed.

        Never raises. If the DELETE fails the error is logged and kept on
        last_failure, and 0 is returned. Once the DELETE has committed its
        count is returned even if the follow-up pending count fails.
        """
        minutes = threshold_minutes if threshold_minutes is not None else self.threshold_minutes
        cutoff = self._clock() - timedelta(minutes=minutes)
        try:
            deleted = self._store.delete_unverified_before(cutoff)
        except Exception as exc:
            failure = SweepTickFailure(f"Sweep failed: {exc.__class__.__name__}: {exc}")
            failure.__cause__ = exc
            self.last_failure = failure
            logger.exception("Sweep of unverified accounts older than %d minutes failed", minutes)
            return 0

        # The DELETE has committed; nothing below may change the result.
        self.last_failure = None
        if deleted:
            logger.info("Sweep deleted %d unverified account(s) older than %d minutes", deleted, minutes)
        else:
            logger.info("Sweep found no unverified accounts older than %d minutes", minutes)
        try:
            remaining = self._store.count_pending_unverified()
        except Exception:
            logger.warning("Could not count pending unverified accounts after sweep", exc_info=True)
        else:
            logger.debug("%d unverified account(s) still pending verification", remaining)
        return deleted

    async def _run(self) -> None:
        """Sweep every interval_minutes until cancelled.

        CancelledError from stop() propagates out of asyncio.sleep and unwinds
        the coroutine cleanly.
        """
        while True:
            await asyncio.sleep(self.interval_minutes * 60)
            self.sweep()

    def start(self) -> None:
        """Run one sweep now, then schedule the periodic task. No-op if already running.

        Must be called from inside a running event loop.
        """
        if self.running:
            return
        logger.info(
            "Starting sweeper (threshold=%d min, interval=%d min)",
            self.threshold_minutes,
            self.interval_minutes,
        )
        self.sweep()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel the periodic task. No-op if not running."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Sweeper stopped")
