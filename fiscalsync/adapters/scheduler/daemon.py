"""Resync scheduler adapter.

Implements the long-running asyncio process that drains the offline
store: one supervisor loop discovers cash registers with pending
submissions and keeps one FIFO worker per register. Registers drain
concurrently; entries of the same register never do.
"""

import asyncio
import logging
import signal
from collections.abc import Sequence

from fiscalsync.core.backoff import BackoffPolicy
from fiscalsync.core.errors import ConnectivityError, MalformedResponseError
from fiscalsync.core.models import (
    Accepted,
    PendingSubmission,
    RegistrationOutcome,
    ResyncResult,
)
from fiscalsync.core.ports import OfflineStorePort, OutcomeObserverPort, RegistrationPort

logger = logging.getLogger(__name__)


class ResyncScheduler:
    """Asyncio-based background reconciliation of deferred submissions."""

    def __init__(
        self,
        store: OfflineStorePort,
        registration: RegistrationPort | None = None,
        observers: Sequence[OutcomeObserverPort] = (),
        backoff: BackoffPolicy | None = None,
        poll_interval_seconds: float = 30.0,
        shutdown_grace_seconds: float = 5.0,
    ):
        """Initialize resync scheduler.

        Args:
            store: Offline store to drain.
            registration: RegistrationPort used to reconcile (can be set later).
            observers: Receivers of reconciliation outcomes.
            backoff: Retry delay policy after transient failures.
            poll_interval_seconds: Interval between store scans.
            shutdown_grace_seconds: Time in-flight attempts get to finish on stop.
        """
        self.store = store
        self.registration = registration
        self.observers = list(observers)
        self.backoff = backoff or BackoffPolicy()
        self.poll_interval_seconds = poll_interval_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.running = False
        self._task: asyncio.Task[None] | None = None
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._register_locks: dict[str, asyncio.Lock] = {}
        self._wakeup = asyncio.Event()
        self._stopping = asyncio.Event()

    async def __aenter__(self) -> "ResyncScheduler":
        """Start the scheduler in the background."""
        self.start_background()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop the scheduler, letting in-flight attempts finish."""
        await self.stop()

    def start_background(self) -> asyncio.Task[None]:
        """Run the scheduler as a background task of the current loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.start(), name="resync-scheduler")
        return self._task

    async def start(self) -> None:
        """Start the supervisor loop and block until stopped.

        Raises:
            ValueError: If registration is not set.
        """
        if self.registration is None:
            raise ValueError("registration must be set before starting the scheduler")

        if self.running:
            logger.warning("Resync scheduler already running")
            return

        self.running = True
        logger.info(
            f"Starting resync scheduler with {self.poll_interval_seconds}s scan interval"
        )

        try:
            await self._run_loop()
        except asyncio.CancelledError:
            logger.info("Resync scheduler cancelled")
        except Exception as e:
            logger.error(f"Resync scheduler error: {e}", exc_info=True)
        finally:
            self.running = False
            await self._stop_workers()
            logger.info("Resync scheduler stopped")

    async def stop(self) -> None:
        """Stop the scheduler loop and its workers."""
        if not self.running and (self._task is None or self._task.done()):
            return

        logger.info("Stopping resync scheduler...")
        self.running = False
        self._stopping.set()
        self._wakeup.set()

        if self._task is not None and self._task is not asyncio.current_task():
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def notify_pending(self, cash_register_code: str) -> None:
        """Wake the supervisor after a new deferral for a register."""
        logger.debug(f"Pending work signalled for {cash_register_code}")
        self._wakeup.set()

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()

            def _handle_signal(sig: int) -> None:
                logger.info(f"Received signal {sig}, initiating graceful shutdown...")
                asyncio.create_task(self.stop())

            loop.add_signal_handler(signal.SIGTERM, _handle_signal, signal.SIGTERM)
            loop.add_signal_handler(signal.SIGINT, _handle_signal, signal.SIGINT)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.debug("Signal handlers not available on this platform")
        except Exception as e:
            logger.warning(f"Failed to set up signal handlers: {e}")

    async def _run_loop(self) -> None:
        """Supervisor loop: keep one worker alive per register with backlog."""
        scan_number = 0

        while self.running and not self._stopping.is_set():
            scan_number += 1
            self._wakeup.clear()

            try:
                registers = await self.store.pending_registers()
                for code in registers:
                    worker = self._workers.get(code)
                    if worker is None or worker.done():
                        self._workers[code] = asyncio.create_task(
                            self._drain_register(code), name=f"resync-{code}"
                        )
                if registers:
                    logger.debug(
                        f"Scan #{scan_number}: {len(registers)} registers with backlog"
                    )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in resync scan #{scan_number}: {e}", exc_info=True)

            # Wait before next scan, or until new work is signalled
            if self.running and not self._stopping.is_set():
                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(), timeout=self.poll_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass

    async def _drain_register(self, cash_register_code: str) -> None:
        """Reconcile one register's queue in FIFO order until it is empty."""
        while self.running:
            try:
                outcome = await self._attempt_oldest(cash_register_code)
            except (ConnectivityError, MalformedResponseError):
                pass
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Unexpected error reconciling {cash_register_code}: {e}",
                    exc_info=True,
                )
            else:
                if outcome is None:
                    return  # queue empty
                continue

            pending = await self.store.peek_oldest(cash_register_code)
            if pending is None:
                return
            attempt = max(pending.attempt_count, 1)
            delay = self.backoff.delay(attempt, key=pending.okp)
            logger.debug(
                f"Retrying {pending.okp} for {cash_register_code} in {delay:.2f}s "
                f"(attempt {attempt})"
            )
            if await self._wait_or_stop(delay):
                return

    async def _attempt_oldest(
        self, cash_register_code: str
    ) -> RegistrationOutcome | None:
        """Try to reconcile the oldest entry of a register.

        Returns:
            The final outcome, or None if nothing is pending.

        Raises:
            ConnectivityError: Authority unreachable; the attempt was recorded.
            MalformedResponseError: Unreadable answer; the attempt was recorded.
        """
        assert self.registration is not None
        async with self._lock_for(cash_register_code):
            submission = await self.store.peek_oldest(cash_register_code)
            if submission is None:
                return None

            try:
                outcome = await self.registration.reconcile(submission)
            except ConnectivityError as e:
                logger.info(f"Authority still unreachable for {submission.okp}: {e}")
                await self.store.record_attempt(submission.okp, str(e))
                raise
            except MalformedResponseError as e:
                logger.error(f"Unreadable answer while reconciling {submission.okp}: {e}")
                await self.store.record_attempt(submission.okp, str(e))
                raise

            authority_id = outcome.authority_id if isinstance(outcome, Accepted) else None
            await self.store.dequeue(submission, outcome.outcome_status, authority_id)

        await self._notify(submission, outcome)
        return outcome

    async def _notify(
        self, submission: PendingSubmission, outcome: RegistrationOutcome
    ) -> None:
        for observer in self.observers:
            try:
                await observer.notify(submission, outcome)
            except Exception as e:
                logger.error(
                    f"Observer {type(observer).__name__} failed for {submission.okp}: {e}",
                    exc_info=True,
                )

    async def run_once(self) -> ResyncResult:
        """Drain every register once, without backoff waits.

        A register stops at its first transient failure so FIFO order holds.
        """
        if self.registration is None:
            raise ValueError("registration must be set to run a resync pass")

        accepted = rejected = 0
        failed: list[str] = []
        logger.info("Starting on-demand resync pass")

        for code in await self.store.pending_registers():
            while True:
                try:
                    outcome = await self._attempt_oldest(code)
                except (ConnectivityError, MalformedResponseError):
                    failed.append(code)
                    break
                if outcome is None:
                    break
                if isinstance(outcome, Accepted):
                    accepted += 1
                else:
                    rejected += 1

        still_pending = len(await self.store.list_pending())
        logger.info(
            f"Resync pass completed: {accepted} accepted, {rejected} rejected, "
            f"{still_pending} still pending"
        )
        return ResyncResult(
            accepted=accepted,
            rejected=rejected,
            still_pending=still_pending,
            failed_registers=tuple(failed),
        )

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for a backoff delay. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _stop_workers(self) -> None:
        """Let in-flight attempts finish within the grace period, then cancel."""
        workers = [task for task in self._workers.values() if not task.done()]
        self._workers.clear()
        if not workers:
            return

        _, still_running = await asyncio.wait(
            workers, timeout=self.shutdown_grace_seconds
        )
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                f"Abandoned {len(still_running)} in-flight reconciliations; "
                f"their entries remain queued"
            )
            await asyncio.gather(*still_running, return_exceptions=True)

    def _lock_for(self, cash_register_code: str) -> asyncio.Lock:
        lock = self._register_locks.get(cash_register_code)
        if lock is None:
            lock = asyncio.Lock()
            self._register_locks[cash_register_code] = lock
        return lock
