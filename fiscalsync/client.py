"""Process-scoped registration client.

FiscalClient owns one offline store, one transport, one registration
service and one resync scheduler. Only one client may be open per
process, since two schedulers draining the same store would break
per-register ordering.

Usage:

    async with FiscalClient.from_settings(load_settings()) as client:
        outcome = await client.register_receipt(receipt, PrintContext.pos())
"""

import logging
from collections.abc import Sequence
from decimal import Decimal
from typing import ClassVar

from fiscalsync.adapters.notification.stdout import StdoutOutcomeObserver
from fiscalsync.adapters.scheduler.daemon import ResyncScheduler
from fiscalsync.adapters.store.sqlite import SQLiteOfflineStore
from fiscalsync.adapters.transport.http import HttpTransport
from fiscalsync.config import Settings
from fiscalsync.core.backoff import BackoffPolicy
from fiscalsync.core.codec import DocumentCodec, VatTable
from fiscalsync.core.models import (
    CashRegisterLocation,
    Document,
    PendingSubmission,
    PrintContext,
    QueueStats,
    Receipt,
    RegistrationOutcome,
    ResyncResult,
    ValidationResult,
)
from fiscalsync.core.ports import OfflineStorePort, OutcomeObserverPort, TransportPort
from fiscalsync.core.registration_service import RegistrationService
from fiscalsync.core.validator import DocumentValidator

logger = logging.getLogger(__name__)


class FiscalClient:
    """Entry point for registering documents from application code."""

    _active: ClassVar["FiscalClient | None"] = None

    def __init__(
        self,
        store: OfflineStorePort,
        transport: TransportPort,
        observers: Sequence[OutcomeObserverPort] = (),
        codec: DocumentCodec | None = None,
        backoff: BackoffPolicy | None = None,
        transport_timeout_seconds: float = 10.0,
        poll_interval_seconds: float = 30.0,
        shutdown_grace_seconds: float = 5.0,
        run_scheduler: bool = True,
    ):
        """Wire the registration engine.

        Args:
            store: Offline store for deferred submissions.
            transport: Transport to the tax authority.
            observers: Receivers of reconciliation outcomes.
            codec: Payload codec (defaults to the standard VAT table).
            backoff: Retry policy for reconciliation.
            transport_timeout_seconds: Default bound for one round trip.
            poll_interval_seconds: Interval between offline store scans.
            shutdown_grace_seconds: Grace period for in-flight attempts on close.
            run_scheduler: If False, deferred entries drain only via sync().
        """
        self.store = store
        self.transport = transport
        self.validator = DocumentValidator()
        self.run_scheduler = run_scheduler
        self.scheduler = ResyncScheduler(
            store=store,
            observers=observers,
            backoff=backoff,
            poll_interval_seconds=poll_interval_seconds,
            shutdown_grace_seconds=shutdown_grace_seconds,
        )
        self.registration = RegistrationService(
            transport=transport,
            store=store,
            codec=codec,
            validator=self.validator,
            default_timeout=transport_timeout_seconds,
            on_deferred=self.scheduler.notify_pending,
        )
        self.scheduler.registration = self.registration
        self._open = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "FiscalClient":
        """Build a client with the adapters selected by configuration."""
        observers: list[OutcomeObserverPort] = []
        if settings.notification_backend == "stdout":
            observers.append(StdoutOutcomeObserver(verbose=settings.debug))

        return cls(
            store=SQLiteOfflineStore(db_path=settings.store_sqlite_path),
            transport=HttpTransport(
                api_url=settings.authority_url,
                api_key=settings.authority_api_key,
                timeout=settings.transport_timeout_seconds,
            ),
            observers=observers,
            codec=DocumentCodec(
                VatTable(
                    standard=Decimal(str(settings.vat_standard_percent)),
                    reduced=Decimal(str(settings.vat_reduced_percent)),
                )
            ),
            backoff=BackoffPolicy(
                base_seconds=settings.backoff_base_seconds,
                max_seconds=settings.backoff_max_seconds,
                jitter_ratio=settings.backoff_jitter_ratio,
            ),
            transport_timeout_seconds=settings.transport_timeout_seconds,
            poll_interval_seconds=settings.resync_poll_interval_seconds,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )

    async def __aenter__(self) -> "FiscalClient":
        """Claim the process slot and start background reconciliation.

        Raises:
            RuntimeError: If another client is already open in this process.
        """
        if FiscalClient._active is not None:
            raise RuntimeError("A FiscalClient is already open in this process")
        FiscalClient._active = self
        self._open = True
        if self.run_scheduler:
            self.scheduler.start_background()
        logger.info("Fiscal client opened")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop reconciliation and release adapters."""
        try:
            await self.scheduler.stop()
        finally:
            try:
                await self.transport.close()
            finally:
                try:
                    await self.store.close()
                finally:
                    self._open = False
                    if FiscalClient._active is self:
                        FiscalClient._active = None
                    logger.info("Fiscal client closed")

    def _require_open(self) -> None:
        if not self._open:
            raise RuntimeError("FiscalClient must be used inside 'async with'")

    async def register_receipt(
        self,
        receipt: Receipt,
        print_context: PrintContext | None = None,
        timeout: float | None = None,
    ) -> RegistrationOutcome:
        """Register a receipt, deferring it with an OKP if the authority is offline."""
        self._require_open()
        if not isinstance(receipt, Receipt):
            raise TypeError(f"Expected Receipt, got {type(receipt).__name__}")
        return await self.registration.submit(receipt, print_context, timeout)

    async def register_location(
        self, location: CashRegisterLocation, timeout: float | None = None
    ) -> RegistrationOutcome:
        """Register the current location of a cash register."""
        self._require_open()
        if not isinstance(location, CashRegisterLocation):
            raise TypeError(f"Expected CashRegisterLocation, got {type(location).__name__}")
        return await self.registration.submit(location, timeout=timeout)

    def validate(self, document: Document) -> ValidationResult:
        """Check a document locally without submitting it."""
        return self.validator.validate(document)

    async def pending(self, cash_register_code: str | None = None) -> list[PendingSubmission]:
        """Deferred submissions still awaiting reconciliation."""
        self._require_open()
        return await self.store.list_pending(cash_register_code)

    async def lookup(self, okp: str) -> str:
        """State of an offline code: 'pending', 'reconciled' or 'unknown'."""
        self._require_open()
        if await self.store.is_reconciled(okp):
            return "reconciled"
        if any(p.okp == okp for p in await self.store.list_pending()):
            return "pending"
        return "unknown"

    async def stats(self) -> QueueStats:
        self._require_open()
        return await self.store.get_stats()

    async def sync(self) -> ResyncResult:
        """Drain the offline store once, now."""
        self._require_open()
        return await self.scheduler.run_once()
