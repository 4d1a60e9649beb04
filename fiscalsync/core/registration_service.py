"""Registration of receipts and location changes with the authority.

This module implements the per-submission state machine:

    validate -> attempt online -> Accepted | Rejected | Deferred

A deferral is persisted to the offline store before ``submit`` returns,
so the caller is never blocked on retries and no deferred document can
be lost. Deferred submissions are later reconciled through the same
transport path by the resync scheduler.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from .codec import DocumentCodec
from .errors import ConnectivityError, ValidationError
from .models import (
    Accepted,
    AuthorityResponse,
    Deferred,
    Document,
    DocumentKind,
    PendingSubmission,
    PrintContext,
    RegistrationOutcome,
    Rejected,
)
from .okp import OkpGenerator
from .ports import OfflineStorePort, RegistrationPort, TransportPort
from .validator import DocumentValidator

logger = logging.getLogger(__name__)


class RegistrationService(RegistrationPort):
    """Implements submission and reconciliation of fiscal documents.

    This service orchestrates:
    - Validation (local, synchronous, before any network activity)
    - The online round trip through the transport
    - Classification of the answer into the three outcomes
    - Durable deferral with an offline code when the authority is unreachable
    """

    def __init__(
        self,
        transport: TransportPort,
        store: OfflineStorePort,
        codec: DocumentCodec | None = None,
        validator: DocumentValidator | None = None,
        okp_generator: OkpGenerator | None = None,
        default_timeout: float = 10.0,
        on_deferred: Callable[[str], None] | None = None,
    ):
        self.transport = transport
        self.store = store
        self.codec = codec or DocumentCodec()
        self.validator = validator or DocumentValidator()
        self.okp_generator = okp_generator or OkpGenerator()
        self.default_timeout = default_timeout
        # Hook used to wake the resync scheduler for a register
        self.on_deferred = on_deferred

    async def submit(
        self,
        document: Document,
        print_context: PrintContext | None = None,
        timeout: float | None = None,
    ) -> RegistrationOutcome:
        """Validate and register a document, deferring it if offline."""
        result = self.validator.validate(document)
        if not result.is_valid:
            logger.info(
                f"Rejected invalid {document.document_kind.value} for "
                f"{document.cash_register_code!r} locally: "
                f"{len(result.failures)} validation failures"
            )
            raise ValidationError(result.failures)

        issued_at = datetime.now(timezone.utc)
        envelope = self.codec.envelope(document, issued_at)
        payload = self.codec.encode(envelope)
        timeout = self.default_timeout if timeout is None else timeout

        try:
            response = await self._send(payload, timeout)
        except ConnectivityError as e:
            logger.warning(
                f"Authority unreachable for {document.cash_register_code}, "
                f"registering {document.document_kind.value} offline: {e}"
            )
            return await self._defer(document, envelope, issued_at, print_context, str(e))
        except asyncio.CancelledError:
            # The request may already have reached the authority; treat it
            # as a connectivity failure so the document is never lost.
            logger.warning(
                f"Submission for {document.cash_register_code} cancelled in flight, "
                f"registering offline"
            )
            await asyncio.shield(
                self._defer(document, envelope, issued_at, print_context, "cancelled")
            )
            raise

        outcome = self._classify(
            response,
            cash_register_code=document.cash_register_code,
            document_kind=document.document_kind,
            issued_at=issued_at,
            print_context=print_context,
        )
        self._log_outcome(outcome)
        return outcome

    async def reconcile(self, submission: PendingSubmission) -> RegistrationOutcome:
        """Resend a deferred submission exactly as it was persisted."""
        logger.debug(
            f"Reconciling {submission.okp} for {submission.cash_register_code} "
            f"(attempt {submission.attempt_count + 1})"
        )
        response = await self._send(submission.payload, self.default_timeout)
        outcome = self._classify(
            response,
            cash_register_code=submission.cash_register_code,
            document_kind=submission.document_kind,
            issued_at=submission.issued_at,
            okp=submission.okp,
        )
        self._log_outcome(outcome)
        return outcome

    async def _send(self, payload: str, timeout: float) -> AuthorityResponse:
        """One bounded round trip; a timeout counts as a connectivity failure."""
        try:
            return await asyncio.wait_for(
                self.transport.send(payload, timeout), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ConnectivityError(f"No answer from authority within {timeout}s") from e

    async def _defer(
        self,
        document: Document,
        envelope: dict[str, Any],
        issued_at: datetime,
        print_context: PrintContext | None,
        reason: str,
    ) -> Deferred:
        """Persist a submission for later reconciliation and return its OKP.

        Raises:
            DurabilityError: If the store cannot persist the submission.
            DuplicateSubmissionError: If the submission was already queued.
        """
        code = document.cash_register_code
        sequence = await self.store.next_sequence(code)
        okp = self.okp_generator.generate(
            code, sequence, issued_at, self.codec.digest(self.codec.encode(envelope))
        )
        payload = self.codec.encode(self.codec.with_offline_code(envelope, okp, sequence))

        submission = PendingSubmission(
            okp=okp,
            cash_register_code=code,
            document_kind=document.document_kind,
            payload=payload,
            payload_digest=self.codec.digest(payload),
            sequence=sequence,
            enqueued_at=datetime.now(timezone.utc),
            issued_at=issued_at,
            attempt_count=0,
            last_error=reason,
        )
        try:
            await self.store.enqueue(submission)
        except Exception:
            logger.error(
                f"Failed to persist offline {document.document_kind.value} {okp} "
                f"for {code}",
                exc_info=True,
            )
            raise

        logger.info(f"Queued offline submission {okp} (sequence {sequence}) for {code}")
        if self.on_deferred is not None:
            self.on_deferred(code)

        return Deferred(
            cash_register_code=code,
            document_kind=document.document_kind,
            issued_at=issued_at,
            okp=okp,
            sequence=sequence,
            print_context=print_context,
        )

    @staticmethod
    def _classify(
        response: AuthorityResponse,
        cash_register_code: str,
        document_kind: DocumentKind,
        issued_at: datetime,
        print_context: PrintContext | None = None,
        okp: str | None = None,
    ) -> Accepted | Rejected:
        if response.accepted:
            assert response.authority_id is not None
            return Accepted(
                cash_register_code=cash_register_code,
                document_kind=document_kind,
                issued_at=issued_at,
                authority_id=response.authority_id,
                okp=okp,
                print_context=print_context,
            )
        assert response.error_code is not None
        return Rejected(
            cash_register_code=cash_register_code,
            document_kind=document_kind,
            issued_at=issued_at,
            code=response.error_code,
            message=response.error_message or "",
            okp=okp,
            print_context=print_context,
        )

    @staticmethod
    def _log_outcome(outcome: Accepted | Rejected) -> None:
        suffix = f" (offline code {outcome.okp})" if outcome.okp else ""
        if isinstance(outcome, Accepted):
            logger.info(
                f"{outcome.document_kind.value.capitalize()} for "
                f"{outcome.cash_register_code} registered with ID "
                f"{outcome.authority_id}{suffix}"
            )
        else:
            logger.warning(
                f"Authority rejected {outcome.document_kind.value} for "
                f"{outcome.cash_register_code}{suffix}: "
                f"#{outcome.code} {outcome.message}"
            )
