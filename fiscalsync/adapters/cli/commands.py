"""CLI command implementations for operating a fiscal client.

Provides human-initiated actions through command-line interface.

This adapter maps CLI commands (status, pending, lookup, submit, validate,
sync) to FiscalClient operations. It handles CLI-specific formatting and
error reporting: every command returns a result dictionary instead of raising.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fiscalsync.adapters.notification.stdout import describe_outcome
from fiscalsync.core.codec import DocumentCodec
from fiscalsync.core.errors import FiscalSyncError, ValidationError
from fiscalsync.core.models import (
    Accepted,
    Deferred,
    DocumentKind,
    PendingSubmission,
    PrintContext,
    PrintTarget,
    Receipt,
    RegistrationOutcome,
    ValidationFailure,
)

if TYPE_CHECKING:
    from fiscalsync.client import FiscalClient

logger = logging.getLogger(__name__)


class CLICommandHandler:
    """Handles CLI commands by delegating to a FiscalClient."""

    def __init__(self, client: "FiscalClient"):
        """Initialize the CLI command handler.

        Args:
            client: Open FiscalClient to execute commands against.
        """
        self.client = client

    async def get_status(self) -> dict[str, Any]:
        """Summarize the offline queue."""
        try:
            stats = await self.client.stats()
        except FiscalSyncError as e:
            logger.error(f"Failed to read queue status: {e}")
            return {"status": "error", "operation": "status", "message": str(e)}

        return {
            "status": "success",
            "operation": "status",
            "data": {
                "total_pending": stats.total_pending,
                "pending_by_register": dict(stats.pending_by_register),
                "reconciled_by_status": dict(stats.reconciled_by_status),
                "oldest_pending_age_seconds": stats.oldest_pending_age_seconds,
            },
        }

    async def list_pending(
        self, cash_register_code: str | None = None
    ) -> dict[str, Any]:
        """List deferred submissions, optionally for one cash register."""
        try:
            pending = await self.client.pending(cash_register_code)
        except FiscalSyncError as e:
            logger.error(f"Failed to list pending submissions: {e}")
            return {"status": "error", "operation": "pending", "message": str(e)}

        return {
            "status": "success",
            "operation": "pending",
            "count": len(pending),
            "data": [self._submission_to_dict(p) for p in pending],
        }

    async def lookup_okp(self, okp: str) -> dict[str, Any]:
        """Report whether an offline code is still queued or already reconciled."""
        try:
            state = await self.client.lookup(okp)
        except FiscalSyncError as e:
            logger.error(f"Failed to look up {okp}: {e}")
            return {"status": "error", "operation": "lookup", "message": str(e)}

        return {
            "status": "success",
            "operation": "lookup",
            "data": {"okp": okp, "state": state},
        }

    async def submit_document(
        self,
        file: str,
        kind: str = "receipt",
        print_target: str | None = None,
        email_to: str | None = None,
    ) -> dict[str, Any]:
        """Register a receipt or location read from a JSON file.

        Args:
            file: Path to the JSON document.
            kind: 'receipt' or 'location'.
            print_target: Optional 'pos', 'pdf' or 'email' for receipts.
            email_to: Recipient when print_target is 'email'.
        """
        try:
            document_kind = DocumentKind(kind)
            text = await asyncio.to_thread(Path(file).read_text, encoding="utf-8")
            document = DocumentCodec.decode_document(document_kind, json.loads(text))

            if isinstance(document, Receipt):
                print_context = self._print_context(print_target, email_to)
                outcome = await self.client.register_receipt(document, print_context)
            else:
                outcome = await self.client.register_location(document)

        except ValidationError as e:
            logger.warning(f"Document in {file} is invalid: {e}")
            return {
                "status": "error",
                "operation": "submit",
                "message": "Document is invalid",
                "failures": [self._failure_to_dict(f) for f in e.failures],
            }
        except (OSError, ValueError, FiscalSyncError) as e:
            logger.error(f"Failed to submit {file}: {e}")
            return {"status": "error", "operation": "submit", "message": str(e)}

        return {
            "status": "success",
            "operation": "submit",
            "data": self._outcome_to_dict(outcome),
            "message": describe_outcome(outcome),
        }

    async def validate_document(
        self, document: dict[str, Any], kind: str = "receipt"
    ) -> dict[str, Any]:
        """Validate an inline JSON document without submitting it."""
        try:
            decoded = DocumentCodec.decode_document(DocumentKind(kind), document)
        except ValueError as e:
            return {"status": "error", "operation": "validate", "message": str(e)}

        result = self.client.validate(decoded)
        return {
            "status": "success",
            "operation": "validate",
            "valid": result.is_valid,
            "failures": [self._failure_to_dict(f) for f in result.failures],
        }

    async def sync(self) -> dict[str, Any]:
        """Reconcile the offline queue once, now."""
        try:
            result = await self.client.sync()
        except FiscalSyncError as e:
            logger.error(f"Resync failed: {e}")
            return {"status": "error", "operation": "sync", "message": str(e)}

        return {
            "status": "success",
            "operation": "sync",
            "data": {
                "accepted": result.accepted,
                "rejected": result.rejected,
                "still_pending": result.still_pending,
                "failed_registers": list(result.failed_registers),
            },
        }

    @staticmethod
    def _print_context(
        print_target: str | None, email_to: str | None
    ) -> PrintContext | None:
        if print_target is None:
            return None
        target = PrintTarget(print_target)
        if target is PrintTarget.EMAIL:
            return PrintContext.email(to=email_to or "")
        if target is PrintTarget.PDF:
            return PrintContext.pdf()
        return PrintContext.pos()

    @staticmethod
    def _outcome_to_dict(outcome: RegistrationOutcome) -> dict[str, Any]:
        data: dict[str, Any] = {
            "outcome": outcome.outcome_status.value,
            "cash_register_code": outcome.cash_register_code,
            "kind": outcome.document_kind.value,
            "issued_at": outcome.issued_at.isoformat(),
        }
        if isinstance(outcome, Accepted):
            data["authority_id"] = outcome.authority_id
        elif isinstance(outcome, Deferred):
            data["okp"] = outcome.okp
            data["sequence"] = outcome.sequence
        else:
            data["error_code"] = outcome.code
            data["error_message"] = outcome.message
        return data

    @staticmethod
    def _submission_to_dict(submission: PendingSubmission) -> dict[str, Any]:
        return {
            "okp": submission.okp,
            "cash_register_code": submission.cash_register_code,
            "kind": submission.document_kind.value,
            "sequence": submission.sequence,
            "enqueued_at": submission.enqueued_at.isoformat(),
            "attempt_count": submission.attempt_count,
            "last_error": submission.last_error,
        }

    @staticmethod
    def _failure_to_dict(failure: ValidationFailure) -> dict[str, str]:
        return {"field": failure.field, "message": failure.message}
