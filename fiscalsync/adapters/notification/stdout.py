"""Stdout notification adapter.

Implements OutcomeObserverPort by printing reconciliation outcomes to the
terminal in the same wording the cash register shows for online results.
"""

import asyncio
import logging

from fiscalsync.core.models import (
    Accepted,
    Deferred,
    PendingSubmission,
    RegistrationOutcome,
)
from fiscalsync.core.ports import OutcomeObserverPort

logger = logging.getLogger(__name__)


def describe_outcome(outcome: RegistrationOutcome) -> str:
    """Render a one-line, operator-facing description of an outcome."""
    subject = outcome.document_kind.value.capitalize()
    if isinstance(outcome, Accepted):
        message = (
            f"{subject} was registered in ONLINE mode, with unique ID: "
            f"{outcome.authority_id}"
        )
        if outcome.okp:
            message += f" (offline code {outcome.okp})"
        return message
    if isinstance(outcome, Deferred):
        return (
            f"{subject} was registered in OFFLINE mode, no ID is available. "
            f"As replacement for ID, OKP is used: {outcome.okp}"
        )
    message = (
        f"eKasa system rejected our request for {outcome.document_kind.value} "
        f"registration. Error #{outcome.code}: {outcome.message}"
    )
    if outcome.okp:
        message += f" (offline code {outcome.okp})"
    return message


class StdoutOutcomeObserver(OutcomeObserverPort):
    """Prints reconciliation outcomes to stdout."""

    def __init__(self, verbose: bool = False):
        """Initialize stdout observer.

        Args:
            verbose: If True, include queue details of the submission.
        """
        self.verbose = verbose

    async def notify(
        self, submission: PendingSubmission, outcome: RegistrationOutcome
    ) -> None:
        """Print the terminal outcome of a deferred submission."""
        lines = [
            f"[{submission.cash_register_code}] {describe_outcome(outcome)}",
        ]
        if self.verbose:
            lines.append(
                f"  sequence={submission.sequence} attempts={submission.attempt_count} "
                f"issued_at={submission.issued_at.isoformat()}"
            )
        await asyncio.to_thread(print, "\n".join(lines))
        logger.debug(f"Printed outcome for {submission.okp}")
