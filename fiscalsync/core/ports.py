"""Port interfaces for the fiscal registration core.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - TransportPort: Deliver a serialized document to the authority
   - OfflineStorePort: Durable per-register FIFO of deferred submissions
   - OutcomeObserverPort: Surface reconciliation outcomes

2. **Driving Ports** (adapters/external systems call into core)
   - RegistrationPort: Submit documents and reconcile deferred ones
"""

from abc import ABC, abstractmethod

from .models import (
    AuthorityResponse,
    Document,
    OutcomeStatus,
    PendingSubmission,
    PrintContext,
    QueueStats,
    RegistrationOutcome,
)


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class TransportPort(ABC):
    """Port for sending serialized documents to the fiscal authority.

    The core is agnostic to whether the transport is HTTP, a serial link
    or a queue bridge.

    Implementations must:
    - Return an AuthorityResponse for every well-formed answer,
      including refusals
    - Raise ConnectivityError for timeouts, DNS/transport failures and
      transient server-side unavailability
    - Raise MalformedResponseError when the answer cannot be interpreted
    """

    @abstractmethod
    async def send(self, payload: str, timeout: float) -> AuthorityResponse:
        """Send a serialized document and wait for the authority's answer.

        Args:
            payload: Canonical JSON document as produced by DocumentCodec.
            timeout: Seconds to wait for the round trip.

        Returns:
            AuthorityResponse carrying an identifier or a structured refusal.

        Raises:
            ConnectivityError: If the authority is unreachable or timed out.
            MalformedResponseError: If the answer is not a valid response.
        """

    async def close(self) -> None:
        """Release transport resources. Default is a no-op."""


class OfflineStorePort(ABC):
    """Port for durable, ordered persistence of deferred submissions.

    The store is a strict FIFO per cash register code, ordered by the
    per-register sequence. Entries of different registers are independent.

    Implementations must handle:
    - Survival across process restarts (the store is the only source
      of truth for pending work)
    - Mutual exclusion of enqueue/peek/dequeue per cash register
    - Atomic append and atomic remove-after-success
    - Duplicate detection by OKP and payload digest, including
      entries already reconciled
    """

    @abstractmethod
    async def next_sequence(self, cash_register_code: str) -> int:
        """Durably allocate the next offline sequence number for a register.

        Raises:
            DurabilityError: If the counter cannot be persisted.
        """

    @abstractmethod
    async def enqueue(self, submission: PendingSubmission) -> None:
        """Durably append a submission to its register's queue.

        Raises:
            DuplicateSubmissionError: If the OKP or payload digest is already
                pending or reconciled.
            DurabilityError: If the entry cannot be persisted.
        """

    @abstractmethod
    async def peek_oldest(self, cash_register_code: str) -> PendingSubmission | None:
        """Return the oldest pending submission of a register, or None."""

    @abstractmethod
    async def dequeue(
        self,
        submission: PendingSubmission,
        status: OutcomeStatus,
        authority_id: str | None = None,
    ) -> None:
        """Remove a reconciled submission and record its OKP as resolved.

        Removal and the resolution record happen in one transaction.

        Raises:
            ValueError: If the submission is not the register's oldest entry.
            DurabilityError: If the change cannot be persisted.
        """

    @abstractmethod
    async def record_attempt(self, okp: str, error: str | None = None) -> int:
        """Durably increment the attempt count of a pending submission.

        Returns:
            The new attempt count.
        """

    @abstractmethod
    async def pending_registers(self) -> list[str]:
        """Cash register codes that have at least one pending submission."""

    @abstractmethod
    async def list_pending(
        self, cash_register_code: str | None = None
    ) -> list[PendingSubmission]:
        """Pending submissions in FIFO order, optionally for one register."""

    @abstractmethod
    async def is_reconciled(self, okp: str) -> bool:
        """Whether an OKP has already been resolved by the authority."""

    @abstractmethod
    async def get_stats(self) -> QueueStats:
        """Summary statistics for reporting."""

    async def close(self) -> None:
        """Release store resources. Default is a no-op."""


class OutcomeObserverPort(ABC):
    """Port for surfacing reconciliation outcomes.

    The original caller of ``submit`` is not waiting for reconciliation;
    observers are how the rest of the system learns a deferred document
    was finally accepted or rejected.
    """

    @abstractmethod
    async def notify(
        self, submission: PendingSubmission, outcome: RegistrationOutcome
    ) -> None:
        """Report the terminal outcome of a deferred submission.

        Raises:
            Exception: If the channel is unavailable. The caller logs the
                error; the submission stays reconciled.
        """


# ============================================================================
# DRIVING PORTS (Adapters/external systems call into core)
# ============================================================================


class RegistrationPort(ABC):
    """Port for registering documents with the authority.

    Implementations of this port live in the core
    (registration_service.py). The process-scoped client, the CLI and
    the resync scheduler call these methods.
    """

    @abstractmethod
    async def submit(
        self,
        document: Document,
        print_context: PrintContext | None = None,
        timeout: float | None = None,
    ) -> RegistrationOutcome:
        """Validate and register a document.

        Returns:
            Accepted, Deferred or Rejected.

        Raises:
            ValidationError: If the document is invalid (no network activity).
            DurabilityError: If a deferral cannot be persisted.
            MalformedResponseError: If the authority answer is unreadable.
        """

    @abstractmethod
    async def reconcile(self, submission: PendingSubmission) -> RegistrationOutcome:
        """Resend a deferred submission.

        Returns:
            Accepted or Rejected, carrying the submission's OKP.

        Raises:
            ConnectivityError: If the authority is still unreachable.
            MalformedResponseError: If the authority answer is unreadable.
        """
