"""Error taxonomy of the fiscal registration core.

Only ValidationError, DurabilityError, DuplicateSubmissionError and
MalformedResponseError ever reach the caller of ``submit``.
ConnectivityError is absorbed into a Deferred outcome.
"""

from .models import ValidationFailure


class FiscalSyncError(Exception):
    """Base class for all registration core errors."""


class ValidationError(FiscalSyncError):
    """A caller-composed document violates a data invariant."""

    def __init__(self, failures: tuple[ValidationFailure, ...]):
        self.failures = tuple(failures)
        summary = "; ".join(f"{f.field}: {f.message}" for f in self.failures)
        super().__init__(f"Document is invalid ({len(self.failures)} failures): {summary}")


class ConnectivityError(FiscalSyncError):
    """The authority could not be reached or did not answer in time."""


class MalformedResponseError(FiscalSyncError):
    """The authority answered with something that is not a valid response."""


class DurabilityError(FiscalSyncError):
    """The offline store could not durably persist or remove an entry."""


class DuplicateSubmissionError(FiscalSyncError):
    """An OKP or payload was already queued or reconciled."""

    def __init__(self, okp: str, message: str | None = None):
        self.okp = okp
        super().__init__(message or f"Submission {okp} was already registered")
