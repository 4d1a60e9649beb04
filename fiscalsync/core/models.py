"""Domain models for the fiscal registration core.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain. Monetary values
are fixed-point ``Decimal`` instances; floats never enter the domain.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

TWO_PLACES = Decimal("0.01")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Convert a caller-supplied amount to Decimal.

    Floats are refused: they cannot represent fiscal amounts exactly.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(
            f"amounts must be Decimal, int or str, got {type(value).__name__}"
        )
    return Decimal(value)


def round2(value: Decimal) -> Decimal:
    """Round to two fractional digits, half away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def fractional_digits(value: Decimal) -> int:
    """Number of significant fractional digits in a decimal value."""
    exponent = value.normalize().as_tuple().exponent
    if not isinstance(exponent, int):  # NaN / Infinity
        return 0
    return max(0, -exponent)


class VatRate(Enum):
    """VAT category of a receipt line.

    The numeric percentage is resolved outside the domain (see VatTable).
    """

    ZERO = "zero"
    REDUCED = "reduced"
    STANDARD = "standard"


class ReceiptItemType(Enum):
    """Kind of receipt line."""

    POSITIVE = "positive"
    NEGATIVE = "negative"  # discount
    RETURN = "return"  # returned item
    RETURNED_CONTAINER = "returned_container"  # returned packaging


class DocumentKind(Enum):
    """Kind of document submitted to the authority."""

    RECEIPT = "receipt"
    LOCATION = "location"


class OutcomeStatus(Enum):
    """Discriminator of a RegistrationOutcome."""

    ACCEPTED = "accepted"
    DEFERRED = "deferred"
    REJECTED = "rejected"


class PrintTarget(Enum):
    """Where the surrounding print pipeline should deliver a receipt."""

    POS = "pos"
    PDF = "pdf"
    EMAIL = "email"


@dataclass(frozen=True)
class Quantity:
    """Quantity of a receipt line with its unit of measure."""

    amount: Decimal
    unit: str

    def __post_init__(self) -> None:
        """Normalize amount to Decimal."""
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True)
class ReceiptLine:
    """A single line of a receipt. Owned by exactly one Receipt."""

    type: ReceiptItemType
    name: str
    unit_price: Decimal
    quantity: Quantity
    price: Decimal  # line total
    vat_rate: VatRate | None

    def __post_init__(self) -> None:
        """Normalize amounts to Decimal."""
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        object.__setattr__(self, "price", to_decimal(self.price))


@dataclass(frozen=True)
class Payment:
    """A payment on a receipt. Negative amounts represent change returned."""

    label: str
    amount: Decimal

    def __post_init__(self) -> None:
        """Normalize amount to Decimal."""
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True)
class Receipt:
    """Aggregate root of a sale.

    Constructed by the caller, validated once and submitted exactly once.
    Lines and payments are stored as tuples so a receipt cannot change
    between validation and submission.
    """

    cash_register_code: str
    items: tuple[ReceiptLine, ...]
    payments: tuple[Payment, ...] | None = None
    header_text: str | None = None
    footer_text: str | None = None

    def __post_init__(self) -> None:
        """Freeze line and payment collections."""
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))
        if self.payments is not None and not isinstance(self.payments, tuple):
            object.__setattr__(self, "payments", tuple(self.payments))

    @property
    def total(self) -> Decimal:
        """Sum of line totals."""
        return sum((item.price for item in self.items), Decimal("0.00"))

    @property
    def document_kind(self) -> DocumentKind:
        return DocumentKind.RECEIPT


@dataclass(frozen=True)
class GeoCoordinates:
    """GPS position of a portable cash register."""

    longitude: Decimal
    latitude: Decimal

    def __post_init__(self) -> None:
        """Normalize coordinates to Decimal."""
        object.__setattr__(self, "longitude", to_decimal(self.longitude))
        object.__setattr__(self, "latitude", to_decimal(self.latitude))


@dataclass(frozen=True)
class PhysicalAddress:
    """Structured postal address of a cash register."""

    street_name: str | None
    municipality: str
    postal_code: str
    building_number: str | None = None
    property_registration_number: int | None = None


@dataclass(frozen=True)
class OtherLocation:
    """Free-form location, e.g. a vehicle licence plate."""

    text: str


Location: TypeAlias = GeoCoordinates | PhysicalAddress | OtherLocation


@dataclass(frozen=True)
class CashRegisterLocation:
    """A location change paired with the cash register it applies to."""

    cash_register_code: str
    location: Location

    @property
    def document_kind(self) -> DocumentKind:
        return DocumentKind.LOCATION


Document: TypeAlias = Receipt | CashRegisterLocation


@dataclass(frozen=True)
class PrintContext:
    """Print-intent descriptor carried through registration untouched.

    The registration core never renders anything; it hands this back on
    the outcome so the print pipeline knows how to deliver the receipt.
    """

    target: PrintTarget = PrintTarget.POS
    options: dict[str, Any] | MappingProxyType[str, Any] = field(
        default_factory=dict
    )  # converted to proxy in __post_init__

    def __post_init__(self) -> None:
        """Validate target options and convert them to a read-only proxy."""
        if self.target is PrintTarget.EMAIL and not self.options.get("to"):
            raise ValueError("email print context requires a 'to' recipient")
        if isinstance(self.options, dict):
            object.__setattr__(self, "options", MappingProxyType(self.options))

    @classmethod
    def pos(
        cls,
        open_drawer: bool | None = None,
        print_logo: bool | None = None,
        logo_memory_address: int | None = None,
    ) -> "PrintContext":
        options = {
            key: value
            for key, value in (
                ("open_drawer", open_drawer),
                ("print_logo", print_logo),
                ("logo_memory_address", logo_memory_address),
            )
            if value is not None
        }
        return cls(PrintTarget.POS, options)

    @classmethod
    def pdf(cls) -> "PrintContext":
        return cls(PrintTarget.PDF)

    @classmethod
    def email(
        cls,
        to: str,
        recipient_display_name: str | None = None,
        subject: str | None = None,
        body: str | None = None,
    ) -> "PrintContext":
        options: dict[str, Any] = {"to": to}
        if recipient_display_name:
            options["recipient_display_name"] = recipient_display_name
        if subject:
            options["subject"] = subject
        if body:
            options["body"] = body
        return cls(PrintTarget.EMAIL, options)


@dataclass(frozen=True)
class ValidationFailure:
    """A single violated invariant, addressed by field path."""

    field: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    """Ordered failures found by the validator. Empty iff valid."""

    failures: tuple[ValidationFailure, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class AuthorityResponse:
    """Well-formed answer of the authority: an identifier or a refusal."""

    authority_id: str | None = None
    error_code: int | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        """Exactly one of identifier and error code must be present."""
        if (self.authority_id is None) == (self.error_code is None):
            raise ValueError(
                "AuthorityResponse needs either authority_id or error_code"
            )

    @property
    def accepted(self) -> bool:
        return self.authority_id is not None

    @classmethod
    def success(cls, authority_id: str) -> "AuthorityResponse":
        return cls(authority_id=authority_id)

    @classmethod
    def rejection(cls, code: int, message: str) -> "AuthorityResponse":
        return cls(error_code=code, error_message=message)


@dataclass(frozen=True)
class Accepted:
    """The authority confirmed the document and issued an identifier."""

    cash_register_code: str
    document_kind: DocumentKind
    issued_at: datetime
    authority_id: str
    okp: str | None = None  # set when the acceptance reconciles a deferral
    print_context: PrintContext | None = None

    @property
    def outcome_status(self) -> OutcomeStatus:
        return OutcomeStatus.ACCEPTED


@dataclass(frozen=True)
class Deferred:
    """The authority was unreachable; the OKP stands in for its identifier."""

    cash_register_code: str
    document_kind: DocumentKind
    issued_at: datetime
    okp: str
    sequence: int
    print_context: PrintContext | None = None

    @property
    def outcome_status(self) -> OutcomeStatus:
        return OutcomeStatus.DEFERRED


@dataclass(frozen=True)
class Rejected:
    """The authority refused the document. Terminal, never retried."""

    cash_register_code: str
    document_kind: DocumentKind
    issued_at: datetime
    code: int
    message: str
    okp: str | None = None
    print_context: PrintContext | None = None

    @property
    def outcome_status(self) -> OutcomeStatus:
        return OutcomeStatus.REJECTED


RegistrationOutcome: TypeAlias = Accepted | Deferred | Rejected


@dataclass(frozen=True)
class PendingSubmission:
    """A deferred submission waiting in the offline store.

    Created when an attempt yields Deferred; removed only when
    reconciliation yields Accepted or Rejected.
    """

    okp: str
    cash_register_code: str
    document_kind: DocumentKind
    payload: str
    payload_digest: str
    sequence: int
    enqueued_at: datetime
    issued_at: datetime
    attempt_count: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        """Validate pending submission invariants on creation or load."""
        if not self.okp or not self.okp.strip():
            raise ValueError("okp must be a non-empty string")
        if not self.cash_register_code or not self.cash_register_code.strip():
            raise ValueError("cash_register_code must be a non-empty string")
        if self.attempt_count < 0:
            raise ValueError(
                f"attempt_count must be non-negative, got {self.attempt_count}"
            )
        if self.sequence < 1:
            raise ValueError(f"sequence must be >= 1, got {self.sequence}")


@dataclass(frozen=True)
class QueueStats:
    """Statistics about the offline store."""

    total_pending: int
    pending_by_register: Mapping[str, int]  # code -> count (immutable at runtime)
    reconciled_by_status: Mapping[str, int]  # status -> count (immutable at runtime)
    oldest_pending_age_seconds: float | None  # None if nothing is pending

    def __post_init__(self) -> None:
        """Convert mutable dicts to immutable proxies."""
        object.__setattr__(
            self, "pending_by_register", MappingProxyType(dict(self.pending_by_register))
        )
        object.__setattr__(
            self, "reconciled_by_status", MappingProxyType(dict(self.reconciled_by_status))
        )


@dataclass(frozen=True)
class ResyncResult:
    """Summary of a one-shot drain of the offline store."""

    accepted: int
    rejected: int
    still_pending: int
    failed_registers: tuple[str, ...] = ()
