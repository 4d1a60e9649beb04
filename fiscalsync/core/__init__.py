"""Core domain logic for the fiscal registration engine.

This package contains zero external dependencies and represents
the pure business logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .models import (
    Accepted,
    AuthorityResponse,
    CashRegisterLocation,
    Deferred,
    DocumentKind,
    GeoCoordinates,
    OtherLocation,
    OutcomeStatus,
    Payment,
    PendingSubmission,
    PhysicalAddress,
    PrintContext,
    PrintTarget,
    Quantity,
    Receipt,
    ReceiptItemType,
    ReceiptLine,
    Rejected,
    ValidationFailure,
    ValidationResult,
    VatRate,
)

__all__ = [
    "Accepted",
    "AuthorityResponse",
    "CashRegisterLocation",
    "Deferred",
    "DocumentKind",
    "GeoCoordinates",
    "OtherLocation",
    "OutcomeStatus",
    "Payment",
    "PendingSubmission",
    "PhysicalAddress",
    "PrintContext",
    "PrintTarget",
    "Quantity",
    "Receipt",
    "ReceiptItemType",
    "ReceiptLine",
    "Rejected",
    "ValidationFailure",
    "ValidationResult",
    "VatRate",
]
