"""Document-level validation rules.

Pure functions over domain objects: no I/O, no mutation. Every check
runs and every failure is collected so a caller sees the complete
picture, not just the first problem.
"""

import re
from decimal import Decimal

from .models import (
    CashRegisterLocation,
    Document,
    GeoCoordinates,
    OtherLocation,
    PhysicalAddress,
    Receipt,
    ReceiptItemType,
    ReceiptLine,
    ValidationFailure,
    ValidationResult,
    VatRate,
    fractional_digits,
    round2,
)

# Characters the receipt printer can render: printable ASCII, Latin-1
# Supplement and Latin Extended-A (covers Central European diacritics),
# the euro sign and newlines.
PRINTABLE_TEXT = re.compile(r"[\n\x20-\x7E\u00A0-\u017F\u20AC]*")

ORP_CODE = re.compile(r"\d{17}")
POSTAL_CODE = re.compile(r"\d{5}")

MAX_UNIT_PRICE_DIGITS = 6
MAX_QUANTITY_DIGITS = 3
MAX_AMOUNT_DIGITS = 2
MAX_COORDINATE_DIGITS = 6
MAX_OTHER_LOCATION_LENGTH = 250

_NON_POSITIVE_TYPES = {
    ReceiptItemType.NEGATIVE,
    ReceiptItemType.RETURN,
    ReceiptItemType.RETURNED_CONTAINER,
}


def is_finite_amount(value: Decimal) -> bool:
    """Whether a decimal is a real number (not NaN or Infinity)."""
    return isinstance(value, Decimal) and value.is_finite()


def is_printable(text: str) -> bool:
    """Whether text only uses characters the print pipeline accepts."""
    return PRINTABLE_TEXT.fullmatch(text) is not None


class DocumentValidator:
    """Checks receipts and location changes before any submission attempt.

    All methods are static as the class carries no state.
    """

    @staticmethod
    def validate(document: Document) -> ValidationResult:
        """Validate any registrable document."""
        if isinstance(document, Receipt):
            return DocumentValidator.validate_receipt(document)
        if isinstance(document, CashRegisterLocation):
            return DocumentValidator.validate_location(document)
        raise TypeError(f"Unsupported document type: {type(document).__name__}")

    @staticmethod
    def validate_receipt(receipt: Receipt) -> ValidationResult:
        """Validate a receipt.

        Checks, in order: lines present, line arithmetic, VAT and line type,
        payments, printable text, cash register code.
        """
        failures: list[ValidationFailure] = []

        if not receipt.items:
            failures.append(
                ValidationFailure("items", "receipt must contain at least one line")
            )

        for index, item in enumerate(receipt.items):
            failures.extend(_check_line_arithmetic(f"items[{index}]", item))

        for index, item in enumerate(receipt.items):
            failures.extend(_check_line_type(f"items[{index}]", item))

        if receipt.payments is not None:
            failures.extend(_check_payments(receipt))

        failures.extend(_check_receipt_text(receipt))
        failures.extend(_check_cash_register_code(receipt.cash_register_code))

        return ValidationResult(tuple(failures))

    @staticmethod
    def validate_location(location: CashRegisterLocation) -> ValidationResult:
        """Validate a cash register location change."""
        failures: list[ValidationFailure] = []
        shape = location.location

        if isinstance(shape, GeoCoordinates):
            failures.extend(_check_coordinates(shape))
        elif isinstance(shape, PhysicalAddress):
            failures.extend(_check_address(shape))
        elif isinstance(shape, OtherLocation):
            failures.extend(_check_other_location(shape))
        else:
            failures.append(
                ValidationFailure(
                    "location",
                    "must be GPS coordinates, a physical address or free-form text",
                )
            )

        failures.extend(_check_cash_register_code(location.cash_register_code))
        return ValidationResult(tuple(failures))


def _check_line_arithmetic(path: str, item: ReceiptLine) -> list[ValidationFailure]:
    quantity = item.quantity.amount
    failures = [
        ValidationFailure(f"{path}.{name}", "must be a finite number")
        for name, value in (
            ("unit_price", item.unit_price),
            ("quantity", quantity),
            ("price", item.price),
        )
        if not is_finite_amount(value)
    ]
    if failures:
        return failures

    if fractional_digits(item.unit_price) > MAX_UNIT_PRICE_DIGITS:
        failures.append(
            ValidationFailure(
                f"{path}.unit_price",
                f"at most {MAX_UNIT_PRICE_DIGITS} fractional digits allowed",
            )
        )
    if fractional_digits(quantity) > MAX_QUANTITY_DIGITS:
        failures.append(
            ValidationFailure(
                f"{path}.quantity",
                f"at most {MAX_QUANTITY_DIGITS} fractional digits allowed",
            )
        )
    if quantity == 0:
        failures.append(ValidationFailure(f"{path}.quantity", "must not be zero"))
    if not item.quantity.unit or not item.quantity.unit.strip():
        failures.append(ValidationFailure(f"{path}.quantity.unit", "must not be empty"))
    if fractional_digits(item.price) > MAX_AMOUNT_DIGITS:
        failures.append(
            ValidationFailure(
                f"{path}.price", f"at most {MAX_AMOUNT_DIGITS} fractional digits allowed"
            )
        )

    expected = round2(item.unit_price * quantity)
    if item.price != expected:
        failures.append(
            ValidationFailure(
                f"{path}.price",
                f"must equal unit_price * quantity rounded to 2 places "
                f"({expected}), got {item.price}",
            )
        )
    return failures


def _check_line_type(path: str, item: ReceiptLine) -> list[ValidationFailure]:
    failures = []

    if not isinstance(item.vat_rate, VatRate):
        failures.append(ValidationFailure(f"{path}.vat_rate", "VAT rate must be assigned"))
    elif (
        item.type is ReceiptItemType.RETURNED_CONTAINER
        and item.vat_rate is not VatRate.ZERO
    ):
        failures.append(
            ValidationFailure(
                f"{path}.vat_rate", "returned containers must use the zero VAT rate"
            )
        )

    if not (is_finite_amount(item.price) and is_finite_amount(item.quantity.amount)):
        return failures  # sign checks need real numbers

    if item.type is ReceiptItemType.POSITIVE:
        if item.price < 0:
            failures.append(
                ValidationFailure(f"{path}.price", "positive lines must not be negative")
            )
        if item.quantity.amount < 0:
            failures.append(
                ValidationFailure(
                    f"{path}.quantity", "positive lines must have a positive quantity"
                )
            )
    elif item.type in _NON_POSITIVE_TYPES:
        if item.price > 0:
            failures.append(
                ValidationFailure(
                    f"{path}.price",
                    f"{item.type.value} lines must not have a positive total",
                )
            )
    else:
        failures.append(ValidationFailure(f"{path}.type", "unknown line type"))

    return failures


def _check_payments(receipt: Receipt) -> list[ValidationFailure]:
    failures = []
    payments = receipt.payments or ()

    tendered = Decimal("0")
    change = Decimal("0")
    for index, payment in enumerate(payments):
        if not payment.label or not payment.label.strip():
            failures.append(
                ValidationFailure(f"payments[{index}].label", "must not be empty")
            )
        if not is_finite_amount(payment.amount):
            failures.append(
                ValidationFailure(f"payments[{index}].amount", "must be a finite number")
            )
            continue
        if fractional_digits(payment.amount) > MAX_AMOUNT_DIGITS:
            failures.append(
                ValidationFailure(
                    f"payments[{index}].amount",
                    f"at most {MAX_AMOUNT_DIGITS} fractional digits allowed",
                )
            )
        if payment.amount >= 0:
            tendered += payment.amount
        else:
            change -= payment.amount

    if not all(is_finite_amount(p.amount) for p in payments) or not all(
        is_finite_amount(item.price) for item in receipt.items
    ):
        return failures

    if receipt.total > 0 and tendered <= 0:
        failures.append(
            ValidationFailure("payments", "at least one positive payment is required")
        )
    if receipt.total > 0 and change > tendered:
        failures.append(
            ValidationFailure("payments", "change returned exceeds the amount tendered")
        )
    net = tendered - change
    if net < receipt.total:
        failures.append(
            ValidationFailure(
                "payments",
                f"payments ({net}) must cover the receipt total ({receipt.total})",
            )
        )
    return failures


def _check_receipt_text(receipt: Receipt) -> list[ValidationFailure]:
    fields: list[tuple[str, str | None]] = [
        ("header_text", receipt.header_text),
        ("footer_text", receipt.footer_text),
    ]
    fields.extend(
        (f"items[{index}].name", item.name) for index, item in enumerate(receipt.items)
    )
    fields.extend(
        (f"payments[{index}].label", payment.label)
        for index, payment in enumerate(receipt.payments or ())
    )

    failures = [
        ValidationFailure(field, "contains characters that cannot be printed")
        for field, value in fields
        if value is not None and not is_printable(value)
    ]
    for index, item in enumerate(receipt.items):
        if not item.name or not item.name.strip():
            failures.append(ValidationFailure(f"items[{index}].name", "must not be empty"))
    return failures


def _check_cash_register_code(code: str) -> list[ValidationFailure]:
    if not code or ORP_CODE.fullmatch(code) is None:
        return [
            ValidationFailure(
                "cash_register_code", "must be a 17-digit cash register (ORP) code"
            )
        ]
    return []


def _check_coordinates(coordinates: GeoCoordinates) -> list[ValidationFailure]:
    failures = []
    for name, value, limit in (
        ("longitude", coordinates.longitude, 180),
        ("latitude", coordinates.latitude, 90),
    ):
        if not is_finite_amount(value):
            failures.append(ValidationFailure(f"location.{name}", "must be a finite number"))
            continue
        if not -limit <= value <= limit:
            failures.append(
                ValidationFailure(
                    f"location.{name}", f"must be between -{limit} and {limit}"
                )
            )
        if fractional_digits(value) > MAX_COORDINATE_DIGITS:
            failures.append(
                ValidationFailure(
                    f"location.{name}",
                    f"at most {MAX_COORDINATE_DIGITS} fractional digits allowed",
                )
            )
    return failures


def _check_address(address: PhysicalAddress) -> list[ValidationFailure]:
    failures = []
    if not address.municipality or not address.municipality.strip():
        failures.append(ValidationFailure("location.municipality", "must not be empty"))
    if not address.postal_code or POSTAL_CODE.fullmatch(address.postal_code) is None:
        failures.append(ValidationFailure("location.postal_code", "must be 5 digits"))
    if (
        address.property_registration_number is not None
        and address.property_registration_number <= 0
    ):
        failures.append(
            ValidationFailure("location.property_registration_number", "must be positive")
        )
    if not address.building_number and address.property_registration_number is None:
        failures.append(
            ValidationFailure(
                "location.building_number",
                "building number or property registration number is required",
            )
        )
    for name in ("street_name", "municipality", "building_number"):
        value = getattr(address, name)
        if value is not None and not is_printable(value):
            failures.append(
                ValidationFailure(
                    f"location.{name}", "contains characters that cannot be printed"
                )
            )
    return failures


def _check_other_location(other: OtherLocation) -> list[ValidationFailure]:
    if not other.text or not other.text.strip():
        return [ValidationFailure("location.text", "must not be empty")]
    failures = []
    if len(other.text) > MAX_OTHER_LOCATION_LENGTH:
        failures.append(
            ValidationFailure(
                "location.text", f"at most {MAX_OTHER_LOCATION_LENGTH} characters allowed"
            )
        )
    if not is_printable(other.text):
        failures.append(
            ValidationFailure("location.text", "contains characters that cannot be printed")
        )
    return failures
