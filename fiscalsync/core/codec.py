"""Serialization of documents into the authority's wire payload.

Payloads are canonical JSON (sorted keys, compact separators) so the
same document always encodes to the same bytes and a replayed payload
can be recognised by its digest.
"""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import (
    CashRegisterLocation,
    Document,
    DocumentKind,
    GeoCoordinates,
    OtherLocation,
    Payment,
    PhysicalAddress,
    Quantity,
    Receipt,
    ReceiptItemType,
    ReceiptLine,
    VatRate,
)


@dataclass(frozen=True)
class VatTable:
    """Maps VAT categories to the percentages in force."""

    standard: Decimal = Decimal("23")
    reduced: Decimal = Decimal("5")
    zero: Decimal = Decimal("0")

    def percent(self, rate: VatRate) -> Decimal:
        if rate is VatRate.STANDARD:
            return self.standard
        if rate is VatRate.REDUCED:
            return self.reduced
        return self.zero


class DocumentCodec:
    """Builds, encodes and decodes registration payloads."""

    def __init__(self, vat_table: VatTable | None = None):
        self.vat_table = vat_table or VatTable()

    def envelope(self, document: Document, issued_at: datetime) -> dict[str, Any]:
        """Wrap a document with the metadata every submission carries."""
        if isinstance(document, Receipt):
            body = self._receipt_to_dict(document)
        elif isinstance(document, CashRegisterLocation):
            body = self._location_to_dict(document)
        else:
            raise TypeError(f"Unsupported document type: {type(document).__name__}")

        return {
            "kind": document.document_kind.value,
            "cash_register_code": document.cash_register_code,
            "issued_at": issued_at.isoformat(),
            "document": body,
        }

    @staticmethod
    def with_offline_code(
        envelope: Mapping[str, Any], okp: str, sequence: int
    ) -> dict[str, Any]:
        """Mark an envelope as registered offline under the given OKP."""
        return {**envelope, "offline": {"okp": okp, "sequence": sequence}}

    @staticmethod
    def encode(envelope: Mapping[str, Any]) -> str:
        """Canonical JSON encoding of an envelope."""
        return json.dumps(
            envelope, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

    @staticmethod
    def digest(payload: str) -> str:
        """SHA-256 digest of an encoded payload."""
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _receipt_to_dict(self, receipt: Receipt) -> dict[str, Any]:
        data: dict[str, Any] = {
            "items": [self._line_to_dict(item) for item in receipt.items],
            "total": str(receipt.total),
        }
        if receipt.payments is not None:
            data["payments"] = [
                {"label": payment.label, "amount": str(payment.amount)}
                for payment in receipt.payments
            ]
        if receipt.header_text is not None:
            data["header_text"] = receipt.header_text
        if receipt.footer_text is not None:
            data["footer_text"] = receipt.footer_text
        return data

    def _line_to_dict(self, item: ReceiptLine) -> dict[str, Any]:
        assert item.vat_rate is not None  # guaranteed by validation
        return {
            "type": item.type.value,
            "name": item.name,
            "unit_price": str(item.unit_price),
            "quantity": {"amount": str(item.quantity.amount), "unit": item.quantity.unit},
            "price": str(item.price),
            "vat_rate": item.vat_rate.value,
            "vat_percent": str(self.vat_table.percent(item.vat_rate)),
        }

    @staticmethod
    def _location_to_dict(location: CashRegisterLocation) -> dict[str, Any]:
        shape = location.location
        if isinstance(shape, GeoCoordinates):
            return {
                "gps": {
                    "longitude": str(shape.longitude),
                    "latitude": str(shape.latitude),
                }
            }
        if isinstance(shape, PhysicalAddress):
            address = {
                "street_name": shape.street_name,
                "municipality": shape.municipality,
                "postal_code": shape.postal_code,
                "building_number": shape.building_number,
                "property_registration_number": shape.property_registration_number,
            }
            return {"address": {k: v for k, v in address.items() if v is not None}}
        return {"other": {"text": shape.text}}

    # ------------------------------------------------------------------
    # Decoding (documents composed outside Python, e.g. CLI input files)
    # ------------------------------------------------------------------

    @staticmethod
    def decode_document(kind: DocumentKind, data: Mapping[str, Any]) -> Document:
        """Build a document from a plain JSON mapping.

        Raises:
            ValueError: If required keys are missing or values are malformed.
        """
        try:
            if kind is DocumentKind.RECEIPT:
                return _receipt_from_dict(data)
            return _location_from_dict(data)
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ValueError(f"Malformed {kind.value} document: {e!r}") from e


def _decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        # JSON numbers arrive as floats; go through their shortest repr.
        return Decimal(repr(value))
    return Decimal(str(value))


def _receipt_from_dict(data: Mapping[str, Any]) -> Receipt:
    items = tuple(
        ReceiptLine(
            type=ReceiptItemType(item.get("type", ReceiptItemType.POSITIVE.value)),
            name=item["name"],
            unit_price=_decimal(item["unit_price"]),
            quantity=Quantity(
                amount=_decimal(item["quantity"]["amount"]),
                unit=item["quantity"]["unit"],
            ),
            price=_decimal(item["price"]),
            vat_rate=VatRate(item["vat_rate"]) if item.get("vat_rate") else None,
        )
        for item in data["items"]
    )
    payments = None
    if data.get("payments") is not None:
        payments = tuple(
            Payment(label=payment["label"], amount=_decimal(payment["amount"]))
            for payment in data["payments"]
        )
    return Receipt(
        cash_register_code=data["cash_register_code"],
        items=items,
        payments=payments,
        header_text=data.get("header_text"),
        footer_text=data.get("footer_text"),
    )


def _location_from_dict(data: Mapping[str, Any]) -> CashRegisterLocation:
    code = data["cash_register_code"]
    if "gps" in data:
        gps = data["gps"]
        shape: GeoCoordinates | PhysicalAddress | OtherLocation = GeoCoordinates(
            longitude=_decimal(gps["longitude"]), latitude=_decimal(gps["latitude"])
        )
    elif "address" in data:
        address = data["address"]
        shape = PhysicalAddress(
            street_name=address.get("street_name"),
            municipality=address["municipality"],
            postal_code=str(address["postal_code"]),
            building_number=address.get("building_number"),
            property_registration_number=address.get("property_registration_number"),
        )
    elif "other" in data:
        shape = OtherLocation(text=data["other"]["text"])
    else:
        raise KeyError("one of 'gps', 'address' or 'other'")
    return CashRegisterLocation(cash_register_code=code, location=shape)
