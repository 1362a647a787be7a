"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through issuance:
    InvoiceRequest (caller input: parties, lines, allowances/charges,
    prepayment, totals), DocumentIdentity (sequencer output) and
    UnsignedDocument (assembler output).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies, database access, and external services.

Invariants enforced:
    - Amounts are Decimal, never float (floats are rejected on construction).
    - Sequences (lines, allowance/charges) are frozen into tuples so a
      request cannot change between allocation and assembly.

Failure modes:
    - TypeError when a float is passed where an amount is expected.
    - ValueError on a non-positive sequence number in DocumentIdentity.

Data flow:
    InvoiceRequest + DocumentIdentity -> DocumentAssembler -> UnsignedDocument
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from einvoice_kernel.db.types import round_amount
from einvoice_kernel.domain.classification import (
    Classification,
    CustomerKind,
    InvoiceTypeCode,
)


def _require_decimal(name: str, value: Decimal | None) -> None:
    if isinstance(value, float):
        raise TypeError(f"{name} must be Decimal, not float")


@dataclass(frozen=True)
class Address:
    street: str | None = None
    building_number: str | None = None
    district: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str = "SA"


@dataclass(frozen=True)
class Seller:
    """Supplier party as it appears on every document of the unit."""

    registration_name: str
    vat_number: str
    address: Address = field(default_factory=Address)
    cr_number: str | None = None


@dataclass(frozen=True)
class Customer:
    """
    Buyer party.

    Contract:
        kind=B2B makes the document standard (cleared) unless the caller
        supplies an explicit type name.  Simplified documents only print
        ``name``.
    """

    kind: CustomerKind = CustomerKind.B2C
    name: str | None = None
    registration_name: str | None = None
    vat_number: str | None = None
    cr_number: str | None = None
    address: Address | None = None

    @property
    def display_name(self) -> str | None:
        return self.registration_name or self.name


@dataclass(frozen=True)
class AllowanceCharge:
    """
    A discount (charge_indicator=False) or surcharge (True).

    Line-level instances change the line's taxable base; document-level
    instances appear in the monetary total block with their own tax category.
    """

    charge_indicator: bool
    amount: Decimal
    reason: str | None = None
    reason_code: str | None = None
    tax_category: str = "S"
    vat_percent: Decimal = Decimal("15")

    def __post_init__(self) -> None:
        _require_decimal("amount", self.amount)
        _require_decimal("vat_percent", self.vat_percent)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.charge_indicator else -self.amount


@dataclass(frozen=True)
class DocumentReference:
    """Reference from a line to an earlier document (usually a prepayment)."""

    id: str
    uuid: str | None = None
    issue_date: str | None = None
    issue_time: str | None = None
    type_code: str = InvoiceTypeCode.PREPAYMENT.value


@dataclass(frozen=True)
class LineItem:
    """
    One invoice line.

    Contract:
        The caller supplies tax_exclusive_amount and vat_amount; they are not
        re-derived from quantity x price.
        unit_code None takes the assembler's default unit code.

    Guarantees:
        - category is the explicit tax_category, or "Z" when vat_percent is
          zero, else "S".
        - net_amount = tax_exclusive_amount + charges - allowances, rounded
          half-up to 2 places.
    """

    line_id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_exclusive_amount: Decimal
    vat_percent: Decimal
    vat_amount: Decimal
    unit_code: str | None = None
    tax_category: str | None = None
    exemption_reason_code: str | None = None
    exemption_reason: str | None = None
    allowance_charges: tuple[AllowanceCharge, ...] = ()
    document_reference: DocumentReference | None = None

    def __post_init__(self) -> None:
        for name in ("quantity", "unit_price", "tax_exclusive_amount", "vat_percent", "vat_amount"):
            _require_decimal(name, getattr(self, name))
        object.__setattr__(self, "allowance_charges", tuple(self.allowance_charges))

    @property
    def category(self) -> str:
        if self.tax_category:
            return self.tax_category
        return "Z" if self.vat_percent == 0 else "S"

    @property
    def net_change(self) -> Decimal:
        return sum((ac.signed_amount for ac in self.allowance_charges), Decimal("0"))

    @property
    def net_amount(self) -> Decimal:
        return round_amount(self.tax_exclusive_amount + self.net_change)


@dataclass(frozen=True)
class Prepayment:
    """A prior prepayment invoice settled by this document."""

    invoice_id: str
    amount_ex_vat: Decimal
    vat_amount: Decimal
    issue_date: str | None = None
    issue_time: str | None = None
    uuid: str | None = None
    vat_percent: Decimal = Decimal("15")
    description: str = "Advance payment received"

    def __post_init__(self) -> None:
        _require_decimal("amount_ex_vat", self.amount_ex_vat)
        _require_decimal("vat_amount", self.vat_amount)


@dataclass(frozen=True)
class Totals:
    """
    Document totals as computed by the caller.

    reporting_vat_total, when given, is the VAT total expressed in the
    reporting currency; otherwise exchange_rate converts vat_total.
    """

    line_extension_total: Decimal
    tax_exclusive_total: Decimal
    vat_total: Decimal
    tax_inclusive_total: Decimal
    payable_amount: Decimal
    allowance_total: Decimal | None = None
    charge_total: Decimal | None = None
    prepaid_amount: Decimal | None = None
    payable_rounding_amount: Decimal | None = None
    reporting_vat_total: Decimal | None = None
    exchange_rate: Decimal | None = None

    def __post_init__(self) -> None:
        for name in self.__dataclass_fields__:
            _require_decimal(name, getattr(self, name))


@dataclass(frozen=True)
class InvoiceRequest:
    """
    Normalized sale / refund data for one document.

    Contract:
        Pure input; numbering, chaining and timestamps are supplied
        separately (DocumentIdentity and the clock).  issue_date / issue_time
        override the clock when set.  currency None takes the
        assembler's default currency.
    """

    seller: Seller
    lines: tuple[LineItem, ...]
    totals: Totals
    type_code: InvoiceTypeCode = InvoiceTypeCode.INVOICE
    type_name: str | None = None
    customer: Customer | None = None
    currency: str | None = None
    billing_reference_id: str | None = None
    instruction_note: str | None = None
    allowance_charges: tuple[AllowanceCharge, ...] = ()
    prepayment: Prepayment | None = None
    issue_date: str | None = None
    issue_time: str | None = None
    transaction_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type_code", InvoiceTypeCode(self.type_code))
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "allowance_charges", tuple(self.allowance_charges))

    @property
    def customer_kind(self) -> CustomerKind | None:
        return self.customer.kind if self.customer is not None else None


@dataclass(frozen=True)
class DocumentIdentity:
    """Numbering and chaining allocated by the sequencer for one document."""

    serial_number: str
    sequence_number: int
    transaction_id: UUID
    previous_digest: str

    def __post_init__(self) -> None:
        if self.sequence_number <= 0:
            raise ValueError(
                f"sequence_number must be positive, got {self.sequence_number}"
            )


@dataclass(frozen=True)
class TaxSubtotal:
    """One (category, percent) group of the document tax total."""

    category: str
    percent: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    exemption_reason_code: str | None = None
    exemption_reason: str | None = None


@dataclass(frozen=True)
class UnsignedDocument:
    """
    Assembler output, ready for the signer.

    Guarantees:
        - xml is UTF-8 encoded UBL with the QR and signature placeholders.
        - Identical request, identity and clock reading give identical xml.
    """

    xml: bytes
    identity: DocumentIdentity
    classification: Classification
    issued_at: datetime
    issue_date: str
    issue_time: str
    currency: str
    tax_subtotals: tuple[TaxSubtotal, ...]
    reporting_vat_total: Decimal

    @property
    def serial_number(self) -> str:
        return self.identity.serial_number
