"""
Module: einvoice_kernel.models.invoice
Responsibility: ORM persistence for issued invoices, their line snapshot and
    their hash-chain link.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - serial_number and transaction_id are globally unique.
    - (series_key, sequence_number) is unique: one invoice per counter value.
    - InvoiceHash is 1:1 with Invoice (UNIQUE invoice_id).
    - Once signed, document fields are frozen; only status and cleared_xml
      may change (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate serial / sequence / transaction id.
    - ImmutabilityViolationError when a signed document is modified.

Audit relevance:
    unsigned_xml, signed_xml and the InvoiceHash row are the evidence the
    authority may request during retention; cleared_xml is the
    countersigned copy returned by clearance.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from einvoice_kernel.db.base import TimestampedBase, UTCDateTime, UUIDString


class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle.

    State machine:
        ASSEMBLED -> SIGNED
        SIGNED -> CLEARED | REPORTED | FAILED
        FAILED -> CLEARED | REPORTED | FAILED   (re-submission)
        CLEARED / REPORTED -> CLEARED | REPORTED | FAILED
    """

    ASSEMBLED = "assembled"
    SIGNED = "signed"
    CLEARED = "cleared"
    REPORTED = "reported"
    FAILED = "failed"


class Invoice(TimestampedBase):
    """
    One issued tax document.

    Contract:
        Created in ASSEMBLED state by InvoiceService.issue() in the same
        transaction that allocated its sequence number; moves to SIGNED once
        the signer returns a digest.  Submission outcomes only touch status
        and cleared_xml.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("series_key", "sequence_number", name="uq_invoice_series_sequence"),
        Index("idx_invoice_status", "status"),
    )

    serial_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    series_key: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)

    type_code: Mapped[str] = mapped_column(String(3), nullable=False)
    type_name: Mapped[str] = mapped_column(String(7), nullable=False)
    type_prefix: Mapped[str] = mapped_column(String(2), nullable=False)
    profile: Mapped[str] = mapped_column(String(20), nullable=False)

    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    seller_name: Mapped[str] = mapped_column(String(255), nullable=False)
    seller_vat_number: Mapped[str] = mapped_column(String(20), nullable=False)
    buyer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_vat_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    billing_reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    line_extension_amount: Mapped[Decimal] = mapped_column(nullable=False)
    allowance_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    charge_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_exclusive_amount: Mapped[Decimal] = mapped_column(nullable=False)
    vat_total: Mapped[Decimal] = mapped_column(nullable=False)
    tax_inclusive_amount: Mapped[Decimal] = mapped_column(nullable=False)
    prepaid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    payable_amount: Mapped[Decimal] = mapped_column(nullable=False)

    unsigned_xml: Mapped[str] = mapped_column(Text, nullable=False)
    signed_xml: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    cleared_xml: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InvoiceStatus.ASSEMBLED.value,
    )

    lines: Mapped[list["InvoiceLine"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )

    chain_link: Mapped["InvoiceHash | None"] = relationship(
        back_populates="invoice",
        uselist=False,
    )

    @property
    def status_enum(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)

    @property
    def is_signed(self) -> bool:
        return self.signed_xml is not None

    @property
    def current_digest(self) -> str | None:
        return self.chain_link.current_digest if self.chain_link is not None else None

    def __repr__(self) -> str:
        return f"<Invoice {self.serial_number} [{self.status}]>"


class InvoiceLine(TimestampedBase):
    """Ordered snapshot of one document line as it was assembled."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint("invoice_id", "position", name="uq_invoice_line_position"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    vat_category: Mapped[str] = mapped_column(String(2), nullable=False)
    vat_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="lines")


class InvoiceHash(TimestampedBase):
    """
    Hash-chain link of one invoice.

    Contract:
        previous_digest equals the genesis digest for sequence 1 and the
        predecessor's current_digest otherwise.  Rows are immutable once
        written.
    """

    __tablename__ = "invoice_hashes"

    __table_args__ = (
        Index("idx_invoice_hash_series", "series_key", "sequence_number"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
        unique=True,
    )
    series_key: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_digest: Mapped[str] = mapped_column(String(128), nullable=False)
    previous_digest: Mapped[str] = mapped_column(String(128), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="chain_link")
