"""
Module: einvoice_kernel.models.invoice_series
Responsibility: ORM persistence for per-entity invoice counters.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One counter row per series_key (UNIQUE).
    - last_sequence only ever grows, and only through
      SequenceService.allocate() (a single atomic UPDATE).

Audit relevance:
    last_sequence is the authority's invoice counter value (ICV).  It must
    equal the highest sequence_number among committed invoices of the series;
    InvoiceService.verify_chain() checks the invoices side of that relation.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from einvoice_kernel.db.base import TimestampedBase


class InvoiceSeries(TimestampedBase):
    """
    One chain of invoices for one tax-registered entity.

    Contract:
        Mutated only by the sequencer.  The row lock taken by the increment is
        held until the issuing transaction ends, which serializes issuance per
        series across every process sharing the database.
    """

    __tablename__ = "invoice_series"

    series_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    last_sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<InvoiceSeries {self.series_key}@{self.last_sequence}>"
