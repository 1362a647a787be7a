"""
Module: einvoice_kernel.models.submission
Responsibility: ORM persistence for authority submission bookkeeping.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One Submission row per invoice (UNIQUE invoice_id).
    - attempt_count increments on every reconciliation, including failures.
    - canonical_status is derived from the raw response by
      domain.reconciliation.reconcile(); it is never set from attempt count.

Audit relevance:
    raw_response and response_hash preserve exactly what the authority said
    on the last attempt; together with attempt_count and last_attempt_at they
    make every filing attempt traceable for the retention period.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from einvoice_kernel.db.base import TimestampedBase, UTCDateTime, UUIDString
from einvoice_kernel.domain.classification import CanonicalStatus


class Submission(TimestampedBase):
    """Last known authority outcome for one invoice."""

    __tablename__ = "submissions"

    __table_args__ = (
        Index("idx_submission_status", "canonical_status"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
        unique=True,
    )
    serial_number: Mapped[str] = mapped_column(String(64), nullable=False)

    # clearance | reporting
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    canonical_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CanonicalStatus.PENDING.value,
    )

    # Authority sub-statuses as reported
    reporting_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    clearance_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    validation_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(50), nullable=True)

    raw_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)

    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def status_enum(self) -> CanonicalStatus:
        return CanonicalStatus(self.canonical_status)

    def __repr__(self) -> str:
        return (
            f"<Submission {self.serial_number} {self.kind} "
            f"[{self.canonical_status}] x{self.attempt_count}>"
        )
