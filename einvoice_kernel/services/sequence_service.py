"""
SequenceService -- per-series invoice numbering and hash-chain resolution.

Responsibility:
    Hands out the next invoice counter value (ICV) of a series together
    with the serial number built from it and the digest of the previous
    invoice, which the new document must chain from.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by InvoiceService.issue() inside the issuing transaction.

Invariants enforced:
    - Sequence monotonicity: the counter row is the sole source of truth.
      The increment is one ``UPDATE ... SET last_sequence = last_sequence + 1
      RETURNING last_sequence`` statement; the aggregate-max-plus-one
      anti-pattern is FORBIDDEN.
    - Serialization per series: the row lock taken by the UPDATE is held
      until the caller's transaction ends, so two issuers of the same series
      can never observe the same value.  Different series never contend.
    - Chain link: the previous digest is the digest of the invoice holding
      the highest sequence number of the series, or the genesis digest when
      the series is empty.
    - Gapless: the increment is only visible once the caller commits; a
      failed issuance rolls the counter back with everything else.

Failure modes:
    - IntegrityError: concurrent creation of a new series row (handled via
      savepoint rollback and retry of the increment).
    - UnsignedPredecessorError: the latest invoice of the series carries no
      digest, so the chain cannot be extended.

Audit relevance:
    Allocation is logged at DEBUG level with series key, sequence number and
    serial number.  The ICV / PIH pair embedded in every document is exactly
    what this service returns.
"""

from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from einvoice_kernel.domain.classification import Classification
from einvoice_kernel.domain.clock import DEFAULT_AUTHORITY_TIMEZONE, Clock, authority_now
from einvoice_kernel.exceptions import UnsignedPredecessorError
from einvoice_kernel.logging_config import get_logger
from einvoice_kernel.models.invoice import Invoice, InvoiceHash
from einvoice_kernel.models.invoice_series import InvoiceSeries
from einvoice_kernel.utils.hashing import GENESIS_DIGEST

logger = get_logger("services.sequence")


@dataclass(frozen=True)
class SequenceAllocation:
    """Numbering handed to one new document."""

    serial_number: str
    sequence_number: int
    previous_digest: str
    type_prefix: str


def format_serial_number(series_key: str, prefix: str, year: str, sequence_number: int) -> str:
    """``{ENTITY}-{PREFIX}-{YY}-{8-digit sequence}``"""
    return f"{series_key.upper()}-{prefix}-{year}-{sequence_number:08d}"


class SequenceService:
    """
    Transactional invoice counter per series.

    Contract:
        allocate() returns the next number of a series and the digest to
        chain from.  Must be called inside the transaction that persists the
        invoice built from the allocation.

    Guarantees:
        - Strictly increasing, gapless sequence numbers per series.
        - First allocation of a series chains from the genesis digest.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT persist the invoice; an allocation that is not followed by
          a persisted invoice in the same transaction must be rolled back.

    Usage:
        with session_scope() as session:
            allocation = SequenceService(session, clock).allocate("ACME", c)
            # assemble, persist and sign the invoice in the same transaction
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        time_zone: str = DEFAULT_AUTHORITY_TIMEZONE,
        genesis_digest: str = GENESIS_DIGEST,
    ):
        self._session = session
        self._clock = clock
        self._time_zone = time_zone
        self._genesis_digest = genesis_digest

    def allocate(self, series_key: str, classification: Classification) -> SequenceAllocation:
        """
        Reserve the next number of ``series_key``.

        Preconditions:
            - ``series_key`` is a non-empty string.
            - The caller is within an active database transaction.

        Postconditions:
            - The series row is locked until the transaction completes.
            - ``previous_digest`` is the genesis digest for sequence 1 and
              the latest invoice's digest otherwise.

        Raises:
            UnsignedPredecessorError: The latest invoice has no digest.
        """
        if not series_key:
            raise ValueError("series_key must be a non-empty string")

        sequence_number = self._increment(series_key)
        previous_digest = self._previous_digest(series_key)
        year = authority_now(self._clock, self._time_zone).strftime("%y")
        serial_number = format_serial_number(
            series_key, classification.prefix, year, sequence_number,
        )

        logger.debug(
            "sequence_allocated",
            extra={
                "series_key": series_key,
                "sequence_number": sequence_number,
                "serial_number": serial_number,
                "type_prefix": classification.prefix,
            },
        )
        return SequenceAllocation(
            serial_number=serial_number,
            sequence_number=sequence_number,
            previous_digest=previous_digest,
            type_prefix=classification.prefix,
        )

    def _increment(self, series_key: str) -> int:
        stmt = (
            update(InvoiceSeries)
            .where(InvoiceSeries.series_key == series_key)
            .values(last_sequence=InvoiceSeries.last_sequence + 1)
            .returning(InvoiceSeries.last_sequence)
            .execution_options(synchronize_session=False)
        )
        value = self._session.execute(stmt).scalar_one_or_none()
        if value is not None:
            return value

        # First use of this series.  Another issuer may create the row at the
        # same time; the savepoint keeps the caller's transaction usable.
        savepoint = self._session.begin_nested()
        try:
            self._session.add(InvoiceSeries(series_key=series_key, last_sequence=1))
            self._session.flush()
            savepoint.commit()
            logger.info("invoice_series_created", extra={"series_key": series_key})
            return 1
        except IntegrityError:
            logger.debug(
                "invoice_series_race_retry",
                extra={"series_key": series_key},
            )
            savepoint.rollback()
            return self._session.execute(stmt).scalar_one()

    def _previous_digest(self, series_key: str) -> str:
        latest = self._session.execute(
            select(Invoice.serial_number, InvoiceHash.current_digest)
            .outerjoin(InvoiceHash, InvoiceHash.invoice_id == Invoice.id)
            .where(Invoice.series_key == series_key)
            .order_by(Invoice.sequence_number.desc())
            .limit(1)
        ).first()

        if latest is None:
            return self._genesis_digest
        if not latest.current_digest:
            logger.error(
                "unsigned_predecessor",
                extra={"series_key": series_key, "serial_number": latest.serial_number},
            )
            raise UnsignedPredecessorError(series_key, latest.serial_number)
        return latest.current_digest

    def current_value(self, series_key: str) -> int | None:
        """
        Last allocated number of a series without incrementing.

        Returns:
            Current value, or None if the series doesn't exist.
        """
        return self._session.execute(
            select(InvoiceSeries.last_sequence)
            .where(InvoiceSeries.series_key == series_key)
        ).scalar_one_or_none()

    def register_series(self, series_key: str) -> InvoiceSeries:
        """Create the counter for a series at 0 if it does not exist yet."""
        series = self._session.execute(
            select(InvoiceSeries).where(InvoiceSeries.series_key == series_key)
        ).scalar_one_or_none()
        if series is None:
            series = InvoiceSeries(series_key=series_key, last_sequence=0)
            self._session.add(series)
            self._session.flush()
        return series
