"""
InvoiceService -- issue, sign and chain invoices for one credential unit.

Responsibility:
    Orchestrates the issuing pipeline for one document:
    validate -> allocate (SequenceService) -> assemble (DocumentAssembler)
    -> persist ASSEMBLED -> sign (Signer) -> persist digest link, SIGNED.
    Also provides read access and the chain verifier for a series.

Architecture position:
    Kernel > Services -- imperative shell.  The assembler is pure; this
    service owns every side effect of issuance except the commit.

Invariants enforced:
    - Allocation, persistence and signing happen in ONE transaction, so a
      failure at any step leaves no invoice and no consumed number.
    - Every signed invoice has exactly one InvoiceHash row whose
      previous_digest is the allocation's previous digest.
    - verify_chain(): sequence numbers are 1..N and every previous digest
      links to the predecessor's current digest (genesis for the first).

Failure modes:
    - CredentialUnitNotFoundError / MissingComplianceCredentialsError: the
      series owner cannot sign.
    - EmptyDocumentError, MissingFieldError, MissingBillingReferenceError,
      MissingExchangeRateError: caller input, raised before anything is
      written.
    - SigningFailedError: the Signer raised; the caller must roll back.
    - HashChainBrokenError / SequenceGapError / UnsignedPredecessorError:
      integrity failures, never repaired here.

Audit relevance:
    ``invoice_signed`` is logged at INFO with serial, sequence number and
    digest.  unsigned_xml is stored next to signed_xml so the signer's input
    can be replayed.
"""

from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from einvoice_kernel.db.types import round_amount
from einvoice_kernel.domain.assembler import AssemblerSettings, DocumentAssembler
from einvoice_kernel.domain.classification import (
    InvoiceProfile,
    classify,
)
from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.domain.dtos import DocumentIdentity, InvoiceRequest
from einvoice_kernel.domain.signer import Signer
from einvoice_kernel.exceptions import (
    CredentialUnitNotFoundError,
    EmptyDocumentError,
    HashChainBrokenError,
    InvoiceNotFoundError,
    MissingBillingReferenceError,
    MissingComplianceCredentialsError,
    MissingFieldError,
    SequenceGapError,
    SigningFailedError,
    UnsignedPredecessorError,
)
from einvoice_kernel.logging_config import LogContext, get_logger
from einvoice_kernel.models.credential_unit import CredentialUnit
from einvoice_kernel.models.invoice import Invoice, InvoiceHash, InvoiceLine, InvoiceStatus
from einvoice_kernel.services.sequence_service import SequenceService
from einvoice_kernel.utils.hashing import GENESIS_DIGEST

logger = get_logger("services.invoice")

_ZERO = round_amount(0)


class InvoiceService:
    """
    Issues signed, chained invoices.

    Contract:
        issue(common_name, request) returns the persisted, SIGNED Invoice.
        The series key of the invoice is the unit's common name.

    Guarantees:
        - Input is validated before a sequence number is allocated.
        - A returned invoice has signed_xml, qr_code and a chain link.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT submit to the authority (see SubmissionRouter).
    """

    def __init__(
        self,
        session: Session,
        signer: Signer,
        clock: Clock,
        settings: AssemblerSettings | None = None,
        genesis_digest: str = GENESIS_DIGEST,
    ):
        self._session = session
        self._signer = signer
        self._settings = settings or AssemblerSettings()
        self._genesis_digest = genesis_digest
        self._assembler = DocumentAssembler(clock, self._settings)
        self._sequences = SequenceService(
            session,
            clock,
            time_zone=self._settings.time_zone,
            genesis_digest=genesis_digest,
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, common_name: str, request: InvoiceRequest) -> Invoice:
        """
        Allocate, assemble, sign and persist one document.

        Preconditions:
            - The unit ``common_name`` exists and holds active credentials.
            - The caller is within an active database transaction.

        Postconditions:
            - Returned invoice is SIGNED and flushed, with its InvoiceHash.

        Raises:
            CredentialUnitNotFoundError, MissingComplianceCredentialsError,
            EmptyDocumentError, MissingFieldError,
            MissingBillingReferenceError, MissingExchangeRateError,
            SigningFailedError, UnsignedPredecessorError.
        """
        with LogContext.bind(series_key=common_name, operation="issue_invoice"):
            unit = self._load_signing_unit(common_name)
            classification = classify(
                request.type_code, request.type_name, request.customer_kind,
            )
            self._validate(common_name, request, classification)

            allocation = self._sequences.allocate(common_name, classification)
            identity = DocumentIdentity(
                serial_number=allocation.serial_number,
                sequence_number=allocation.sequence_number,
                transaction_id=request.transaction_id or uuid4(),
                previous_digest=allocation.previous_digest,
            )

            with LogContext.bind(serial_number=identity.serial_number):
                unsigned = self._assembler.assemble(request, identity)
                invoice = self._persist_assembled(common_name, request, unsigned)

                try:
                    signed = self._signer.sign(
                        unsigned, unit.private_key, unit.active_token,
                    )
                except Exception as exc:
                    logger.error(
                        "invoice_signing_failed",
                        extra={"serial_number": identity.serial_number, "error": str(exc)},
                    )
                    raise SigningFailedError(
                        operation="sign",
                        reference=identity.serial_number,
                        message=str(exc),
                    ) from exc

                invoice.signed_xml = signed.signed_xml.decode("utf-8")
                invoice.qr_code = signed.qr_payload
                invoice.status = InvoiceStatus.SIGNED.value
                invoice.chain_link = InvoiceHash(
                    series_key=common_name,
                    sequence_number=identity.sequence_number,
                    current_digest=signed.digest,
                    previous_digest=identity.previous_digest,
                )
                self._session.flush()

                logger.info(
                    "invoice_signed",
                    extra={
                        "serial_number": invoice.serial_number,
                        "sequence_number": invoice.sequence_number,
                        "profile": invoice.profile,
                        "digest": signed.digest,
                    },
                )
                return invoice

    def _load_signing_unit(self, common_name: str) -> CredentialUnit:
        unit = self._session.execute(
            select(CredentialUnit).where(CredentialUnit.common_name == common_name)
        ).scalar_one_or_none()
        if unit is None:
            raise CredentialUnitNotFoundError(common_name)
        if not unit.has_active_credentials or not unit.private_key:
            raise MissingComplianceCredentialsError(common_name)
        return unit

    def _validate(self, common_name, request, classification) -> None:
        if not request.lines:
            raise EmptyDocumentError(common_name)
        if not request.seller.registration_name:
            raise MissingFieldError("seller.registration_name", "issue_invoice")
        if not request.seller.vat_number:
            raise MissingFieldError("seller.vat_number", "issue_invoice")
        if classification.profile is InvoiceProfile.STANDARD:
            customer = request.customer
            if customer is None or not customer.display_name:
                raise MissingFieldError("customer.registration_name", "issue_invoice")
        if classification.is_note and not request.billing_reference_id:
            raise MissingBillingReferenceError(common_name, classification.type_code.value)

    def _persist_assembled(self, common_name, request, unsigned) -> Invoice:
        totals = request.totals
        customer = request.customer
        classification = unsigned.classification
        identity = unsigned.identity

        invoice = Invoice(
            serial_number=identity.serial_number,
            series_key=common_name,
            sequence_number=identity.sequence_number,
            transaction_id=identity.transaction_id,
            type_code=classification.type_code.value,
            type_name=classification.type_name,
            type_prefix=classification.prefix,
            profile=classification.profile.value,
            issued_at=unsigned.issued_at,
            seller_name=request.seller.registration_name,
            seller_vat_number=request.seller.vat_number,
            buyer_name=customer.display_name if customer else None,
            buyer_vat_number=customer.vat_number if customer else None,
            billing_reference_id=request.billing_reference_id,
            currency=unsigned.currency,
            line_extension_amount=round_amount(totals.line_extension_total),
            allowance_total=round_amount(totals.allowance_total or _ZERO),
            charge_total=round_amount(totals.charge_total or _ZERO),
            tax_exclusive_amount=round_amount(totals.tax_exclusive_total),
            vat_total=round_amount(totals.vat_total),
            tax_inclusive_amount=round_amount(totals.tax_inclusive_total),
            prepaid_amount=round_amount(totals.prepaid_amount or _ZERO),
            payable_amount=round_amount(totals.payable_amount),
            unsigned_xml=unsigned.xml.decode("utf-8"),
            status=InvoiceStatus.ASSEMBLED.value,
        )
        invoice.lines = [
            InvoiceLine(
                position=position,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                net_amount=line.net_amount,
                vat_category=line.category,
                vat_percent=line.vat_percent,
                vat_amount=round_amount(line.vat_amount),
            )
            for position, line in enumerate(request.lines, start=1)
        ]
        self._session.add(invoice)
        self._session.flush()

        logger.debug(
            "invoice_assembled",
            extra={
                "serial_number": invoice.serial_number,
                "type_code": invoice.type_code,
                "line_count": len(invoice.lines),
            },
        )
        return invoice

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, serial_number: str) -> Invoice:
        invoice = self._session.execute(
            select(Invoice).where(
                func.upper(Invoice.serial_number) == serial_number.upper()
            )
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(serial_number)
        return invoice

    def list_invoices(
        self,
        series_key: str | None = None,
        status: InvoiceStatus | None = None,
        limit: int = 100,
    ) -> list[Invoice]:
        """Most recent invoices first."""
        stmt = select(Invoice)
        if series_key is not None:
            stmt = stmt.where(Invoice.series_key == series_key)
        if status is not None:
            stmt = stmt.where(Invoice.status == InvoiceStatus(status).value)
        stmt = stmt.order_by(Invoice.issued_at.desc(), Invoice.sequence_number.desc())
        return list(self._session.execute(stmt.limit(limit)).scalars())

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, series_key: str) -> int:
        """
        Walk a series in sequence order and check every link.

        Returns:
            Number of verified invoices.

        Raises:
            SequenceGapError: Sequence numbers are not 1..N.
            UnsignedPredecessorError: An invoice in the series has no digest.
            HashChainBrokenError: A previous digest does not match.
        """
        rows = self._session.execute(
            select(
                Invoice.serial_number,
                Invoice.sequence_number,
                InvoiceHash.current_digest,
                InvoiceHash.previous_digest,
            )
            .outerjoin(InvoiceHash, InvoiceHash.invoice_id == Invoice.id)
            .where(Invoice.series_key == series_key)
            .order_by(Invoice.sequence_number)
        ).all()

        expected_previous = self._genesis_digest
        for expected_sequence, row in enumerate(rows, start=1):
            if row.sequence_number != expected_sequence:
                logger.critical(
                    "sequence_gap_detected",
                    extra={
                        "series_key": series_key,
                        "expected": expected_sequence,
                        "actual": row.sequence_number,
                    },
                )
                raise SequenceGapError(series_key, expected_sequence, row.sequence_number)
            if not row.current_digest:
                raise UnsignedPredecessorError(series_key, row.serial_number)
            if row.previous_digest != expected_previous:
                logger.critical(
                    "hash_chain_broken",
                    extra={
                        "series_key": series_key,
                        "serial_number": row.serial_number,
                    },
                )
                raise HashChainBrokenError(
                    series_key=series_key,
                    serial_number=row.serial_number,
                    expected_digest=expected_previous,
                    actual_digest=row.previous_digest,
                )
            expected_previous = row.current_digest

        logger.info(
            "chain_verified",
            extra={"series_key": series_key, "invoice_count": len(rows)},
        )
        return len(rows)
