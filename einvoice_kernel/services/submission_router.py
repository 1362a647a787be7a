"""
SubmissionRouter -- send signed invoices to the authority and reconcile.

Responsibility:
    Routes one signed invoice to clearance (standard profile), reporting
    (simplified profile) or the compliance-check endpoint, reconciles the
    authority's answer into a CanonicalStatus and records every attempt.

Architecture position:
    Kernel > Services -- orchestrator.  Like ModulePostingService in a
    ledger, it is the one service that may own the transaction boundary
    (``auto_commit=True``) so that failed attempts survive the re-raise.

Invariants enforced:
    - Readiness: the invoice is signed (signed_xml + digest) and its unit is
      not revoked and holds active credentials.
    - Every call that reaches the gateway increments attempt_count and
      stamps last_attempt_at, success or failure.
    - Canonical status comes only from reconcile(); attempt counts never
      influence it.
    - A passing compliance check moves the unit COMPLIANCE_ISSUED ->
      COMPLIANCE_CHECKED.

Failure modes:
    - InvoiceNotFoundError: unknown serial number (matched case-insensitively).
    - SubmissionNotReadyError: see readiness above.  Nothing is recorded and,
      with auto_commit, the transaction is rolled back to release the locks.
    - SubmissionFailedError: the gateway raised.  The attempt is recorded as
      FAILED (with any response body) and committed when auto_commit is set.

Audit relevance:
    raw_response is stored verbatim with its SHA-256 fingerprint.  Retries
    are never automatic: resubmitting a clearance has duplicate-filing
    implications, so the caller decides.
"""

import base64
import binascii
import time
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from einvoice_kernel.domain.classification import (
    CanonicalStatus,
    InvoiceProfile,
    SubmissionKind,
    submission_kind_for,
)
from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.domain.gateway import (
    ApiCredentials,
    AuthorityGateway,
    GatewayResponse,
    SubmissionPayload,
)
from einvoice_kernel.domain.reconciliation import error_summary, reconcile
from einvoice_kernel.exceptions import (
    AuthorityGatewayError,
    InvoiceNotFoundError,
    SubmissionFailedError,
    SubmissionNotReadyError,
)
from einvoice_kernel.logging_config import LogContext, get_logger
from einvoice_kernel.models.credential_unit import CredentialState, CredentialUnit
from einvoice_kernel.models.invoice import Invoice, InvoiceStatus
from einvoice_kernel.models.submission import Submission
from einvoice_kernel.utils.hashing import hash_payload

logger = get_logger("services.submission")

_INVOICE_STATUS = {
    CanonicalStatus.CLEARED: InvoiceStatus.CLEARED,
    CanonicalStatus.REPORTED: InvoiceStatus.REPORTED,
    CanonicalStatus.FAILED: InvoiceStatus.FAILED,
}

COMPLIANCE_OPERATION = "compliance_check"


class SubmissionRouter:
    """
    Clearance / reporting router with attempt bookkeeping.

    Contract:
        submit(serial_number, production) and check_compliance(serial_number)
        return the CanonicalStatus of the attempt, or raise.

    Guarantees:
        - Standard-profile invoices go to clearance, all others to
          reporting.
        - The countersigned document returned by clearance is stored as
          cleared_xml.

    Non-goals:
        - No retry loop; SubmissionFailedError carries the attempt number so
          the caller can decide.
    """

    def __init__(
        self,
        session: Session,
        gateway: AuthorityGateway,
        clock: Clock,
        auto_commit: bool = True,
    ):
        self._session = session
        self._gateway = gateway
        self._clock = clock
        self._auto_commit = auto_commit

    def submit(self, serial_number: str, production: bool = False) -> CanonicalStatus:
        """Clear or report one signed invoice."""
        return self._route(serial_number, production, compliance=False)

    def check_compliance(self, serial_number: str) -> CanonicalStatus:
        """Run one signed invoice through the authority's compliance check."""
        return self._route(serial_number, None, compliance=True)

    def get_submission(self, serial_number: str) -> Submission | None:
        """Stored bookkeeping for an invoice, or None if never submitted."""
        invoice = self._load_invoice(serial_number, lock=False)
        return self._session.execute(
            select(Submission).where(Submission.invoice_id == invoice.id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _route(self, serial_number: str, production: bool | None, compliance: bool) -> CanonicalStatus:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            serial_number=serial_number,
            operation=COMPLIANCE_OPERATION if compliance else "submit",
        ):
            try:
                return self._do_route(serial_number, production, compliance)
            except SubmissionFailedError:
                raise
            except (SubmissionNotReadyError, InvoiceNotFoundError):
                if self._auto_commit:
                    self._session.rollback()
                raise
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error("submission_aborted", exc_info=True)
                raise

    def _do_route(self, serial_number: str, production: bool | None, compliance: bool) -> CanonicalStatus:
        invoice = self._load_invoice(serial_number, lock=True)
        unit = self._load_ready_unit(invoice)
        if production is None:
            production = unit.production

        kind = submission_kind_for(InvoiceProfile(invoice.profile))
        payload = SubmissionPayload.from_signed(
            invoice.current_digest, str(invoice.transaction_id), invoice.signed_xml,
        )
        credentials = ApiCredentials(unit.active_token, unit.active_secret)

        submission = self._record_attempt(invoice, kind)
        logger.info(
            "submission_started",
            extra={
                "kind": kind.value,
                "attempt": submission.attempt_count,
                "production": production,
                "compliance": compliance,
            },
        )

        t0 = time.monotonic()
        try:
            response = self._call_gateway(kind, payload, credentials, production, compliance)
        except AuthorityGatewayError as exc:
            self._record_failure(invoice, submission, kind, exc)
            if self._auto_commit:
                self._session.commit()
            raise SubmissionFailedError(
                serial_number=serial_number,
                kind=kind.value,
                attempt=submission.attempt_count,
                message=exc.upstream_message,
            ) from exc

        status = self._reconcile(invoice, submission, kind, response)
        if compliance and status != CanonicalStatus.FAILED:
            self._mark_compliance_checked(unit)

        self._session.flush()
        if self._auto_commit:
            self._session.commit()

        logger.info(
            "submission_reconciled",
            extra={
                "kind": kind.value,
                "status": status.value,
                "decided_by": submission.decided_by,
                "attempt": submission.attempt_count,
                "http_status": response.status_code,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return status

    def _load_invoice(self, serial_number: str, lock: bool) -> Invoice:
        stmt = select(Invoice).where(
            func.upper(Invoice.serial_number) == serial_number.upper()
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        invoice = self._session.execute(stmt).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(serial_number)
        return invoice

    def _load_ready_unit(self, invoice: Invoice) -> CredentialUnit:
        if not invoice.signed_xml or not invoice.current_digest:
            raise SubmissionNotReadyError(invoice.serial_number, "invoice is not signed")

        unit = self._session.execute(
            select(CredentialUnit)
            .where(CredentialUnit.common_name == invoice.series_key)
            .with_for_update()
        ).scalar_one_or_none()
        if unit is None:
            raise SubmissionNotReadyError(
                invoice.serial_number, f"no credential unit {invoice.series_key}",
            )
        if unit.state_enum == CredentialState.REVOKED:
            raise SubmissionNotReadyError(invoice.serial_number, "credential unit is revoked")
        if not unit.has_active_credentials:
            raise SubmissionNotReadyError(invoice.serial_number, "no active credentials")
        return unit

    def _call_gateway(
        self,
        kind: SubmissionKind,
        payload: SubmissionPayload,
        credentials: ApiCredentials,
        production: bool,
        compliance: bool,
    ) -> GatewayResponse:
        if compliance:
            return self._gateway.check_compliance(payload, credentials, production=production)
        if kind == SubmissionKind.CLEARANCE:
            return self._gateway.clear(payload, credentials, production=production)
        return self._gateway.report(payload, credentials, production=production)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record_attempt(self, invoice: Invoice, kind: SubmissionKind) -> Submission:
        submission = self._session.execute(
            select(Submission).where(Submission.invoice_id == invoice.id)
        ).scalar_one_or_none()
        if submission is None:
            submission = Submission(
                invoice_id=invoice.id,
                serial_number=invoice.serial_number,
                kind=kind.value,
                canonical_status=CanonicalStatus.PENDING.value,
                attempt_count=0,
            )
            self._session.add(submission)

        submission.kind = kind.value
        submission.attempt_count += 1
        submission.last_attempt_at = self._clock.now()
        self._session.flush()
        return submission

    def _reconcile(
        self,
        invoice: Invoice,
        submission: Submission,
        kind: SubmissionKind,
        response: GatewayResponse,
    ) -> CanonicalStatus:
        result = reconcile(response.body, kind)

        submission.canonical_status = result.status.value
        submission.reporting_status = result.reporting_status
        submission.clearance_status = result.clearance_status
        submission.validation_status = result.validation_status
        submission.decided_by = result.decided_by
        submission.raw_response = response.body
        submission.response_hash = hash_payload(response.body or {})
        submission.http_status = response.status_code
        submission.last_error = (
            None if result.succeeded
            else error_summary(response.body) or "no success signal in authority response"
        )

        invoice.status = _INVOICE_STATUS[result.status].value
        if result.status == CanonicalStatus.CLEARED:
            cleared = _decode_cleared_invoice((response.body or {}).get("clearedInvoice"))
            if cleared is not None:
                invoice.cleared_xml = cleared
        return result.status

    def _record_failure(
        self,
        invoice: Invoice,
        submission: Submission,
        kind: SubmissionKind,
        exc: AuthorityGatewayError,
    ) -> None:
        result = reconcile(exc.body, kind)

        submission.canonical_status = CanonicalStatus.FAILED.value
        submission.reporting_status = result.reporting_status
        submission.clearance_status = result.clearance_status
        submission.validation_status = result.validation_status
        submission.decided_by = None
        submission.raw_response = exc.body
        submission.response_hash = hash_payload(exc.body) if exc.body else None
        submission.http_status = exc.status_code
        submission.last_error = str(exc)
        invoice.status = InvoiceStatus.FAILED.value
        self._session.flush()

        logger.warning(
            "submission_failed",
            extra={
                "kind": kind.value,
                "attempt": submission.attempt_count,
                "error_code": exc.code,
                "http_status": exc.status_code,
            },
        )

    def _mark_compliance_checked(self, unit: CredentialUnit) -> None:
        if unit.state_enum != CredentialState.COMPLIANCE_ISSUED:
            return
        previous = unit.transition_to(CredentialState.COMPLIANCE_CHECKED)
        logger.info(
            "credential_transition",
            extra={
                "common_name": unit.common_name,
                "from_state": previous,
                "to_state": unit.state,
            },
        )


def _decode_cleared_invoice(encoded: str | None) -> str | None:
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("cleared_invoice_undecodable")
        return None
