"""
CredentialService -- onboarding lifecycle of credential units.

Responsibility:
    Drives one unit through CSR generation, compliance certificate,
    compliance check, production certificate and revocation, holding the
    CSR, private key and the three credential slots.

Architecture position:
    Kernel > Services -- imperative shell.  Key generation is delegated to
    the Signer port and certificate issuance to the AuthorityGateway port.

Invariants enforced:
    - Transitions follow VALID_TRANSITIONS (CredentialUnit.validate_transition).
    - Per-unit serialization: every transition loads the unit with
      ``SELECT ... FOR UPDATE``; different units never contend.
    - No partial credential writes: the gateway is called before any field
      of the unit is touched, so a failure leaves the prior state intact.
    - The active slot mirrors the most recently issued credential.

Failure modes:
    - MissingFieldError: an identity field is absent at onboarding.
    - UnitAlreadyExistsError: the common name is taken (including a lost
      insert race on the unique constraint).
    - CredentialUnitNotFoundError, InvalidCredentialTransitionError,
      MissingComplianceCredentialsError.
    - SigningFailedError: CSR generation failed in the Signer.
    - CertificateIssuanceError: the authority failed an issuance step;
      carries the common name and the gateway error code, chained from the
      AuthorityGatewayError.

Audit relevance:
    Each transition is logged at INFO as ``credential_transition`` with
    from/to state.  OTPs, secrets and keys are never logged.
"""

from collections.abc import Callable
from dataclasses import dataclass, fields

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from einvoice_kernel.domain.clock import Clock
from einvoice_kernel.domain.gateway import ApiCredentials, AuthorityGateway, IssuedCredential
from einvoice_kernel.domain.signer import CsrConfig, Signer
from einvoice_kernel.exceptions import (
    AuthorityGatewayError,
    CertificateIssuanceError,
    CredentialUnitNotFoundError,
    MissingComplianceCredentialsError,
    MissingFieldError,
    SigningFailedError,
    UnitAlreadyExistsError,
)
from einvoice_kernel.logging_config import LogContext, get_logger
from einvoice_kernel.models.credential_unit import CredentialState, CredentialUnit

logger = get_logger("services.credential")


@dataclass(frozen=True)
class OnboardingRequest:
    """Identity of a new unit, as submitted by the caller."""

    common_name: str | None = None
    serial_number: str | None = None
    organization_identifier: str | None = None
    organization_unit_name: str | None = None
    organization_name: str | None = None
    country_name: str | None = None
    invoice_type: str | None = None
    location_address: str | None = None
    industry_business_category: str | None = None
    production: bool = False

    def missing_fields(self) -> list[str]:
        return [
            f.name
            for f in fields(self)
            if f.name != "production" and not getattr(self, f.name)
        ]

    def to_csr_config(self) -> CsrConfig:
        return CsrConfig(
            common_name=self.common_name,
            serial_number=self.serial_number,
            organization_identifier=self.organization_identifier,
            organization_unit_name=self.organization_unit_name,
            organization_name=self.organization_name,
            country_name=self.country_name,
            invoice_type=self.invoice_type,
            location_address=self.location_address,
            industry_business_category=self.industry_business_category,
            production=self.production,
        )


@dataclass(frozen=True)
class UnitSummary:
    common_name: str
    organization_name: str
    vat_number: str
    status: str
    state: str
    country: str
    production: bool


class CredentialService:
    """
    Credential lifecycle state machine.

    Contract:
        Each public method is one transition (or a read).  Methods flush but
        never commit.

    Guarantees:
        - revoke() is idempotent and clears every token/secret field while
          retaining CSR and private key.
        - issue_production_certificate() authenticates with the compliance
          credentials, never the active slot.

    Non-goals:
        - Does NOT retry gateway calls; the caller repeats the same step.
    """

    ONBOARDED = "onboarded"
    PENDING = "pending"

    def __init__(
        self,
        session: Session,
        signer: Signer,
        gateway: AuthorityGateway,
        clock: Clock,
    ):
        self._session = session
        self._signer = signer
        self._gateway = gateway
        self._clock = clock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def generate_csr(self, request: OnboardingRequest) -> CredentialUnit:
        """
        DRAFT -> CSR_GENERATED for a brand-new unit.

        Raises:
            MissingFieldError: An identity field is empty.
            UnitAlreadyExistsError: The common name is already onboarded.
            SigningFailedError: Key / CSR generation failed.
        """
        missing = request.missing_fields()
        if missing:
            raise MissingFieldError(missing[0], "generate_csr")

        common_name = request.common_name
        with LogContext.bind(common_name=common_name, operation="generate_csr"):
            if self._find(common_name) is not None:
                raise UnitAlreadyExistsError(common_name)

            csr_config = request.to_csr_config()
            try:
                material = self._signer.generate_csr(common_name, csr_config)
            except Exception as exc:
                logger.error("csr_generation_failed", extra={"error": str(exc)})
                raise SigningFailedError(
                    operation="generate_csr",
                    reference=common_name,
                    message=str(exc),
                ) from exc

            unit = CredentialUnit(
                common_name=common_name,
                serial_number=request.serial_number,
                organization_identifier=request.organization_identifier,
                organization_unit_name=request.organization_unit_name,
                organization_name=request.organization_name,
                country_name=request.country_name,
                invoice_type=request.invoice_type,
                location_address=request.location_address,
                industry_business_category=request.industry_business_category,
                production=request.production,
                state=CredentialState.DRAFT.value,
            )
            self._transition(unit, CredentialState.CSR_GENERATED)
            unit.csr = material.csr
            unit.private_key = material.private_key
            unit.onboarding_config = csr_config.to_properties()

            savepoint = self._session.begin_nested()
            try:
                self._session.add(unit)
                self._session.flush()
                savepoint.commit()
            except IntegrityError as exc:
                savepoint.rollback()
                raise UnitAlreadyExistsError(common_name) from exc

            return unit

    def issue_compliance_certificate(self, common_name: str, otp: str) -> CredentialUnit:
        """CSR_GENERATED -> COMPLIANCE_ISSUED; mirrors into the active slot."""
        if not otp:
            raise MissingFieldError("otp", "issue_compliance_certificate")

        with LogContext.bind(common_name=common_name, operation="issue_compliance_certificate"):
            unit = self._lock(common_name)
            unit.validate_transition(CredentialState.COMPLIANCE_ISSUED)

            issued = self._call_authority(
                common_name,
                "issue_compliance_certificate",
                lambda: self._gateway.issue_compliance_certificate(
                    unit.csr, otp, production=unit.production,
                ),
            )

            unit.compliance_token = issued.token
            unit.compliance_secret = issued.secret
            unit.compliance_request_id = issued.request_id
            unit.active_token = issued.token
            unit.active_secret = issued.secret
            self._transition(unit, CredentialState.COMPLIANCE_ISSUED)
            self._session.flush()
            return unit

    def issue_production_certificate(self, common_name: str) -> CredentialUnit:
        """
        COMPLIANCE_ISSUED | COMPLIANCE_CHECKED -> PRODUCTION_ISSUED.

        Raises:
            MissingComplianceCredentialsError: No compliance token/secret/
                request id is stored.
        """
        with LogContext.bind(common_name=common_name, operation="issue_production_certificate"):
            unit = self._lock(common_name)
            if not unit.has_compliance_credentials:
                raise MissingComplianceCredentialsError(common_name)
            unit.validate_transition(CredentialState.PRODUCTION_ISSUED)

            credentials = ApiCredentials(unit.compliance_token, unit.compliance_secret)
            issued = self._call_authority(
                common_name,
                "issue_production_certificate",
                lambda: self._gateway.issue_production_certificate(
                    unit.compliance_request_id, credentials, production=unit.production,
                ),
            )

            unit.production_token = issued.token
            unit.production_secret = issued.secret
            unit.production_request_id = issued.request_id
            unit.active_token = issued.token
            unit.active_secret = issued.secret
            self._transition(unit, CredentialState.PRODUCTION_ISSUED)
            self._session.flush()
            return unit

    def mark_compliance_checked(self, common_name: str) -> CredentialUnit:
        """
        COMPLIANCE_ISSUED -> COMPLIANCE_CHECKED.

        No-op in any later state; passing checks keep arriving after
        production issuance.
        """
        unit = self._lock(common_name)
        if unit.state_enum == CredentialState.COMPLIANCE_ISSUED:
            self._transition(unit, CredentialState.COMPLIANCE_CHECKED)
            self._session.flush()
        return unit

    def revoke(self, common_name: str) -> CredentialUnit:
        """Clear every credential slot; idempotent."""
        with LogContext.bind(common_name=common_name, operation="revoke"):
            unit = self._lock(common_name)
            if unit.state_enum == CredentialState.REVOKED:
                logger.info("credential_revoke_noop")
                return unit

            self._transition(unit, CredentialState.REVOKED)
            unit.clear_credentials()
            unit.revoked_at = self._clock.now()
            self._session.flush()
            return unit

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_unit(self, common_name: str) -> CredentialUnit:
        unit = self._find(common_name)
        if unit is None:
            raise CredentialUnitNotFoundError(common_name)
        return unit

    def list_units(self) -> list[UnitSummary]:
        units = self._session.execute(
            select(CredentialUnit).order_by(CredentialUnit.common_name)
        ).scalars()
        return [
            UnitSummary(
                common_name=unit.common_name,
                organization_name=unit.organization_name,
                vat_number=unit.organization_identifier,
                status=self.ONBOARDED if unit.has_active_credentials else self.PENDING,
                state=unit.state,
                country=unit.country_name,
                production=unit.production,
            )
            for unit in units
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, common_name: str) -> CredentialUnit | None:
        return self._session.execute(
            select(CredentialUnit).where(CredentialUnit.common_name == common_name)
        ).scalar_one_or_none()

    def _lock(self, common_name: str) -> CredentialUnit:
        unit = self._session.execute(
            select(CredentialUnit)
            .where(CredentialUnit.common_name == common_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None:
            raise CredentialUnitNotFoundError(common_name)
        return unit

    def _transition(self, unit: CredentialUnit, target: CredentialState) -> None:
        previous = unit.transition_to(target)
        logger.info(
            "credential_transition",
            extra={
                "common_name": unit.common_name,
                "from_state": previous,
                "to_state": target.value,
            },
        )

    def _call_authority(
        self,
        common_name: str,
        operation: str,
        call: Callable[[], IssuedCredential],
    ) -> IssuedCredential:
        try:
            return call()
        except AuthorityGatewayError as exc:
            logger.warning(
                "certificate_issuance_failed",
                extra={
                    "common_name": common_name,
                    "error_code": exc.code,
                    "http_status": exc.status_code,
                },
            )
            raise CertificateIssuanceError(
                common_name=common_name,
                operation=operation,
                message=exc.upstream_message,
                upstream_code=exc.code,
                status_code=exc.status_code,
            ) from exc
