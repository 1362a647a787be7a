"""
CredentialService tests.

Verifies:
- The onboarding state machine: CSR -> compliance -> (check) -> production
- Credential slots: compliance, production and the active mirror
- Revocation clears every slot, keeps key material and is idempotent
- Gateway and signer failures leave the unit untouched
"""

import pytest

from einvoice_kernel.exceptions import (
    AuthorityRejectedError,
    CertificateIssuanceError,
    CredentialUnitNotFoundError,
    InvalidCredentialTransitionError,
    MissingComplianceCredentialsError,
    MissingFieldError,
    SigningFailedError,
    UnitAlreadyExistsError,
)
from einvoice_kernel.models.credential_unit import CredentialState


class TestGenerateCsr:

    def test_new_unit(self, credential_service, make_onboarding_request, fake_signer):
        unit = credential_service.generate_csr(make_onboarding_request("ACME"))

        assert unit.state == CredentialState.CSR_GENERATED.value
        assert unit.csr.startswith("-----BEGIN CERTIFICATE REQUEST-----")
        assert "KEY-ACME" in unit.private_key
        assert "csr.common.name=ACME" in unit.onboarding_config
        assert "csr.template.name=TSTZATCA-Code-Signing" in unit.onboarding_config
        assert not unit.has_active_credentials

    def test_production_template(self, credential_service, make_onboarding_request):
        unit = credential_service.generate_csr(make_onboarding_request("ACME", production=True))

        assert unit.production is True
        assert "csr.template.name=ZATCA-Code-Signing" in unit.onboarding_config

    def test_missing_field(self, credential_service, make_onboarding_request):
        with pytest.raises(MissingFieldError) as exc_info:
            credential_service.generate_csr(make_onboarding_request("ACME", organization_identifier=""))

        assert exc_info.value.field_name == "organization_identifier"
        assert exc_info.value.operation == "generate_csr"

    def test_duplicate_common_name(self, credential_service, make_onboarding_request):
        credential_service.generate_csr(make_onboarding_request("ACME"))

        with pytest.raises(UnitAlreadyExistsError):
            credential_service.generate_csr(make_onboarding_request("ACME"))

    def test_signer_failure(self, credential_service, make_onboarding_request, fake_signer):
        fake_signer.fail_with = OSError("openssl not found")

        with pytest.raises(SigningFailedError) as exc_info:
            credential_service.generate_csr(make_onboarding_request("ACME"))

        assert exc_info.value.operation == "generate_csr"
        with pytest.raises(CredentialUnitNotFoundError):
            credential_service.get_unit("ACME")


class TestComplianceCertificate:

    def test_issue(self, credential_service, make_onboarding_request, fake_gateway):
        credential_service.generate_csr(make_onboarding_request("ACME"))

        unit = credential_service.issue_compliance_certificate("ACME", "123345")

        assert unit.state == CredentialState.COMPLIANCE_ISSUED.value
        assert unit.compliance_token == "COMPLIANCE-TOKEN"
        assert unit.compliance_secret == "compliance-secret"
        assert unit.compliance_request_id == "1234567890"
        assert unit.active_token == "COMPLIANCE-TOKEN"
        assert unit.active_secret == "compliance-secret"

        operation, call = fake_gateway.calls[0]
        assert operation == "issue_compliance_certificate"
        assert call["otp"] == "123345"
        assert call["csr"] == unit.csr
        assert call["production"] is False

    def test_otp_required(self, credential_service, make_onboarding_request):
        credential_service.generate_csr(make_onboarding_request("ACME"))

        with pytest.raises(MissingFieldError) as exc_info:
            credential_service.issue_compliance_certificate("ACME", "")
        assert exc_info.value.field_name == "otp"

    def test_unknown_unit(self, credential_service):
        with pytest.raises(CredentialUnitNotFoundError):
            credential_service.issue_compliance_certificate("NOBODY", "123345")

    def test_gateway_failure_leaves_state(self, credential_service, make_onboarding_request, fake_gateway):
        credential_service.generate_csr(make_onboarding_request("ACME"))
        fake_gateway.errors["issue_compliance_certificate"] = AuthorityRejectedError(
            "issue_compliance_certificate", "Invalid OTP", status_code=400,
        )

        with pytest.raises(CertificateIssuanceError) as exc_info:
            credential_service.issue_compliance_certificate("ACME", "000000")

        error = exc_info.value
        assert error.common_name == "ACME"
        assert error.operation == "issue_compliance_certificate"
        assert error.upstream_message == "Invalid OTP"
        assert error.upstream_code == "AUTHORITY_REJECTED"
        assert error.status_code == 400
        assert "ACME" in str(error)
        assert isinstance(error.__cause__, AuthorityRejectedError)

        unit = credential_service.get_unit("ACME")
        assert unit.state == CredentialState.CSR_GENERATED.value
        assert unit.compliance_token is None
        assert unit.active_token is None

    def test_cannot_issue_twice(self, acme_unit, credential_service):
        with pytest.raises(InvalidCredentialTransitionError) as exc_info:
            credential_service.issue_compliance_certificate("ACME", "123345")

        assert exc_info.value.current_state == CredentialState.COMPLIANCE_ISSUED.value
        assert exc_info.value.target_state == CredentialState.COMPLIANCE_ISSUED.value


class TestProductionCertificate:

    def test_issue_after_compliance(self, acme_unit, credential_service, fake_gateway):
        unit = credential_service.issue_production_certificate("ACME")

        assert unit.state == CredentialState.PRODUCTION_ISSUED.value
        assert unit.production_token == "PRODUCTION-TOKEN"
        assert unit.production_request_id == "30368"
        assert unit.active_token == "PRODUCTION-TOKEN"
        assert unit.active_secret == "production-secret"
        assert unit.compliance_token == "COMPLIANCE-TOKEN"
        assert unit.is_onboarded

    def test_authenticates_with_compliance_credentials(self, acme_unit, credential_service, fake_gateway):
        credential_service.issue_production_certificate("ACME")

        operation, call = fake_gateway.calls[-1]
        assert operation == "issue_production_certificate"
        assert call["compliance_request_id"] == "1234567890"
        assert call["credentials"].token == "COMPLIANCE-TOKEN"
        assert call["credentials"].secret == "compliance-secret"

    def test_issue_after_compliance_check(self, acme_unit, credential_service):
        credential_service.mark_compliance_checked("ACME")
        unit = credential_service.issue_production_certificate("ACME")
        assert unit.state == CredentialState.PRODUCTION_ISSUED.value

    def test_requires_compliance_credentials(self, credential_service, make_onboarding_request, fake_gateway):
        credential_service.generate_csr(make_onboarding_request("ACME"))

        with pytest.raises(MissingComplianceCredentialsError):
            credential_service.issue_production_certificate("ACME")
        assert "issue_production_certificate" not in fake_gateway.operations()

    def test_gateway_failure_keeps_compliance_slot_active(self, acme_unit, credential_service, fake_gateway):
        fake_gateway.errors["issue_production_certificate"] = AuthorityRejectedError(
            "issue_production_certificate", "compliance steps incomplete", status_code=400,
        )

        with pytest.raises(CertificateIssuanceError) as exc_info:
            credential_service.issue_production_certificate("ACME")

        assert exc_info.value.common_name == "ACME"
        assert exc_info.value.operation == "issue_production_certificate"

        unit = credential_service.get_unit("ACME")
        assert unit.state == CredentialState.COMPLIANCE_ISSUED.value
        assert unit.active_token == "COMPLIANCE-TOKEN"
        assert unit.production_token is None


class TestComplianceChecked:

    def test_marks_from_compliance_issued(self, acme_unit, credential_service):
        unit = credential_service.mark_compliance_checked("ACME")
        assert unit.state == CredentialState.COMPLIANCE_CHECKED.value

    def test_noop_after_production(self, onboard, credential_service):
        onboard("ACME", production_certificate=True)

        unit = credential_service.mark_compliance_checked("ACME")
        assert unit.state == CredentialState.PRODUCTION_ISSUED.value


class TestRevoke:

    def test_clears_credentials(self, onboard, credential_service, deterministic_clock):
        onboard("ACME", production_certificate=True)

        unit = credential_service.revoke("ACME")

        assert unit.state == CredentialState.REVOKED.value
        for slot in (
            "compliance_token", "compliance_secret", "compliance_request_id",
            "production_token", "production_secret", "production_request_id",
            "active_token", "active_secret",
        ):
            assert getattr(unit, slot) is None, slot
        assert unit.csr is not None
        assert unit.private_key is not None
        assert unit.revoked_at == deterministic_clock.now()

    def test_idempotent(self, acme_unit, credential_service, deterministic_clock):
        first = credential_service.revoke("ACME")
        revoked_at = first.revoked_at
        deterministic_clock.advance(3600)

        second = credential_service.revoke("ACME")

        assert second.state == CredentialState.REVOKED.value
        assert second.revoked_at == revoked_at

    def test_revoked_unit_cannot_be_reissued(self, acme_unit, credential_service):
        credential_service.revoke("ACME")

        with pytest.raises(MissingComplianceCredentialsError):
            credential_service.issue_production_certificate("ACME")

    def test_transition_is_logged(self, acme_unit, credential_service, captured_logs):
        credential_service.revoke("ACME")

        transitions = [r for r in captured_logs() if r["message"] == "credential_transition"]
        assert transitions[-1]["from_state"] == "compliance_issued"
        assert transitions[-1]["to_state"] == "revoked"
        assert transitions[-1]["common_name"] == "ACME"


class TestQueries:

    def test_list_units(self, onboard, credential_service, make_onboarding_request):
        onboard("ACME")
        credential_service.generate_csr(make_onboarding_request("BETA"))

        summaries = credential_service.list_units()

        assert [s.common_name for s in summaries] == ["ACME", "BETA"]
        acme, beta = summaries
        assert acme.status == "onboarded"
        assert acme.state == "compliance_issued"
        assert acme.vat_number == "399999999900003"
        assert acme.organization_name == "ACME Trading Co"
        assert beta.status == "pending"

    def test_get_unit(self, acme_unit, credential_service):
        assert credential_service.get_unit("ACME") is acme_unit
