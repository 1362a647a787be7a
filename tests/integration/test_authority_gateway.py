"""
HttpAuthorityGateway tests over httpx.MockTransport.

Verifies:
- Endpoint selection per environment (developer portal, simulation, core)
- Headers: API version, language, OTP, Basic auth, Clearance-Status
- Certificate responses are PEM-wrapped
- Transport failures and non-2xx answers map to typed errors
"""

import base64
import json

import httpx
import pytest

from einvoice_config.schema import AuthorityConfig
from einvoice_kernel.domain.gateway import ApiCredentials, SubmissionPayload
from einvoice_kernel.exceptions import (
    AuthorityRejectedError,
    AuthorityUnavailableError,
    GatewayTimeoutError,
)
from einvoice_services.authority_gateway import (
    HttpAuthorityGateway,
    basic_auth_header,
    encode_csr,
    strip_certificate,
    wrap_certificate,
)

CONFIG = AuthorityConfig(
    developer_portal_url="https://authority.test/developer-portal",
    simulation_url="https://authority.test/simulation",
    production_url="https://authority.test/core",
    api_version="V2",
    language="ar",
    timeout_seconds=5.0,
)

CSR_PEM = "-----BEGIN CERTIFICATE REQUEST-----\nMIIB\n-----END CERTIFICATE REQUEST-----"
CREDENTIALS = ApiCredentials("-----BEGIN CERTIFICATE-----\nTUlJQ0\n-----END CERTIFICATE-----", "s3cret")
PAYLOAD = SubmissionPayload.from_signed("ZGlnZXN0", "8e6000cf-1a98-4174-b3e7-b5d5954bc10d", b"<Invoice/>")


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, body=None, content=None, raises=None):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.body = body
        self.content = content
        self.raises = raises

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raises is not None:
            raise self.raises(request)
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> dict:
        return json.loads(self.last.content)


def _gateway(recorder: Recorder) -> HttpAuthorityGateway:
    return HttpAuthorityGateway(CONFIG, client=httpx.Client(transport=httpx.MockTransport(recorder)))


ISSUED = {
    "requestID": 1234567890,
    "dispositionMessage": "ISSUED",
    "binarySecurityToken": "TUlJQ0",
    "secret": "s3cret",
}


class TestCertificates:

    def test_compliance_certificate(self):
        recorder = Recorder(body=ISSUED)

        issued = _gateway(recorder).issue_compliance_certificate(CSR_PEM, "123345")

        request = recorder.last
        assert str(request.url) == "https://authority.test/developer-portal/compliance"
        assert request.headers["OTP"] == "123345"
        assert request.headers["Accept-Version"] == "V2"
        assert request.headers["Accept-Language"] == "ar"
        assert recorder.last_json() == {"csr": base64.b64encode(CSR_PEM.encode()).decode()}
        assert issued.token == "-----BEGIN CERTIFICATE-----\nTUlJQ0\n-----END CERTIFICATE-----"
        assert issued.secret == "s3cret"
        assert issued.request_id == "1234567890"

    def test_compliance_certificate_in_production(self):
        recorder = Recorder(body=ISSUED)

        _gateway(recorder).issue_compliance_certificate(CSR_PEM, "123345", production=True)

        assert str(recorder.last.url) == "https://authority.test/core/compliance"

    def test_production_certificate(self):
        recorder = Recorder(body=ISSUED)

        _gateway(recorder).issue_production_certificate("1234567890", CREDENTIALS)

        request = recorder.last
        assert str(request.url) == "https://authority.test/developer-portal/production/csids"
        assert recorder.last_json() == {"compliance_request_id": "1234567890"}
        assert request.headers["Authorization"] == (
            "Basic " + base64.b64encode(b"TUlJQ0:s3cret").decode()
        )

    def test_incomplete_issuance_response(self):
        recorder = Recorder(body={"requestID": 1, "dispositionMessage": "NOT_ISSUED"})

        with pytest.raises(AuthorityRejectedError) as exc_info:
            _gateway(recorder).issue_compliance_certificate(CSR_PEM, "123345")
        assert exc_info.value.operation == "certificate_issuance"


class TestInvoices:

    def test_clearance(self):
        body = {"clearanceStatus": "CLEARED", "clearedInvoice": "PEludm9pY2UvPg=="}
        recorder = Recorder(body=body)

        response = _gateway(recorder).clear(PAYLOAD, CREDENTIALS)

        request = recorder.last
        assert str(request.url) == "https://authority.test/simulation/invoices/clearance/single"
        assert request.headers["Clearance-Status"] == "1"
        assert recorder.last_json() == {
            "invoiceHash": "ZGlnZXN0",
            "uuid": "8e6000cf-1a98-4174-b3e7-b5d5954bc10d",
            "invoice": base64.b64encode(b"<Invoice/>").decode(),
        }
        assert response.status_code == 200
        assert response.body == body

    def test_reporting_in_production(self):
        recorder = Recorder(status_code=202, body={"reportingStatus": "REPORTED"})

        response = _gateway(recorder).report(PAYLOAD, CREDENTIALS, production=True)

        assert str(recorder.last.url) == "https://authority.test/core/invoices/reporting/single"
        assert "Clearance-Status" not in recorder.last.headers
        assert response.status_code == 202

    def test_compliance_check_goes_to_onboarding_environment(self):
        recorder = Recorder(body={"validationResults": {"status": "PASS"}})

        _gateway(recorder).check_compliance(PAYLOAD, CREDENTIALS)

        assert str(recorder.last.url) == "https://authority.test/developer-portal/compliance/invoices"

    def test_empty_body(self):
        recorder = Recorder(status_code=202, content=b"")

        response = _gateway(recorder).report(PAYLOAD, CREDENTIALS)

        assert response.body == {}


class TestFailures:

    def test_rejection_carries_status_and_body(self):
        body = {
            "validationResults": {
                "status": "ERROR",
                "errorMessages": [{"code": "invalid-invoice-hash", "message": "hash mismatch"}],
            },
            "clearanceStatus": "NOT_CLEARED",
        }
        recorder = Recorder(status_code=400, body=body)

        with pytest.raises(AuthorityRejectedError) as exc_info:
            _gateway(recorder).clear(PAYLOAD, CREDENTIALS)

        error = exc_info.value
        assert error.status_code == 400
        assert error.body == body
        assert error.upstream_message == "hash mismatch (invalid-invoice-hash)"
        assert error.operation == "clearance"

    def test_non_json_error_body(self):
        recorder = Recorder(status_code=503, content=b"Service Unavailable")

        with pytest.raises(AuthorityRejectedError) as exc_info:
            _gateway(recorder).report(PAYLOAD, CREDENTIALS)
        assert exc_info.value.body == {"message": "Service Unavailable"}
        assert exc_info.value.upstream_message == "Service Unavailable"

    def test_unauthorized_without_body(self):
        recorder = Recorder(status_code=401, content=b"")

        with pytest.raises(AuthorityRejectedError) as exc_info:
            _gateway(recorder).report(PAYLOAD, CREDENTIALS)
        assert exc_info.value.upstream_message == "Unauthorized"
        assert exc_info.value.body is None

    def test_timeout(self):
        recorder = Recorder(raises=lambda request: httpx.ReadTimeout("timed out", request=request))

        with pytest.raises(GatewayTimeoutError) as exc_info:
            _gateway(recorder).clear(PAYLOAD, CREDENTIALS)
        assert exc_info.value.status_code is None

    def test_connection_error(self):
        recorder = Recorder(raises=lambda request: httpx.ConnectError("refused", request=request))

        with pytest.raises(AuthorityUnavailableError):
            _gateway(recorder).issue_compliance_certificate(CSR_PEM, "123345")


class TestHelpers:

    def test_strip_certificate(self):
        assert strip_certificate(CREDENTIALS.token) == "TUlJQ0"
        assert strip_certificate("TUlJQ0") == "TUlJQ0"

    def test_basic_auth_header(self):
        assert basic_auth_header(ApiCredentials("abc", "def")) == "Basic YWJjOmRlZg=="

    def test_encode_csr_passes_through_base64_pem(self):
        encoded = base64.b64encode(CSR_PEM.encode()).decode()
        assert encode_csr(encoded) == encoded
        assert encode_csr(encoded[:20] + "\n" + encoded[20:]) == encoded
        assert encode_csr(CSR_PEM) == encoded

    def test_wrap_certificate_is_idempotent(self):
        wrapped = wrap_certificate("TUlJQ0")
        assert wrapped.startswith("-----BEGIN CERTIFICATE-----\n")
        assert wrap_certificate(wrapped) == wrapped
