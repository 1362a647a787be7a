"""
HttpAuthorityGateway -- httpx implementation of the AuthorityGateway port.

Responsibility:
    Speaks the authority's REST API: certificate issuance (compliance and
    production), compliance check, clearance and reporting.  Translates
    transport failures and non-2xx answers into AuthorityGatewayError
    subclasses carrying the HTTP status and parsed body.

Architecture position:
    Services -- outer adapter.  Depends on einvoice_kernel (port, errors,
    logging) and einvoice_config (endpoints, timeout).

Failure modes:
    - GatewayTimeoutError: no answer within ``timeout_seconds``.
    - AuthorityUnavailableError: connection-level failure.
    - AuthorityRejectedError: non-2xx status; message extracted from
      validationResults.errorMessages, errors[] or message.

No retries happen here: a repeated clearance has duplicate-filing
implications, so the caller decides.
"""

from __future__ import annotations

import base64
import re
from typing import Any

import httpx

from einvoice_config.schema import AuthorityConfig
from einvoice_kernel.domain.gateway import (
    ApiCredentials,
    AuthorityGateway,
    GatewayResponse,
    IssuedCredential,
    SubmissionPayload,
)
from einvoice_kernel.domain.reconciliation import error_summary
from einvoice_kernel.exceptions import (
    AuthorityRejectedError,
    AuthorityUnavailableError,
    GatewayTimeoutError,
)
from einvoice_kernel.logging_config import get_logger

logger = get_logger("services.authority_gateway")

_PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
_PEM_END = "-----END CERTIFICATE-----"
_PEM_ARMOUR = re.compile(r"-----(BEGIN|END) CERTIFICATE-----")
_BASE64_PEM_PREFIX = "LS0tLS1"

COMPLIANCE_PATH = "/compliance"
PRODUCTION_CSID_PATH = "/production/csids"
COMPLIANCE_INVOICES_PATH = "/compliance/invoices"
CLEARANCE_PATH = "/invoices/clearance/single"
REPORTING_PATH = "/invoices/reporting/single"


def strip_certificate(token: str) -> str:
    """Certificate body without PEM armour or whitespace."""
    return "".join(_PEM_ARMOUR.sub("", token).split())


def basic_auth_header(credentials: ApiCredentials) -> str:
    raw = f"{strip_certificate(credentials.token)}:{credentials.secret}"
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def encode_csr(csr: str) -> str:
    """CSRs already base64-encoded as a whole PEM pass through unchanged."""
    if csr.startswith(_BASE64_PEM_PREFIX):
        return "".join(csr.split())
    return base64.b64encode(csr.encode("utf-8")).decode("ascii")


def wrap_certificate(token: str) -> str:
    if token.startswith(_PEM_BEGIN):
        return token
    return f"{_PEM_BEGIN}\n{token}\n{_PEM_END}"


class HttpAuthorityGateway(AuthorityGateway):
    """
    Authority API over httpx.

    Contract:
        One HTTP request per call; the client is reused across calls.
        Pass ``client`` to inject a transport (tests use httpx.MockTransport).
    """

    def __init__(self, config: AuthorityConfig, client: httpx.Client | None = None):
        self._config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    def issue_compliance_certificate(
        self, csr: str, otp: str, production: bool = False
    ) -> IssuedCredential:
        response = self._post(
            "issue_compliance_certificate",
            self._config.onboarding_url(production) + COMPLIANCE_PATH,
            json={"csr": encode_csr(csr)},
            headers={"OTP": otp},
        )
        return self._issued(response)

    def issue_production_certificate(
        self, compliance_request_id: str, credentials: ApiCredentials, production: bool = False
    ) -> IssuedCredential:
        response = self._post(
            "issue_production_certificate",
            self._config.onboarding_url(production) + PRODUCTION_CSID_PATH,
            json={"compliance_request_id": compliance_request_id},
            headers={"Authorization": basic_auth_header(credentials)},
        )
        return self._issued(response)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def check_compliance(
        self, payload: SubmissionPayload, credentials: ApiCredentials, production: bool = False
    ) -> GatewayResponse:
        return self._post(
            "compliance_check",
            self._config.onboarding_url(production) + COMPLIANCE_INVOICES_PATH,
            json=payload.to_json(),
            headers={"Authorization": basic_auth_header(credentials)},
        )

    def clear(
        self, payload: SubmissionPayload, credentials: ApiCredentials, production: bool = False
    ) -> GatewayResponse:
        return self._post(
            "clearance",
            self._config.submission_url(production) + CLEARANCE_PATH,
            json=payload.to_json(),
            headers={
                "Authorization": basic_auth_header(credentials),
                "Clearance-Status": "1",
            },
        )

    def report(
        self, payload: SubmissionPayload, credentials: ApiCredentials, production: bool = False
    ) -> GatewayResponse:
        return self._post(
            "reporting",
            self._config.submission_url(production) + REPORTING_PATH,
            json=payload.to_json(),
            headers={"Authorization": basic_auth_header(credentials)},
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, extra: dict[str, str]) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Accept-Version": self._config.api_version,
            "Accept-Language": self._config.language,
            "Content-Type": "application/json",
            **extra,
        }

    def _post(
        self,
        operation: str,
        url: str,
        json: dict[str, Any],
        headers: dict[str, str],
    ) -> GatewayResponse:
        logger.debug("authority_request", extra={"operation": operation, "url": url})
        try:
            response = self._client.post(
                url,
                json=json,
                headers=self._headers(headers),
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            logger.warning("authority_timeout", extra={"operation": operation})
            raise GatewayTimeoutError(
                operation,
                f"no response within {self._config.timeout_seconds}s",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "authority_unavailable",
                extra={"operation": operation, "error": str(exc)},
            )
            raise AuthorityUnavailableError(operation, str(exc)) from exc

        body = _parse_body(response)
        if not response.is_success:
            message = error_summary(body) or response.reason_phrase or f"HTTP {response.status_code}"
            logger.warning(
                "authority_rejected",
                extra={"operation": operation, "http_status": response.status_code},
            )
            raise AuthorityRejectedError(
                operation,
                message,
                status_code=response.status_code,
                body=body,
            )

        logger.info(
            "authority_response",
            extra={"operation": operation, "http_status": response.status_code},
        )
        return GatewayResponse(status_code=response.status_code, body=body or {})

    def _issued(self, response: GatewayResponse) -> IssuedCredential:
        body = response.body
        token = body.get("binarySecurityToken")
        secret = body.get("secret")
        request_id = body.get("requestID")
        if not token or not secret or request_id is None:
            raise AuthorityRejectedError(
                "certificate_issuance",
                error_summary(body) or "response carries no binarySecurityToken/secret/requestID",
                status_code=response.status_code,
                body=body,
            )
        return IssuedCredential(
            token=wrap_certificate(token),
            secret=secret,
            request_id=str(request_id),
            raw=body,
        )


def _parse_body(response: httpx.Response) -> dict[str, Any] | None:
    if not response.content:
        return None
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text[:500]}
    return body if isinstance(body, dict) else {"data": body}


def build_authority_gateway(config: AuthorityConfig) -> HttpAuthorityGateway:
    return HttpAuthorityGateway(config)
