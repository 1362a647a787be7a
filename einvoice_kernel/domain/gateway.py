"""
AuthorityGateway -- port for the tax authority's HTTP API.

Responsibility:
    The four logical operations the kernel performs against the authority,
    expressed in kernel types.  The httpx implementation lives in
    einvoice_services.authority_gateway.

Architecture position:
    Kernel > Domain -- interface only, zero I/O.

Failure modes:
    Implementations raise AuthorityGatewayError subclasses
    (GatewayTimeoutError, AuthorityUnavailableError, AuthorityRejectedError).
    No retries happen behind this interface.
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ApiCredentials:
    """Basic-auth pair: certificate token and its secret."""

    token: str
    secret: str

    def __repr__(self) -> str:
        return "ApiCredentials(token=..., secret=...)"


@dataclass(frozen=True)
class IssuedCredential:
    """Certificate issued by the authority (compliance or production)."""

    token: str
    secret: str
    request_id: str
    raw: dict[str, Any] | None = None

    def __repr__(self) -> str:
        return f"IssuedCredential(request_id={self.request_id!r})"


@dataclass(frozen=True)
class SubmissionPayload:
    """Body common to compliance check, clearance and reporting."""

    invoice_hash: str
    uuid: str
    invoice: str

    @classmethod
    def from_signed(cls, digest: str, transaction_id: str, signed_xml: str | bytes) -> "SubmissionPayload":
        if isinstance(signed_xml, str):
            signed_xml = signed_xml.encode("utf-8")
        return cls(
            invoice_hash=digest,
            uuid=transaction_id,
            invoice=base64.b64encode(signed_xml).decode("ascii"),
        )

    def to_json(self) -> dict[str, str]:
        return {
            "invoiceHash": self.invoice_hash,
            "uuid": self.uuid,
            "invoice": self.invoice,
        }


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: dict[str, Any]


class AuthorityGateway(ABC):
    """
    Tax authority API.

    Contract:
        ``production`` selects the live environment; otherwise onboarding
        goes to the developer portal and submissions to the simulation
        environment.
    """

    @abstractmethod
    def issue_compliance_certificate(
        self, csr: str, otp: str, production: bool = False
    ) -> IssuedCredential:
        ...

    @abstractmethod
    def issue_production_certificate(
        self, compliance_request_id: str, credentials: ApiCredentials, production: bool = False
    ) -> IssuedCredential:
        ...

    @abstractmethod
    def check_compliance(
        self, payload: SubmissionPayload, credentials: ApiCredentials, production: bool = False
    ) -> GatewayResponse:
        ...

    @abstractmethod
    def clear(
        self, payload: SubmissionPayload, credentials: ApiCredentials, production: bool = False
    ) -> GatewayResponse:
        ...

    @abstractmethod
    def report(
        self, payload: SubmissionPayload, credentials: ApiCredentials, production: bool = False
    ) -> GatewayResponse:
        ...
