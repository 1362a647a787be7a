"""
Signer -- port for the external signing capability.

Responsibility:
    Describes what the kernel needs from the signing tool (key + CSR
    generation, document signing) without knowing how it is done, plus the
    CSR configuration rendered in the tool's ``.properties`` format.

Architecture position:
    Kernel > Domain -- interface only, zero I/O.  Implementations live
    outside the kernel (an SDK wrapper in production, fakes in tests).

Failure modes:
    Implementations may raise anything; the services wrap every exception in
    SigningFailedError with the operation name and the upstream message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from einvoice_kernel.domain.dtos import UnsignedDocument

PRODUCTION_TEMPLATE = "ZATCA-Code-Signing"
NON_PRODUCTION_TEMPLATE = "TSTZATCA-Code-Signing"


@dataclass(frozen=True)
class CsrConfig:
    """Identity of a unit as it goes into its certificate signing request."""

    common_name: str
    serial_number: str
    organization_identifier: str
    organization_unit_name: str
    organization_name: str
    country_name: str
    invoice_type: str
    location_address: str
    industry_business_category: str
    production: bool = False

    @property
    def template_name(self) -> str:
        return PRODUCTION_TEMPLATE if self.production else NON_PRODUCTION_TEMPLATE

    def to_properties(self) -> str:
        entries = (
            ("csr.common.name", self.common_name),
            ("csr.serial.number", self.serial_number),
            ("csr.organization.identifier", self.organization_identifier),
            ("csr.organization.unit.name", self.organization_unit_name),
            ("csr.organization.name", self.organization_name),
            ("csr.country.name", self.country_name),
            ("csr.invoice.type", self.invoice_type),
            ("csr.location.address", self.location_address),
            ("csr.industry.business.category", self.industry_business_category),
            ("csr.template.name", self.template_name),
        )
        return "\n".join(f"{key}={value}" for key, value in entries)


@dataclass(frozen=True)
class CsrMaterial:
    private_key: str
    csr: str


@dataclass(frozen=True)
class SignedDocument:
    """
    Signer output.

    digest is the base64 SHA-256 invoice hash that the next invoice of the
    series chains from; qr_payload is the base64 TLV string.
    """

    signed_xml: bytes
    digest: str
    qr_payload: str


class Signer(ABC):
    """
    External signing capability.

    Contract:
        Synchronous black box.  generate_csr() returns new key material for
        one unit; sign() fills the signature extension and QR placeholder of
        an assembled document.
    """

    @abstractmethod
    def generate_csr(self, common_name: str, csr_config: CsrConfig) -> CsrMaterial:
        ...

    @abstractmethod
    def sign(
        self,
        document: UnsignedDocument,
        private_key: str,
        certificate: str,
    ) -> SignedDocument:
        ...
