"""
Pure domain layer.

Data transfer objects, classification rules, tax grouping, reconciliation,
the UBL assembler and the Signer / AuthorityGateway ports, with NO
dependencies on:
- ORM (SQLAlchemy sessions or models)
- Network I/O
- The system clock (time is injected)
"""

from einvoice_kernel.domain.assembler import AssemblerSettings, DocumentAssembler
from einvoice_kernel.domain.classification import (
    CanonicalStatus,
    Classification,
    CustomerKind,
    InvoiceProfile,
    InvoiceTypeCode,
    SubmissionKind,
    classify,
    resolve_profile,
    submission_kind_for,
    type_prefix,
)
from einvoice_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from einvoice_kernel.domain.dtos import (
    Address,
    AllowanceCharge,
    Customer,
    DocumentIdentity,
    DocumentReference,
    InvoiceRequest,
    LineItem,
    Prepayment,
    Seller,
    TaxSubtotal,
    Totals,
    UnsignedDocument,
)
from einvoice_kernel.domain.gateway import (
    ApiCredentials,
    AuthorityGateway,
    GatewayResponse,
    IssuedCredential,
    SubmissionPayload,
)
from einvoice_kernel.domain.reconciliation import ReconciliationResult, error_summary, reconcile
from einvoice_kernel.domain.signer import CsrConfig, CsrMaterial, SignedDocument, Signer
from einvoice_kernel.domain.tax_grouping import group_tax_subtotals

__all__ = [
    "Address",
    "AllowanceCharge",
    "ApiCredentials",
    "AssemblerSettings",
    "AuthorityGateway",
    "CanonicalStatus",
    "Classification",
    "Clock",
    "CsrConfig",
    "CsrMaterial",
    "Customer",
    "CustomerKind",
    "DeterministicClock",
    "DocumentAssembler",
    "DocumentIdentity",
    "DocumentReference",
    "GatewayResponse",
    "InvoiceProfile",
    "InvoiceRequest",
    "InvoiceTypeCode",
    "IssuedCredential",
    "LineItem",
    "Prepayment",
    "ReconciliationResult",
    "Seller",
    "SignedDocument",
    "Signer",
    "SubmissionKind",
    "SubmissionPayload",
    "SystemClock",
    "TaxSubtotal",
    "Totals",
    "UnsignedDocument",
    "classify",
    "error_summary",
    "group_tax_subtotals",
    "reconcile",
    "resolve_profile",
    "submission_kind_for",
    "type_prefix",
]
