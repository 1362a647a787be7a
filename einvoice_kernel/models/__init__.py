"""ORM models for the e-invoicing kernel."""

from einvoice_kernel.models.credential_unit import (
    VALID_TRANSITIONS,
    CredentialState,
    CredentialUnit,
)
from einvoice_kernel.models.invoice import (
    Invoice,
    InvoiceHash,
    InvoiceLine,
    InvoiceStatus,
)
from einvoice_kernel.models.invoice_series import InvoiceSeries
from einvoice_kernel.models.submission import CanonicalStatus, Submission

__all__ = [
    "CanonicalStatus",
    "CredentialState",
    "CredentialUnit",
    "Invoice",
    "InvoiceHash",
    "InvoiceLine",
    "InvoiceSeries",
    "InvoiceStatus",
    "Submission",
    "VALID_TRANSITIONS",
]
