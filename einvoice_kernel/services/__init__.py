"""Services for the e-invoicing kernel (write side)."""

from einvoice_kernel.services.credential_service import (
    CredentialService,
    OnboardingRequest,
    UnitSummary,
)
from einvoice_kernel.services.invoice_service import InvoiceService
from einvoice_kernel.services.sequence_service import (
    SequenceAllocation,
    SequenceService,
    format_serial_number,
)
from einvoice_kernel.services.submission_router import SubmissionRouter

__all__ = [
    "CredentialService",
    "InvoiceService",
    "OnboardingRequest",
    "SequenceAllocation",
    "SequenceService",
    "SubmissionRouter",
    "UnitSummary",
    "format_serial_number",
]
