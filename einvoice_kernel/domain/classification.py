"""
Classification -- invoice type, profile and routing rules.

Responsibility:
    Pure functions that decide, from a document's type code, 7-character
    type name and counterparty kind: the serial-number prefix, the authority
    profile (standard vs simplified) and the submission route (clearance vs
    reporting).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Used by the
    sequencer, the assembler and the submission router so that all three
    agree on one set of rules.

Invariants enforced:
    - Credit notes are always prefixed RE and debit notes AD, whatever the
      counterparty.
    - An explicit type name decides the profile: "01..." is standard, any
      other name is simplified.  Without one, a B2B counterparty makes the
      document standard.  Standard documents are cleared, all others are
      reported.
"""

from dataclasses import dataclass
from enum import Enum


class InvoiceTypeCode(str, Enum):
    """UN/EDIFACT 1001 codes accepted by the authority."""

    INVOICE = "388"
    CREDIT_NOTE = "381"
    DEBIT_NOTE = "383"
    PREPAYMENT = "386"


class InvoiceProfile(str, Enum):
    STANDARD = "standard"
    SIMPLIFIED = "simplified"


class CustomerKind(str, Enum):
    B2B = "B2B"
    B2C = "B2C"


class SubmissionKind(str, Enum):
    CLEARANCE = "clearance"
    REPORTING = "reporting"


class CanonicalStatus(str, Enum):
    """Reconciled outcome of a submission."""

    PENDING = "pending"
    CLEARED = "cleared"
    REPORTED = "reported"
    FAILED = "failed"


STANDARD_TYPE_NAME = "0100000"
SIMPLIFIED_TYPE_NAME = "0200000"

PROFILE_IDS: dict[InvoiceProfile, str] = {
    InvoiceProfile.STANDARD: "clearance:1.0",
    InvoiceProfile.SIMPLIFIED: "reporting:1.0",
}

NOTE_INSTRUCTIONS: dict[InvoiceTypeCode, str] = {
    InvoiceTypeCode.CREDIT_NOTE: "Cancellation",
    InvoiceTypeCode.DEBIT_NOTE: "Debit Adjustment",
}


def resolve_profile(
    type_name: str | None,
    customer_kind: CustomerKind | None = None,
) -> InvoiceProfile:
    if type_name:
        if type_name.startswith("01"):
            return InvoiceProfile.STANDARD
        return InvoiceProfile.SIMPLIFIED
    if customer_kind == CustomerKind.B2B:
        return InvoiceProfile.STANDARD
    return InvoiceProfile.SIMPLIFIED


def type_prefix(
    type_code: InvoiceTypeCode,
    type_name: str | None = None,
    customer_kind: CustomerKind | None = None,
) -> str:
    """
    Serial-number prefix for a document.

    refund -> RE, adjustment -> AD, else business-to-business -> SD, else SI.
    """
    if type_code == InvoiceTypeCode.CREDIT_NOTE:
        return "RE"
    if type_code == InvoiceTypeCode.DEBIT_NOTE:
        return "AD"
    if resolve_profile(type_name, customer_kind) == InvoiceProfile.STANDARD:
        return "SD"
    return "SI"


def submission_kind_for(profile: InvoiceProfile) -> SubmissionKind:
    if profile == InvoiceProfile.STANDARD:
        return SubmissionKind.CLEARANCE
    return SubmissionKind.REPORTING


def success_status_for(kind: SubmissionKind) -> CanonicalStatus:
    if kind == SubmissionKind.CLEARANCE:
        return CanonicalStatus.CLEARED
    return CanonicalStatus.REPORTED


@dataclass(frozen=True)
class Classification:
    """
    Resolved classification of one document.

    Contract:
        Built by classify(); type_name is always populated (defaulted from
        the profile when the caller did not supply one).
    """

    type_code: InvoiceTypeCode
    type_name: str
    profile: InvoiceProfile
    prefix: str

    @property
    def is_note(self) -> bool:
        return self.type_code in NOTE_INSTRUCTIONS

    @property
    def profile_id(self) -> str:
        return PROFILE_IDS[self.profile]

    @property
    def submission_kind(self) -> SubmissionKind:
        return submission_kind_for(self.profile)


def classify(
    type_code: InvoiceTypeCode | str = InvoiceTypeCode.INVOICE,
    type_name: str | None = None,
    customer_kind: CustomerKind | str | None = None,
) -> Classification:
    code = InvoiceTypeCode(type_code)
    kind = CustomerKind(customer_kind) if customer_kind is not None else None
    profile = resolve_profile(type_name, kind)
    if not type_name:
        type_name = (
            STANDARD_TYPE_NAME if profile == InvoiceProfile.STANDARD
            else SIMPLIFIED_TYPE_NAME
        )
    return Classification(
        type_code=code,
        type_name=type_name,
        profile=profile,
        prefix=type_prefix(code, type_name, kind),
    )
