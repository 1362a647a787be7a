"""
Reconciliation -- authority response to canonical status.

Responsibility:
    Turn a raw authority response into a CanonicalStatus, deterministically.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    SubmissionRouter for every attempt.

Invariants enforced:
    - Success signals, checked in priority order:
        1. reportingStatus == "REPORTED"
        2. clearanceStatus == "CLEARED"
        3. validationResults.status == "PASS"
      Any one of them makes the attempt successful.  The canonical status
      then follows the submission kind (clearance -> CLEARED, reporting ->
      REPORTED), never the signal that fired.
    - No signal, or no response at all, gives FAILED.

Audit relevance:
    decided_by records which signal settled the outcome, since the authority
    has used all three shapes across API versions.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from einvoice_kernel.domain.classification import (
    CanonicalStatus,
    SubmissionKind,
    success_status_for,
)


@dataclass(frozen=True)
class ReconciliationResult:
    status: CanonicalStatus
    decided_by: str | None
    reporting_status: str | None
    clearance_status: str | None
    validation_status: str | None

    @property
    def succeeded(self) -> bool:
        return self.status != CanonicalStatus.FAILED


def _validation_status(response: Mapping[str, Any]) -> str | None:
    results = response.get("validationResults")
    if isinstance(results, Mapping):
        return results.get("status")
    return None


def reconcile(
    response: Mapping[str, Any] | None,
    kind: SubmissionKind,
) -> ReconciliationResult:
    response = response or {}
    reporting = response.get("reportingStatus")
    clearance = response.get("clearanceStatus")
    validation = _validation_status(response)

    signals = (
        ("reportingStatus", reporting == "REPORTED"),
        ("clearanceStatus", clearance == "CLEARED"),
        ("validationResults.status", validation == "PASS"),
    )
    decided_by = next((name for name, fired in signals if fired), None)

    status = success_status_for(kind) if decided_by else CanonicalStatus.FAILED

    return ReconciliationResult(
        status=status,
        decided_by=decided_by,
        reporting_status=reporting,
        clearance_status=clearance,
        validation_status=validation,
    )


def error_summary(response: Mapping[str, Any] | None) -> str | None:
    """
    Diagnostic text from an authority response.

    Looks at validationResults.errorMessages, then a top-level errors list,
    then a top-level message.  Entries render as ``message (code)``.
    """
    if not response:
        return None

    entries: list[Any] = []
    results = response.get("validationResults")
    if isinstance(results, Mapping):
        entries = list(results.get("errorMessages") or [])
    if not entries:
        entries = list(response.get("errors") or [])

    rendered = [_render_entry(entry) for entry in entries]
    rendered = [text for text in rendered if text]
    if rendered:
        return "; ".join(rendered)

    message = response.get("message")
    return str(message) if message else None


def _render_entry(entry: Any) -> str | None:
    if isinstance(entry, Mapping):
        message = entry.get("message")
        code = entry.get("code")
        if message and code:
            return f"{message} ({code})"
        return message or code
    return str(entry) if entry else None
