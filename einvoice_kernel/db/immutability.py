"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A signed invoice is a legal document.  Its number, its chain link and its
XML must never change after the signer has produced a digest; the next
invoice in the series has already chained from that digest.  Only the
submission outcome (status, and the countersigned copy returned by
clearance) may still be recorded.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Bulk ``update()`` / ``delete()`` statements bypass mapper events; they are
reserved for maintenance and test fixtures.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity       | When Immutable                      | Mutable fields
-------------|-------------------------------------|----------------------------
Invoice      | Once status has left ASSEMBLED      | status, cleared_xml, updated_at
InvoiceLine  | Always once written                 | updated_at
InvoiceHash  | Always once written                 | updated_at

===============================================================================
DESIGN DECISIONS
===============================================================================

1. CHECK "WAS SIGNED" NOT "IS SIGNED".
   The signing step itself moves ASSEMBLED -> SIGNED and writes signed_xml
   and qr_code in the same flush.  We look at the OLD status in the
   attribute history: only a row that was already past ASSEMBLED is frozen.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from einvoice_kernel.exceptions import ImmutabilityViolationError
from einvoice_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_INVOICE_MUTABLE_FIELDS = frozenset({"status", "cleared_xml", "updated_at"})


def _violation(entity_type: str, entity_id: str, field: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).mapper.column_attrs
        if get_history(target, attr.key).has_changes()
    ]


def _was_signed(target) -> bool:
    from einvoice_kernel.models.invoice import InvoiceStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = status_history.deleted[0]
    else:
        old_status = target.status
    return old_status != InvoiceStatus.ASSEMBLED.value


def _check_invoice_immutability(mapper, connection, target):
    """Block changes to document fields of an invoice that was already signed."""
    if not _was_signed(target):
        return

    for key in _changed_columns(target):
        if key in _INVOICE_MUTABLE_FIELDS:
            continue
        raise _violation(
            "Invoice",
            target.serial_number,
            key,
            f"Cannot modify field '{key}' on signed invoice",
        )


def _check_invoice_delete(mapper, connection, target):
    if not _was_signed(target):
        return
    raise _violation(
        "Invoice",
        target.serial_number,
        "*",
        "Signed invoices cannot be deleted",
    )


def _check_append_only(entity_type: str):
    def _check(mapper, connection, target):
        for key in _changed_columns(target):
            if key != "updated_at":
                raise _violation(
                    entity_type,
                    str(target.id),
                    key,
                    f"{entity_type} rows are immutable once written",
                )

    return _check


def _check_append_only_delete(entity_type: str):
    def _check(mapper, connection, target):
        raise _violation(
            entity_type,
            str(target.id),
            "*",
            f"{entity_type} rows cannot be deleted",
        )

    return _check


_check_line_immutability = _check_append_only("InvoiceLine")
_check_hash_immutability = _check_append_only("InvoiceHash")
_check_hash_delete = _check_append_only_delete("InvoiceHash")


def _listeners():
    from einvoice_kernel.models.invoice import Invoice, InvoiceHash, InvoiceLine

    return (
        (Invoice, "before_update", _check_invoice_immutability),
        (Invoice, "before_delete", _check_invoice_delete),
        (InvoiceLine, "before_update", _check_line_immutability),
        (InvoiceHash, "before_update", _check_hash_immutability),
        (InvoiceHash, "before_delete", _check_hash_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent; called by create_tables() and by application start-up.
    """
    for target, event_name, listener in _listeners():
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally tamper with signed
    data to prove the chain verifier catches it.
    """
    for target, event_name, listener in _listeners():
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
