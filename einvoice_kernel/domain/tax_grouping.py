"""
Tax grouping -- per (category, percent) subtotals of a document.

Responsibility:
    Collapse the document's lines into one TaxSubtotal per distinct
    (tax category, VAT percent) pair, in first-seen order.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Sum of group taxable amounts == sum of line net amounts.
    - Sum of group tax amounts == sum of line VAT amounts.
    - Number of groups == number of distinct (category, percent) pairs.
    Line net amounts are already rounded to 2 places, so the sums are exact
    and no second rounding happens at group level.
"""

from collections.abc import Iterable
from decimal import Decimal

from einvoice_kernel.db.types import round_amount
from einvoice_kernel.domain.dtos import LineItem, TaxSubtotal


def group_key(line: LineItem) -> tuple[str, Decimal]:
    return (line.category, round_amount(line.vat_percent))


def group_tax_subtotals(lines: Iterable[LineItem]) -> tuple[TaxSubtotal, ...]:
    """
    Group lines by (category, percent).

    The exemption reason of a group is taken from the first line that
    opened it.
    """
    groups: dict[tuple[str, Decimal], dict] = {}

    for line in lines:
        key = group_key(line)
        group = groups.get(key)
        if group is None:
            group = {
                "taxable": Decimal("0.00"),
                "tax": Decimal("0.00"),
                "reason_code": line.exemption_reason_code,
                "reason": line.exemption_reason,
            }
            groups[key] = group
        group["taxable"] += line.net_amount
        group["tax"] += round_amount(line.vat_amount)

    return tuple(
        TaxSubtotal(
            category=category,
            percent=percent,
            taxable_amount=group["taxable"],
            tax_amount=group["tax"],
            exemption_reason_code=group["reason_code"],
            exemption_reason=group["reason"],
        )
        for (category, percent), group in groups.items()
    )
