"""
Module: einvoice_kernel.db.types
Responsibility: Annotated column aliases and the single rounding function for
    invoice amounts.
Architecture position: Kernel > DB.  Imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Every amount written into a document or a row is rounded with
      round_amount() (half-up, 2 places).  No floats anywhere.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String, Text

# Document amounts: 2 decimal places
Money = Annotated[Decimal, Numeric(18, 2)]

# Quantities, unit prices and exchange rates keep more precision until the
# line total is rounded
Quantity = Annotated[Decimal, Numeric(18, 6)]
Rate = Annotated[Decimal, Numeric(18, 6)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# Monotonic invoice counter
Sequence = Annotated[int, BigInteger]

# Base64 SHA-256 digest (44 characters) with headroom
Digest = Annotated[str, String(128)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, Text]

AMOUNT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_amount(value: Decimal | int | str, decimal_places: int = AMOUNT_DECIMAL_PLACES) -> Decimal:
    """
    Round an amount half-up to the document precision.

    This is the only sanctioned rounding function for document amounts.

    Example:
        round_amount(Decimal("2.345")) -> Decimal("2.35")
    """
    quantizer = Decimal(10) ** -decimal_places
    return Decimal(value).quantize(quantizer, rounding=DEFAULT_ROUNDING)


def format_amount(value: Decimal) -> str:
    """Render a rounded amount with exactly two decimals, as the XML expects."""
    return f"{round_amount(value):.2f}"
