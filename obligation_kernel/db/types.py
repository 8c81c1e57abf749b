"""
Module: obligation_kernel.db.types
Responsibility: Portable decimal column type and the canonical money rounding
    helpers.  Centralizes precision and rounding so that every model and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the obligation kernel.  PostgreSQL stores money as
      NUMERIC(38, 9); every other dialect stores the canonical decimal string,
      so SQLite round-trips values exactly instead of through REAL.
    - round_money() is the ONLY sanctioned rounding function for money.

Failure modes:
    - decimal.InvalidOperation when a non-numeric value is bound.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator


MONEY_DECIMAL_PLACES = 2
SHARE_FACTOR_DECIMAL_PLACES = 18
DEFAULT_ROUNDING = ROUND_HALF_UP


class PortableDecimal(TypeDecorator):
    """
    Decimal stored natively on PostgreSQL and as text elsewhere.

    Contract:
        Python side is always ``Decimal``.  On PostgreSQL the column is
        ``NUMERIC(precision, scale)``; on other dialects it is ``VARCHAR(64)``
        holding ``str(Decimal)``.

    Non-goals:
        - SQL-side arithmetic, ordering, or SUM over the text representation.
          Callers filter on status columns and aggregate in Python.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__()
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(
                Numeric(self.precision, self.scale, asdecimal=True)
            )
        return dialect.type_descriptor(String(64))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = value if isinstance(value, Decimal) else Decimal(str(value))
        if dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


def quantum(decimal_places: int) -> Decimal:
    """Smallest representable unit at ``decimal_places`` (e.g. 0.01 for 2)."""
    return Decimal(1).scaleb(-decimal_places)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for money in the kernel.
    """
    return value.quantize(quantum(decimal_places), rounding=rounding)


def to_minor_units(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> int:
    """
    Convert a major-unit amount to an integer count of minor units.

    Anything below the minor unit is truncated toward zero; callers round
    with round_money() first when they need half-up semantics.

    Example:
        to_minor_units(Decimal("10.50"), 2) -> 1050
    """
    scaled = value.scaleb(decimal_places).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_minor_units(value: int, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """
    Create a Decimal amount from integer minor units.

    Example:
        from_minor_units(1050, 2) -> Decimal("10.50")
    """
    return Decimal(value).scaleb(-decimal_places).quantize(quantum(decimal_places))


def coerce_amount(value: Decimal | int | str) -> Decimal:
    """
    Convert caller input to Decimal without passing through float.

    Raises:
        decimal.InvalidOperation: if ``value`` is not numeric.
        TypeError: if ``value`` is a float.
    """
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be float; pass Decimal or str")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
