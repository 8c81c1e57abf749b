"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-capable service in the kernel.  Services receive a
    SQLAlchemy ``Session`` and persist through ``session.flush()``,
    never ``session.commit()``.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit themselves.  Internal atomic units
      (a payment, a run insert race) use savepoints, which roll back only
      the service's own work.

Failure modes:
    - A subclass that commits breaks the caller's ability to combine a
      distribution and its payments into one atomic unit.
"""

from abc import ABC
from decimal import Decimal, InvalidOperation
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from obligation_kernel.db.base import Base
from obligation_kernel.db.types import MONEY_DECIMAL_PLACES, coerce_amount, round_money
from obligation_kernel.exceptions import NonPositiveAmountError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()``; the caller
          controls transaction boundaries.

    Non-goals:
        - Read-only aggregate queries belong in
          ``obligation_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        """
        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session


def require_positive_amount(
    field: str,
    value: Decimal | int | str,
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Coerce caller input to a positive Decimal rounded to ``decimal_places``.

    Raises:
        NonPositiveAmountError: value is a float, non-numeric, non-finite,
            or not above zero after rounding.
    """
    try:
        amount = coerce_amount(value)
    except (TypeError, InvalidOperation):
        raise NonPositiveAmountError(field, value) from None
    if not amount.is_finite():
        raise NonPositiveAmountError(field, value)
    amount = round_money(amount, decimal_places)
    if amount <= Decimal("0"):
        raise NonPositiveAmountError(field, value)
    return amount
