"""
Module: obligation_kernel.domain.shares
Responsibility:
    Split a parent's amount among its children in equal shares, in minor
    currency units, without losing or inventing money.

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O.

Invariants enforced:
    - Conservation: sum(share.amount) == amount, exactly.
    - Largest-remainder rounding: every child receives floor(amount / k) minor
      units; the leftover r = amount mod k minor units go one each to the
      first r children in sorted id order.  Shares therefore differ by at
      most one minor unit, and the assignment is reproducible.
    - A single child receives the amount unchanged.
    - The sibling share factor is the per-level fraction 1/k, not a product
      of factors down the lineage.

Failure modes:
    - ValueError if called with no children (callers treat k == 0 as a leaf
      and never split).
    - ValueError if amount is negative or carries sub-minor-unit precision.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from obligation_kernel.db.types import (
    MONEY_DECIMAL_PLACES,
    SHARE_FACTOR_DECIMAL_PLACES,
    from_minor_units,
    quantum,
    to_minor_units,
)


@dataclass(frozen=True)
class ChildShare:
    """One child's slice of a sibling split."""

    child_id: str
    amount: Decimal
    received_remainder: bool


@dataclass(frozen=True)
class SiblingSplit:
    """
    Result of splitting one parent's amount among its k children.

    Guarantees:
        - ``sum(s.amount for s in shares) == parent_amount``.
        - ``len(shares) == sibling_count``.
    """

    parent_amount: Decimal
    sibling_count: int
    share_factor: Decimal
    shares: tuple[ChildShare, ...]

    @property
    def total(self) -> Decimal:
        return sum((s.amount for s in self.shares), Decimal("0"))


def sibling_share_factor(
    sibling_count: int,
    decimal_places: int = SHARE_FACTOR_DECIMAL_PLACES,
) -> Decimal:
    """1/k at ``decimal_places`` precision (exact when 1/k terminates)."""
    if sibling_count < 1:
        raise ValueError("sibling_count must be at least 1")
    factor = Decimal(1) / Decimal(sibling_count)
    return factor.quantize(quantum(decimal_places), rounding=ROUND_HALF_UP).normalize()


def split_among_siblings(
    amount: Decimal,
    child_ids: Sequence[str],
    decimal_places: int = MONEY_DECIMAL_PLACES,
    factor_places: int = SHARE_FACTOR_DECIMAL_PLACES,
) -> SiblingSplit:
    """
    Divide ``amount`` among ``child_ids`` using largest-remainder rounding.

    Preconditions:
        - ``child_ids`` is non-empty and free of duplicates.
        - ``amount`` >= 0 and already rounded to ``decimal_places``.

    Args:
        amount: The parent's amount at this level.
        child_ids: Children to receive shares.  Order of the result follows
            sorted(child_ids).
        decimal_places: Minor-unit precision of the currency.
        factor_places: Precision of the recorded 1/k share factor.

    Returns:
        SiblingSplit with one ChildShare per child.
    """
    if not child_ids:
        raise ValueError("Cannot split among zero children")
    if amount < Decimal("0"):
        raise ValueError(f"Cannot split a negative amount: {amount}")
    if amount != amount.quantize(quantum(decimal_places)):
        raise ValueError(
            f"Amount {amount} carries more than {decimal_places} decimal places"
        )

    ordered = sorted(child_ids)
    if len(set(ordered)) != len(ordered):
        raise ValueError("child_ids must be unique")

    k = len(ordered)
    total_minor = to_minor_units(amount, decimal_places)
    base, remainder = divmod(total_minor, k)

    shares = tuple(
        ChildShare(
            child_id=child_id,
            amount=from_minor_units(base + (1 if i < remainder else 0), decimal_places),
            received_remainder=i < remainder,
        )
        for i, child_id in enumerate(ordered)
    )

    return SiblingSplit(
        parent_amount=amount,
        sibling_count=k,
        share_factor=sibling_share_factor(k, factor_places),
        shares=shares,
    )
