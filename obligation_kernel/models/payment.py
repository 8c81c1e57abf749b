"""
Module: obligation_kernel.models.payment
Responsibility: ORM persistence for the payment ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/obligation.py only.

Invariants enforced:
    - external_ref is unique (uq_payment_external_ref); it is the idempotency
      key for payment retries.
    - Rows are append-only: ORM listeners reject UPDATE and DELETE
      (db/immutability.py).

Audit relevance:
    A payment that matched neither a debt nor a credit record is still
    written, with null links, so every received payment is accounted for.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from obligation_kernel.db.base import Base, UUIDString
from obligation_kernel.domain.obligation import OverpayPolicy, PaymentType


class PaymentRecord(Base):
    """One received payment and where it was applied."""

    __tablename__ = "payment_records"

    __table_args__ = (
        UniqueConstraint("external_ref", name="uq_payment_external_ref"),
        Index("idx_payment_payer", "payer_id"),
        Index("idx_payment_recipient", "recipient_id"),
        Index("idx_payment_debt_record", "debt_record_id"),
        Index("idx_payment_credit_record", "credit_record_id"),
    )

    external_ref: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    payer_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    recipient_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    debt_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("obligation_records.id"),
        nullable=True,
    )

    credit_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("obligation_records.id"),
        nullable=True,
    )

    # Amount actually moved on each side (differs from amount under CLAMP)
    debt_applied: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    credit_applied: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    overpay_policy: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=OverpayPolicy.CLAMP.value,
    )

    payment_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=PaymentType.REPARATIONS_PAYMENT.value,
    )

    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    blockchain_block_number: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )

    blockchain_network_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def same_details(self, payer_id: str, recipient_id: str, amount: Decimal) -> bool:
        """True when a retry under this external_ref carries the same payload."""
        return (
            self.payer_id == payer_id
            and self.recipient_id == recipient_id
            and self.amount == amount
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord {self.external_ref}: {self.payer_id} -> "
            f"{self.recipient_id} {self.amount}>"
        )
