"""
Module: placement_kernel.models.ledger
Responsibility: ORM persistence for money received from clients (Payment)
    and money spent by the office (Cost) against an application.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - Payment rows are append-only (db/immutability.py).  A refund is a new
      row with a negative amount and payment_type REFUND, never an edit.
    - amount is Decimal; currency is a 3-letter code.

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE of a Payment.

Audit relevance:
    Refund rows are created only by the cancellation and guarantor-change
    workflows and are referenced from their lifecycle history payloads.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from placement_kernel.db.base import UUID, Base, as_utc
from placement_kernel.domain.dtos import CostInfo, PaymentInfo

PAYMENT_TYPE_REFUND = "REFUND"
COST_TYPE_DEPORTATION = "DEPORTATION"


class Payment(Base):
    """A signed receipt.  Negative amounts are refunds."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_application", "application_id"),
        Index("idx_payment_client", "client_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id"),
        nullable=False,
    )

    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("clients.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)

    is_refundable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[UUID] = mapped_column(nullable=False)

    def to_dto(self) -> PaymentInfo:
        return PaymentInfo(
            id=self.id,
            application_id=self.application_id,
            client_id=self.client_id,
            amount=self.amount,
            currency=self.currency,
            payment_type=self.payment_type,
            payment_date=as_utc(self.payment_date),
            is_refundable=self.is_refundable,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<Payment {self.payment_type} {self.amount} {self.currency}>"


class Cost(Base):
    """An office expense, optionally tied to an application."""

    __tablename__ = "costs"

    __table_args__ = (
        Index("idx_cost_application", "application_id"),
        Index("idx_cost_candidate", "candidate_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("applications.id"),
        nullable=True,
    )

    candidate_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("candidates.id"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    cost_type: Mapped[str] = mapped_column(String(50), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    cost_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_by_id: Mapped[UUID] = mapped_column(nullable=False)

    def to_dto(self) -> CostInfo:
        return CostInfo(
            id=self.id,
            application_id=self.application_id,
            candidate_id=self.candidate_id,
            amount=self.amount,
            currency=self.currency,
            cost_type=self.cost_type,
            cost_date=as_utc(self.cost_date),
            description=self.description,
        )

    def __repr__(self) -> str:
        return f"<Cost {self.cost_type} {self.amount} {self.currency}>"
