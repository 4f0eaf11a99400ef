"""
Module: placement_kernel.models.guarantor_change
Responsibility: ORM persistence for employer-reassignment events.
Architecture position: Kernel > Models.

Invariants enforced:
    - refund_processed moves False -> True exactly once.  The service layer
      raises AlreadyProcessedError on a second attempt.
    - new_application_id is set exactly once, when the replacement
      application is materialized.

Audit relevance:
    Each row is mirrored by a guarantor_change lifecycle history entry on
    the original application.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from placement_kernel.db.base import UUID, TrackedBase, as_utc
from placement_kernel.domain.dtos import GuarantorChangeInfo
from placement_kernel.domain.lifecycle import CandidateStatus


class GuarantorChange(TrackedBase):
    """Reassignment of a candidate from one sponsor to another."""

    __tablename__ = "guarantor_changes"

    __table_args__ = (
        Index("idx_guarantor_change_candidate", "candidate_id"),
        Index("idx_guarantor_change_from_client", "from_client_id"),
        Index("idx_guarantor_change_to_client", "to_client_id"),
        Index("idx_guarantor_change_original", "original_application_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    original_application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id"),
        nullable=False,
    )

    new_application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("applications.id"),
        nullable=True,
    )

    from_client_id: Mapped[UUID] = mapped_column(ForeignKey("clients.id"), nullable=False)

    to_client_id: Mapped[UUID] = mapped_column(ForeignKey("clients.id"), nullable=False)

    candidate_id: Mapped[UUID] = mapped_column(ForeignKey("candidates.id"), nullable=False)

    refund_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    refund_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    refund_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    refund_processed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    candidate_status_before: Mapped[CandidateStatus] = mapped_column(String(30), nullable=False)

    candidate_status_after: Mapped[CandidateStatus] = mapped_column(String(30), nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    change_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> GuarantorChangeInfo:
        return GuarantorChangeInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            original_application_id=self.original_application_id,
            new_application_id=self.new_application_id,
            from_client_id=self.from_client_id,
            to_client_id=self.to_client_id,
            candidate_id=self.candidate_id,
            refund_amount=self.refund_amount,
            refund_currency=self.refund_currency,
            refund_processed=self.refund_processed,
            refund_processed_date=self.refund_processed_date,
            candidate_status_before=CandidateStatus(self.candidate_status_before),
            candidate_status_after=CandidateStatus(self.candidate_status_after),
            change_date=as_utc(self.change_date),
            reason=self.reason,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<GuarantorChange {self.from_client_id} -> {self.to_client_id}>"
