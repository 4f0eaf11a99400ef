"""
Module: placement_kernel.models.lifecycle_history
Responsibility: ORM persistence for the append-only application lifecycle
    history -- one row per status change, cancellation, payment, cost,
    guarantor change or document status change.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain types only.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py listeners).
    - action is a member of LifecycleAction.
    - sequence is strictly increasing per application.  It orders rows that
      share a performed_at timestamp (a cancellation writes status_change
      and cancellation at the same instant).
    - financial_impact is JSON with amounts stored as strings.

Failure modes:
    - ImmutabilityViolationError on any UPDATE or DELETE.

Audit relevance:
    This table IS the audit trail for the placement lifecycle.  Every
    reader in selectors/lifecycle_history_selector.py is derived from it.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from placement_kernel.db.base import UUID, Base, as_utc
from placement_kernel.domain.dtos import LifecycleAction, LifecycleHistoryEntry
from placement_kernel.domain.lifecycle import ApplicationStatus, CandidateStatus


def _enum_or_none(enum_cls, value):
    return enum_cls(value) if value is not None else None


class ApplicationLifecycleHistory(Base):
    """
    Immutable audit row.

    Guarantees:
        - Exactly one acting user (performed_by) and one tenant per row.
        - application_id references an existing application.
    """

    __tablename__ = "application_lifecycle_history"

    __table_args__ = (
        Index("idx_history_application", "application_id", "sequence"),
        Index("idx_history_tenant_time", "tenant_id", "performed_at"),
        Index("idx_history_action", "tenant_id", "action"),
        Index("idx_history_actor", "tenant_id", "performed_by"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id"),
        nullable=False,
    )

    action: Mapped[LifecycleAction] = mapped_column(String(30), nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    from_status: Mapped[str | None] = mapped_column(String(40), nullable=True)

    to_status: Mapped[str | None] = mapped_column(String(40), nullable=True)

    from_client_id: Mapped[UUID | None] = mapped_column(nullable=True)

    to_client_id: Mapped[UUID | None] = mapped_column(nullable=True)

    candidate_status_before: Mapped[str | None] = mapped_column(String(30), nullable=True)

    candidate_status_after: Mapped[str | None] = mapped_column(String(30), nullable=True)

    financial_impact: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    performed_by: Mapped[UUID] = mapped_column(nullable=False)

    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> LifecycleHistoryEntry:
        return LifecycleHistoryEntry(
            id=self.id,
            tenant_id=self.tenant_id,
            application_id=self.application_id,
            action=LifecycleAction(self.action),
            performed_by=self.performed_by,
            performed_at=as_utc(self.performed_at),
            sequence=self.sequence,
            from_status=_enum_or_none(ApplicationStatus, self.from_status),
            to_status=_enum_or_none(ApplicationStatus, self.to_status),
            from_client_id=self.from_client_id,
            to_client_id=self.to_client_id,
            candidate_status_before=_enum_or_none(CandidateStatus, self.candidate_status_before),
            candidate_status_after=_enum_or_none(CandidateStatus, self.candidate_status_after),
            financial_impact=self.financial_impact,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<ApplicationLifecycleHistory {self.action} #{self.sequence} app={self.application_id}>"
