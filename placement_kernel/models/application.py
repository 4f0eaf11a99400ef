"""
Module: placement_kernel.models.application
Responsibility: ORM persistence for a placement application -- one attempt
    to place one candidate with one sponsoring client.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

Invariants enforced:
    - status is always a member of ApplicationStatus.  It is written only
      by services that first consult domain/lifecycle.py.
    - version is a SQLAlchemy version counter.  Every UPDATE carries
      ``WHERE version = :loaded``; a lost race raises StaleDataError, which
      the services translate to ConflictError.
    - Applications are never deleted.  Terminal statuses are reached, not
      removed.

Failure modes:
    - StaleDataError on concurrent modification (see above).

Audit relevance:
    Every status write is paired with a status_change row in
    application_lifecycle_history inside the same transaction.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from placement_kernel.db.base import UUID, TrackedBase, as_utc
from placement_kernel.domain.dtos import ApplicationInfo
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    ApplicationType,
)


class Application(TrackedBase):
    """
    A placement attempt.

    Guarantees:
        - (tenant_id, status) is indexed for dashboard and intake queries.
        - from_client_id is set only on GUARANTOR_CHANGE applications.
    """

    __tablename__ = "applications"

    __table_args__ = (
        Index("idx_application_tenant_status", "tenant_id", "status"),
        Index("idx_application_candidate", "candidate_id"),
        Index("idx_application_client", "client_id"),
        Index("idx_application_from_client", "from_client_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        String(40),
        nullable=False,
        default=ApplicationStatus.PENDING_AUTHORIZATION.value,
    )

    application_type: Mapped[ApplicationType] = mapped_column(
        String(20),
        nullable=False,
        default=ApplicationType.NEW_CANDIDATE.value,
    )

    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("clients.id"),
        nullable=False,
    )

    # Previous sponsor (guarantor changes only)
    from_client_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("clients.id"),
        nullable=True,
    )

    candidate_id: Mapped[UUID] = mapped_column(
        ForeignKey("candidates.id"),
        nullable=False,
    )

    broker_id: Mapped[UUID | None] = mapped_column(nullable=True)

    fee_template_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("fee_templates.id"),
        nullable=True,
    )

    final_fee_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    exact_arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    lawyer_service_requested: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    lawyer_fee_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    lawyer_fee_charge: Mapped[Decimal | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> ApplicationInfo:
        return ApplicationInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            status=ApplicationStatus(self.status),
            application_type=ApplicationType(self.application_type),
            client_id=self.client_id,
            candidate_id=self.candidate_id,
            from_client_id=self.from_client_id,
            broker_id=self.broker_id,
            fee_template_id=self.fee_template_id,
            final_fee_amount=self.final_fee_amount,
            currency=self.currency,
            exact_arrival_date=self.exact_arrival_date,
            lawyer_service_requested=self.lawyer_service_requested,
            lawyer_fee_cost=self.lawyer_fee_cost,
            lawyer_fee_charge=self.lawyer_fee_charge,
            version=self.version,
            created_at=as_utc(self.created_at),
        )

    def __repr__(self) -> str:
        return f"<Application {self.id} {self.status} v{self.version}>"
