"""
Module: placement_kernel.models.party
Responsibility: ORM persistence for the two parties of a placement: the
    sponsoring client (household or employer) and the candidate (worker).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - Candidate.status is a derived value.  Only the lifecycle services
      write it, as the side effect of an application transition.
    - Every row is scoped to exactly one tenant.

Failure modes:
    - IntegrityError on missing tenant_id / name columns.

Audit relevance:
    candidate_status_before / candidate_status_after on every lifecycle
    history row are read from Candidate.status at the time of the event.
"""

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from placement_kernel.db.base import UUID, TrackedBase
from placement_kernel.domain.dtos import CandidateInfo, ClientInfo
from placement_kernel.domain.lifecycle import CandidateStatus


class Client(TrackedBase):
    """
    Sponsoring household or employer.

    Guarantees:
        - tenant_id is set at creation and never changes.
    """

    __tablename__ = "clients"

    __table_args__ = (
        Index("idx_client_tenant", "tenant_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_dto(self) -> ClientInfo:
        return ClientInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            phone=self.phone,
        )

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class Candidate(TrackedBase):
    """
    Worker being placed.

    Contract:
        status follows the application lifecycle:
        AVAILABLE_ABROAD -> IN_PROCESS (arrival) -> PLACED (permits) ->
        AVAILABLE_IN_LEBANON (contract ended or post-arrival cancellation).
    """

    __tablename__ = "candidates"

    __table_args__ = (
        Index("idx_candidate_tenant", "tenant_id"),
        Index("idx_candidate_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)

    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    nationality: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[CandidateStatus] = mapped_column(
        String(30),
        nullable=False,
        default=CandidateStatus.AVAILABLE_ABROAD.value,
    )

    def to_dto(self) -> CandidateInfo:
        return CandidateInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            first_name=self.first_name,
            last_name=self.last_name,
            nationality=self.nationality,
            status=CandidateStatus(self.status),
        )

    def __repr__(self) -> str:
        return f"<Candidate {self.first_name} {self.last_name} ({self.status})>"
