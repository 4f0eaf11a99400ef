"""
Module: placement_kernel.models.document
Responsibility: ORM persistence for per-tenant document templates (the
    paperwork each lifecycle stage needs, optionally narrowed to one
    application type) and per-application checklist items seeded from them.
Architecture position: Kernel > Models.

Invariants enforced:
    - (tenant_id, stage, name) is unique on document_templates.
    - (application_id, document_name) is unique on checklist items, so
      re-seeding a stage never duplicates an item.
"""

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from placement_kernel.db.base import UUID, TrackedBase
from placement_kernel.domain.documents import DocumentStatus, RequiredFrom
from placement_kernel.domain.dtos import DocumentItemInfo
from placement_kernel.domain.lifecycle import ApplicationStatus, ApplicationType


class DocumentTemplate(TrackedBase):
    """A document required when an application reaches ``stage``."""

    __tablename__ = "document_templates"

    __table_args__ = (
        UniqueConstraint("tenant_id", "stage", "name", name="uq_document_template_stage_name"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    stage: Mapped[ApplicationStatus] = mapped_column(String(40), nullable=False)

    name: Mapped[str] = mapped_column(String(150), nullable=False)

    # NULL applies to every application type
    application_type: Mapped[ApplicationType | None] = mapped_column(String(20), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    required_from: Mapped[RequiredFrom] = mapped_column(
        String(20), nullable=False, default=RequiredFrom.OFFICE.value
    )

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DocumentChecklistItem(TrackedBase):
    """One document to collect for one application."""

    __tablename__ = "document_checklist_items"

    __table_args__ = (
        UniqueConstraint("application_id", "document_name", name="uq_checklist_item_document"),
        Index("idx_checklist_item_application", "application_id"),
    )

    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id"),
        nullable=False,
    )

    document_name: Mapped[str] = mapped_column(String(150), nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        String(20), nullable=False, default=DocumentStatus.PENDING.value
    )

    stage: Mapped[ApplicationStatus] = mapped_column(String(40), nullable=False)

    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    required_from: Mapped[RequiredFrom] = mapped_column(
        String(20), nullable=False, default=RequiredFrom.OFFICE.value
    )

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dto(self) -> DocumentItemInfo:
        return DocumentItemInfo(
            id=self.id,
            application_id=self.application_id,
            document_name=self.document_name,
            status=DocumentStatus(self.status),
            stage=ApplicationStatus(self.stage),
            required=self.required,
            required_from=RequiredFrom(self.required_from),
            order=self.display_order,
        )
