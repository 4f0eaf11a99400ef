"""
Module: placement_kernel.models.fee_template
Responsibility: ORM persistence for named pricing templates and their
    refundable / non-refundable components.
Architecture position: Kernel > Models.

Invariants enforced:
    - (tenant_id, name) is unique.
    - Component names are unique within a template.  The refund calculator
      and the non-refundable component lists in cancellation policies match
      components by name.

Audit relevance:
    The components of an application's template at cancellation time are
    copied into the cancellation history payload (component breakdown).
"""

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from placement_kernel.db.base import UUID, TrackedBase
from placement_kernel.domain.dtos import FeeComponentInfo, FeeTemplateInfo
from placement_kernel.domain.lifecycle import ApplicationType
from placement_kernel.domain.refund import FeeComponentSpec


class FeeTemplate(TrackedBase):
    """
    Pricing template.

    nationality and service_type narrow which placements the template is
    chosen for; both NULL means "any".
    """

    __tablename__ = "fee_templates"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_fee_template_tenant_name"),
        Index("idx_fee_template_nationality", "tenant_id", "nationality"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    default_price: Mapped[Decimal] = mapped_column(nullable=False)

    min_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    max_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    nationality: Mapped[str | None] = mapped_column(String(100), nullable=True)

    service_type: Mapped[ApplicationType | None] = mapped_column(String(20), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    components: Mapped[list["FeeComponent"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="FeeComponent.display_order",
    )

    def component_specs(self) -> tuple[FeeComponentSpec, ...]:
        return tuple(c.to_spec() for c in self.components)

    def to_dto(self) -> FeeTemplateInfo:
        return FeeTemplateInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            default_price=self.default_price,
            min_price=self.min_price,
            max_price=self.max_price,
            currency=self.currency,
            nationality=self.nationality,
            service_type=ApplicationType(self.service_type) if self.service_type else None,
            components=tuple(c.to_dto() for c in self.components),
        )

    def __repr__(self) -> str:
        return f"<FeeTemplate {self.name}: {self.default_price} {self.currency}>"


class FeeComponent(TrackedBase):
    """One line of a fee template."""

    __tablename__ = "fee_components"

    __table_args__ = (
        UniqueConstraint("template_id", "name", name="uq_fee_component_template_name"),
    )

    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("fee_templates.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    is_refundable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    refundable_after_arrival: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    template: Mapped[FeeTemplate] = relationship(back_populates="components")

    def to_spec(self) -> FeeComponentSpec:
        return FeeComponentSpec(
            name=self.name,
            amount=self.amount,
            is_refundable=self.is_refundable,
            refundable_after_arrival=self.refundable_after_arrival,
        )

    def to_dto(self) -> FeeComponentInfo:
        return FeeComponentInfo(
            name=self.name,
            amount=self.amount,
            is_refundable=self.is_refundable,
            refundable_after_arrival=self.refundable_after_arrival,
            description=self.description,
        )
