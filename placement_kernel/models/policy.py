"""
Module: placement_kernel.models.policy
Responsibility: ORM persistence for per-tenant policy: cancellation
    settings (one per cancellation type), lawyer-service pricing, and
    operational settings such as the deportation cost.
Architecture position: Kernel > Models.

Invariants enforced:
    - (tenant_id, cancellation_type) is unique on cancellation_settings.
    - non_refundable_components is a typed set of component names.  It is
      normalized and validated when written (ORM ``validates`` hook), never
      when read.  Duplicates collapse; blank or non-string names are
      rejected with InvalidPolicyError.
    - refund_percentage in [0, 100]; penalty_fee, monthly_service_fee and
      max_refund_amount are non-negative.

Failure modes:
    - InvalidPolicyError at assignment time for any invalid value.
    - IntegrityError on a duplicate (tenant_id, cancellation_type).

Audit relevance:
    Policy rows drive every refund.  The resolved policy name and values
    are copied into each cancellation history payload.
"""

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from placement_kernel.db.base import UUID, TrackedBase
from placement_kernel.domain.cancellation import CancellationType
from placement_kernel.domain.refund import CancellationPolicy
from placement_kernel.exceptions import InvalidPolicyError

DEFAULT_DEPORTATION_COST = Decimal("500")
DEFAULT_LAWYER_FEE_COST = Decimal("100")
DEFAULT_LAWYER_FEE_CHARGE = Decimal("150")


def normalize_component_names(policy_key: str, names: Iterable[object] | None) -> list[str]:
    """Validate and canonicalize a non-refundable component list.

    Returns a sorted list of unique, stripped names.
    """
    if names is None:
        return []
    if isinstance(names, str):
        raise InvalidPolicyError(policy_key, ["non_refundable_components must be a list of names"])
    errors: list[str] = []
    cleaned: set[str] = set()
    for name in names:
        if not isinstance(name, str):
            errors.append(f"component name {name!r} is not a string")
            continue
        stripped = name.strip()
        if not stripped:
            errors.append("component name is blank")
            continue
        cleaned.add(stripped)
    if errors:
        raise InvalidPolicyError(policy_key, errors)
    return sorted(cleaned)


def _non_negative(policy_key: str, field: str, value: Decimal | None) -> Decimal | None:
    if value is not None and Decimal(value) < 0:
        raise InvalidPolicyError(policy_key, [f"{field} must be >= 0"])
    return value


class CancellationSetting(TrackedBase):
    """
    Cancellation policy for one tenant and one cancellation type.
    """

    __tablename__ = "cancellation_settings"

    __table_args__ = (
        UniqueConstraint("tenant_id", "cancellation_type", name="uq_cancellation_setting_type"),
        Index("idx_cancellation_setting_active", "tenant_id", "active"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    cancellation_type: Mapped[CancellationType] = mapped_column(String(40), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    penalty_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    refund_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("100"))

    non_refundable_components: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    monthly_service_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    max_refund_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def _key(self) -> str:
        return str(self.cancellation_type or "cancellation_setting")

    @validates("cancellation_type")
    def _validate_type(self, key, value):
        try:
            return CancellationType(value).value
        except ValueError:
            raise InvalidPolicyError(str(value), ["unknown cancellation type"]) from None

    @validates("non_refundable_components")
    def _validate_components(self, key, value):
        return normalize_component_names(self._key(), value)

    @validates("refund_percentage")
    def _validate_percentage(self, key, value):
        if value is None or not Decimal("0") <= Decimal(value) <= Decimal("100"):
            raise InvalidPolicyError(self._key(), ["refund_percentage must be between 0 and 100"])
        return value

    @validates("penalty_fee", "monthly_service_fee", "max_refund_amount")
    def _validate_amounts(self, key, value):
        return _non_negative(self._key(), key, value)

    def to_policy(self) -> CancellationPolicy:
        return CancellationPolicy(
            cancellation_type=CancellationType(self.cancellation_type),
            penalty_fee=self.penalty_fee,
            refund_percentage=self.refund_percentage,
            non_refundable_components=frozenset(self.non_refundable_components or ()),
            monthly_service_fee=self.monthly_service_fee,
            max_refund_amount=self.max_refund_amount,
            name=self.name,
        )

    def __repr__(self) -> str:
        return f"<CancellationSetting {self.cancellation_type} active={self.active}>"


class LawyerServiceSetting(TrackedBase):
    """Lawyer-service cost to the office and charge to the client."""

    __tablename__ = "lawyer_service_settings"

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_lawyer_service_setting_tenant"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    lawyer_fee_cost: Mapped[Decimal] = mapped_column(nullable=False, default=DEFAULT_LAWYER_FEE_COST)

    lawyer_fee_charge: Mapped[Decimal] = mapped_column(nullable=False, default=DEFAULT_LAWYER_FEE_CHARGE)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    @validates("lawyer_fee_cost", "lawyer_fee_charge")
    def _validate_amounts(self, key, value):
        return _non_negative("lawyer_service", key, value)


class TenantPolicySetting(TrackedBase):
    """Per-tenant operational settings: deportation cost and default currency."""

    __tablename__ = "tenant_policy_settings"

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_tenant_policy_setting_tenant"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    deportation_cost: Mapped[Decimal] = mapped_column(nullable=False, default=DEFAULT_DEPORTATION_COST)

    default_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    @validates("deportation_cost")
    def _validate_deportation_cost(self, key, value):
        return _non_negative("tenant_policy", key, value)
