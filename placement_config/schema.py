"""
Tenant policy defaults schema.

The human-authored, reviewable source for the policy rows every new tenant
starts with.  YAML is parsed into these types by the loader, checked by
the validator, and written to the policy tables by
``placement_services.policy_seeding``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class CancellationSettingDef:
    """One cancellation policy, keyed by cancellation type."""

    cancellation_type: str
    name: str
    penalty_fee: Decimal = Decimal("0")
    refund_percentage: Decimal = Decimal("100")
    non_refundable_components: tuple[str, ...] = ()
    monthly_service_fee: Decimal = Decimal("0")
    max_refund_amount: Decimal | None = None
    description: str | None = None
    active: bool = True


@dataclass(frozen=True)
class FeeComponentDef:
    name: str
    amount: Decimal
    is_refundable: bool = True
    refundable_after_arrival: bool = False
    description: str | None = None


@dataclass(frozen=True)
class FeeTemplateDef:
    name: str
    default_price: Decimal
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    currency: str = "USD"
    nationality: str | None = None
    service_type: str | None = None
    description: str | None = None
    components: tuple[FeeComponentDef, ...] = ()


@dataclass(frozen=True)
class LawyerServiceDef:
    lawyer_fee_cost: Decimal
    lawyer_fee_charge: Decimal
    description: str | None = None


@dataclass(frozen=True)
class DocumentTemplateDef:
    """A document required when an application reaches ``stage``."""

    stage: str
    name: str
    application_type: str | None = None
    required_from: str = "office"
    order: int = 0
    required: bool = True
    description: str | None = None


@dataclass(frozen=True)
class TenantPolicyDefaults:
    """Complete default policy set for one tenant."""

    config_id: str
    version: int
    default_currency: str
    deportation_cost: Decimal
    lawyer_service: LawyerServiceDef
    cancellation_settings: tuple[CancellationSettingDef, ...] = ()
    fee_templates: tuple[FeeTemplateDef, ...] = ()
    document_templates: tuple[DocumentTemplateDef, ...] = ()
    checksum: str = field(default="", compare=False)

    def cancellation_setting(self, cancellation_type: str) -> CancellationSettingDef | None:
        for setting in self.cancellation_settings:
            if setting.cancellation_type == cancellation_type:
                return setting
        return None

    def fee_template(self, name: str) -> FeeTemplateDef | None:
        for template in self.fee_templates:
            if template.name == name:
                return template
        return None
