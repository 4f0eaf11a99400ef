"""
Tenant policy seeding.

Writes a validated ``TenantPolicyDefaults`` into the policy tables for one
tenant.  Rows that already exist for the tenant are left untouched, so
seeding is safe to repeat and never overwrites an edited policy.  Values
pass through the ORM ``validates`` hooks, so a bad document fails here
with InvalidPolicyError rather than at the first cancellation.

Flushes only; the caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from placement_config import get_policy_defaults
from placement_config.schema import TenantPolicyDefaults
from placement_kernel.logging_config import get_logger
from placement_kernel.models.document import DocumentTemplate
from placement_kernel.models.fee_template import FeeComponent, FeeTemplate
from placement_kernel.models.policy import (
    CancellationSetting,
    LawyerServiceSetting,
    TenantPolicySetting,
)

logger = get_logger("services.policy_seeding")


@dataclass(frozen=True)
class SeedSummary:
    tenant_id: UUID
    config_id: str
    checksum: str
    cancellation_settings: int = 0
    fee_templates: int = 0
    document_templates: int = 0
    lawyer_service: bool = False
    tenant_policy: bool = False


def seed_tenant_policies(
    session: Session,
    tenant_id: UUID,
    actor_id: UUID,
    defaults: TenantPolicyDefaults | None = None,
) -> SeedSummary:
    """
    Seed missing policy rows for ``tenant_id``.

    Args:
        session: Caller's session.
        tenant_id: Tenant to seed.
        actor_id: Written to created_by_id.
        defaults: Policy document.  Loaded from the packaged YAML when None.

    Returns:
        Counts of the rows created.
    """
    defaults = defaults or get_policy_defaults()

    existing_types = set(
        session.execute(
            select(CancellationSetting.cancellation_type).where(
                CancellationSetting.tenant_id == tenant_id
            )
        ).scalars().all()
    )
    settings_added = 0
    for spec in defaults.cancellation_settings:
        if spec.cancellation_type in existing_types:
            continue
        session.add(
            CancellationSetting(
                tenant_id=tenant_id,
                cancellation_type=spec.cancellation_type,
                name=spec.name,
                penalty_fee=spec.penalty_fee,
                refund_percentage=spec.refund_percentage,
                non_refundable_components=list(spec.non_refundable_components),
                monthly_service_fee=spec.monthly_service_fee,
                max_refund_amount=spec.max_refund_amount,
                active=spec.active,
                description=spec.description,
                created_by_id=actor_id,
            )
        )
        settings_added += 1

    existing_templates = set(
        session.execute(
            select(FeeTemplate.name).where(FeeTemplate.tenant_id == tenant_id)
        ).scalars().all()
    )
    templates_added = 0
    for spec in defaults.fee_templates:
        if spec.name in existing_templates:
            continue
        template = FeeTemplate(
            tenant_id=tenant_id,
            name=spec.name,
            default_price=spec.default_price,
            min_price=spec.min_price,
            max_price=spec.max_price,
            currency=spec.currency,
            nationality=spec.nationality,
            service_type=spec.service_type,
            description=spec.description,
            created_by_id=actor_id,
        )
        template.components = [
            FeeComponent(
                name=c.name,
                amount=c.amount,
                is_refundable=c.is_refundable,
                refundable_after_arrival=c.refundable_after_arrival,
                description=c.description,
                display_order=order,
                created_by_id=actor_id,
            )
            for order, c in enumerate(spec.components, start=1)
        ]
        session.add(template)
        templates_added += 1

    existing_documents = set(
        session.execute(
            select(DocumentTemplate.stage, DocumentTemplate.name).where(
                DocumentTemplate.tenant_id == tenant_id
            )
        ).all()
    )
    documents_added = 0
    for spec in defaults.document_templates:
        if (spec.stage, spec.name) in existing_documents:
            continue
        session.add(
            DocumentTemplate(
                tenant_id=tenant_id,
                stage=spec.stage,
                name=spec.name,
                application_type=spec.application_type,
                description=spec.description,
                required=spec.required,
                required_from=spec.required_from,
                display_order=spec.order,
                created_by_id=actor_id,
            )
        )
        documents_added += 1

    lawyer_added = False
    has_lawyer = session.execute(
        select(LawyerServiceSetting.id).where(LawyerServiceSetting.tenant_id == tenant_id)
    ).first()
    if has_lawyer is None:
        session.add(
            LawyerServiceSetting(
                tenant_id=tenant_id,
                lawyer_fee_cost=defaults.lawyer_service.lawyer_fee_cost,
                lawyer_fee_charge=defaults.lawyer_service.lawyer_fee_charge,
                description=defaults.lawyer_service.description,
                created_by_id=actor_id,
            )
        )
        lawyer_added = True

    tenant_added = False
    has_tenant_policy = session.execute(
        select(TenantPolicySetting.id).where(TenantPolicySetting.tenant_id == tenant_id)
    ).first()
    if has_tenant_policy is None:
        session.add(
            TenantPolicySetting(
                tenant_id=tenant_id,
                deportation_cost=defaults.deportation_cost,
                default_currency=defaults.default_currency,
                created_by_id=actor_id,
            )
        )
        tenant_added = True

    session.flush()

    summary = SeedSummary(
        tenant_id=tenant_id,
        config_id=defaults.config_id,
        checksum=defaults.checksum,
        cancellation_settings=settings_added,
        fee_templates=templates_added,
        document_templates=documents_added,
        lawyer_service=lawyer_added,
        tenant_policy=tenant_added,
    )
    logger.info(
        "tenant_policies_seeded",
        extra={
            "tenant_id": str(tenant_id),
            "config_id": defaults.config_id,
            "checksum": defaults.checksum,
            "cancellation_settings": settings_added,
            "fee_templates": templates_added,
            "document_templates": documents_added,
        },
    )
    return summary
