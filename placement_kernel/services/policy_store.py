"""
PolicyStore -- read accessor over per-tenant placement policy.

Responsibility:
    Resolves the policy rows that drive placement money: the cancellation
    setting for a type, the fee template (and its components) for an
    application, lawyer-service pricing, the tenant's deportation cost and
    the document templates for a lifecycle stage.

Architecture position:
    Kernel > Services.  Read-only; it never flushes.  Callers are the
    orchestrators in ``placement_services``.

Invariants enforced:
    - A missing cancellation, lawyer or tenant policy raises
      PolicyMissingError.  Nothing is silently defaulted.
    - The cancellation setting returned is the one keyed by the supplied
      type.  The store never re-derives a bucket from dates.
    - Every lookup is scoped to one tenant.

Failure modes:
    - PolicyMissingError: no active row for (tenant, key).
    - FeeTemplateNotFoundError: explicit template id not in the tenant.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from placement_kernel.domain.cancellation import CancellationType
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    ApplicationType,
    CandidateStatus,
)
from placement_kernel.domain.refund import CancellationPolicy, FeeComponentSpec
from placement_kernel.exceptions import FeeTemplateNotFoundError, PolicyMissingError
from placement_kernel.logging_config import get_logger
from placement_kernel.models.document import DocumentTemplate
from placement_kernel.models.fee_template import FeeTemplate
from placement_kernel.models.policy import (
    CancellationSetting,
    LawyerServiceSetting,
    TenantPolicySetting,
)
from placement_kernel.services.base import BaseService

logger = get_logger("services.policy_store")

GUARANTOR_CHANGE_TEMPLATE = "Guarantor Change Package"
IN_COUNTRY_TEMPLATE = "In Lebanon Candidate"
NEW_CANDIDATE_TEMPLATE = "New Candidate"
DEFAULT_TEMPLATE = "Default"


def template_name_for(
    application_type: ApplicationType,
    candidate_status: CandidateStatus | None = None,
) -> str:
    """Conventional template name for a placement that has no nationality match."""
    match ApplicationType(application_type):
        case ApplicationType.GUARANTOR_CHANGE:
            return GUARANTOR_CHANGE_TEMPLATE
        case ApplicationType.NEW_CANDIDATE:
            if candidate_status == CandidateStatus.AVAILABLE_IN_LEBANON:
                return IN_COUNTRY_TEMPLATE
            return NEW_CANDIDATE_TEMPLATE


class PolicyStore(BaseService[CancellationSetting]):
    """Tenant policy lookups."""

    def __init__(self, session: Session):
        super().__init__(session)

    # -------------------------------------------------------------------------
    # Cancellation policy
    # -------------------------------------------------------------------------

    def get_cancellation_policy(
        self,
        tenant_id: UUID,
        cancellation_type: CancellationType,
    ) -> CancellationPolicy:
        """
        Active cancellation policy for the tenant and type.

        Raises:
            PolicyMissingError: No active setting for the type.
        """
        setting = self.session.execute(
            select(CancellationSetting).where(
                CancellationSetting.tenant_id == tenant_id,
                CancellationSetting.cancellation_type == cancellation_type.value,
                CancellationSetting.active == True,  # noqa: E712
            )
        ).scalar_one_or_none()
        if setting is None:
            logger.warning(
                "cancellation_policy_missing",
                extra={"tenant_id": str(tenant_id), "cancellation_type": cancellation_type.value},
            )
            raise PolicyMissingError(tenant_id, "cancellation setting", cancellation_type.value)
        return setting.to_policy()

    # -------------------------------------------------------------------------
    # Fee templates
    # -------------------------------------------------------------------------

    def _template_query(self, tenant_id: UUID):
        return (
            select(FeeTemplate)
            .where(FeeTemplate.tenant_id == tenant_id)
            .options(selectinload(FeeTemplate.components))
        )

    def get_fee_template(self, tenant_id: UUID, template_id: UUID) -> FeeTemplate:
        """
        Raises:
            FeeTemplateNotFoundError: id unknown or owned by another tenant.
        """
        template = self.session.execute(
            self._template_query(tenant_id).where(FeeTemplate.id == template_id)
        ).scalar_one_or_none()
        if template is None:
            raise FeeTemplateNotFoundError(template_id)
        return template

    def get_fee_components(
        self,
        tenant_id: UUID,
        template_id: UUID | None,
    ) -> tuple[FeeComponentSpec, ...]:
        """Components of the template, or empty when the application has none."""
        if template_id is None:
            return ()
        return self.get_fee_template(tenant_id, template_id).component_specs()

    def find_fee_template_by_name(self, tenant_id: UUID, name: str) -> FeeTemplate | None:
        return self.session.execute(
            self._template_query(tenant_id).where(FeeTemplate.name == name)
        ).scalar_one_or_none()

    def resolve_fee_template(
        self,
        tenant_id: UUID,
        application_type: ApplicationType,
        nationality: str | None = None,
        candidate_status: CandidateStatus | None = None,
    ) -> FeeTemplate | None:
        """
        Pick the template for a new application.

        Order: nationality match (service_type NULL or equal to the
        application type), then the conventional name for the placement,
        then "Default".  Returns None when nothing matches.
        """
        if nationality:
            by_nationality = self.session.execute(
                self._template_query(tenant_id)
                .where(
                    FeeTemplate.nationality == nationality,
                    or_(
                        FeeTemplate.service_type.is_(None),
                        FeeTemplate.service_type == ApplicationType(application_type).value,
                    ),
                )
                .order_by(FeeTemplate.service_type.is_(None), FeeTemplate.name)
            ).scalars().first()
            if by_nationality is not None:
                return by_nationality

        for name in (template_name_for(application_type, candidate_status), DEFAULT_TEMPLATE):
            template = self.find_fee_template_by_name(tenant_id, name)
            if template is not None:
                return template

        logger.warning(
            "fee_template_unresolved",
            extra={
                "tenant_id": str(tenant_id),
                "application_type": ApplicationType(application_type).value,
                "nationality": nationality,
            },
        )
        return None

    # -------------------------------------------------------------------------
    # Lawyer service and tenant settings
    # -------------------------------------------------------------------------

    def get_lawyer_service(self, tenant_id: UUID) -> LawyerServiceSetting:
        """
        Raises:
            PolicyMissingError: No active lawyer-service setting.
        """
        setting = self.session.execute(
            select(LawyerServiceSetting).where(
                LawyerServiceSetting.tenant_id == tenant_id,
                LawyerServiceSetting.active == True,  # noqa: E712
            )
        ).scalar_one_or_none()
        if setting is None:
            raise PolicyMissingError(tenant_id, "lawyer service setting", "lawyer_service")
        return setting

    def get_tenant_policy(self, tenant_id: UUID) -> TenantPolicySetting:
        """
        Raises:
            PolicyMissingError: Tenant has no operational settings.
        """
        setting = self.session.execute(
            select(TenantPolicySetting).where(TenantPolicySetting.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if setting is None:
            raise PolicyMissingError(tenant_id, "tenant policy", "tenant_policy")
        return setting

    def get_deportation_cost(self, tenant_id: UUID) -> Decimal:
        return self.get_tenant_policy(tenant_id).deportation_cost

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def document_templates_for_stage(
        self,
        tenant_id: UUID,
        stage: ApplicationStatus,
        application_type: ApplicationType,
    ) -> list[DocumentTemplate]:
        """Templates for the stage that apply to every type or to this one."""
        return list(
            self.session.execute(
                select(DocumentTemplate)
                .where(
                    DocumentTemplate.tenant_id == tenant_id,
                    DocumentTemplate.stage == ApplicationStatus(stage).value,
                    or_(
                        DocumentTemplate.application_type.is_(None),
                        DocumentTemplate.application_type == ApplicationType(application_type).value,
                    ),
                )
                .order_by(DocumentTemplate.display_order, DocumentTemplate.name)
            ).scalars().all()
        )
