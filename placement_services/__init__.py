"""
Placement services: the transactional use cases over the kernel.

- ApplicationService: intake, transitions, payments, costs, documents
- CancellationOrchestrator: cancellation with refund, reassignment, deportation
- GuarantorChangeOrchestrator: sponsor reassignment and its refund
- LifecycleAPI: one transaction per call, for the HTTP layer
- seed_tenant_policies: writes the default policy set for a tenant
"""

from placement_services.application_service import ApplicationService, NewApplicationRequest
from placement_services.cancellation_orchestrator import (
    CancellationOptions,
    CancellationOrchestrator,
    CancellationRequest,
    CancellationResult,
    FinancialImpact,
)
from placement_services.guarantor_change_orchestrator import (
    GuarantorChangeFinalization,
    GuarantorChangeOrchestrator,
    GuarantorChangeRequest,
    GuarantorChangeResult,
)
from placement_services.lifecycle_api import LifecycleAPI
from placement_services.policy_seeding import SeedSummary, seed_tenant_policies

__all__ = [
    "ApplicationService",
    "CancellationOptions",
    "CancellationOrchestrator",
    "CancellationRequest",
    "CancellationResult",
    "FinancialImpact",
    "GuarantorChangeFinalization",
    "GuarantorChangeOrchestrator",
    "GuarantorChangeRequest",
    "GuarantorChangeResult",
    "LifecycleAPI",
    "NewApplicationRequest",
    "SeedSummary",
    "seed_tenant_policies",
]
