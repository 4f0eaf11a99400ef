"""ORM models for the placement kernel."""

from placement_kernel.models.application import Application
from placement_kernel.models.document import DocumentChecklistItem, DocumentTemplate
from placement_kernel.models.fee_template import FeeComponent, FeeTemplate
from placement_kernel.models.guarantor_change import GuarantorChange
from placement_kernel.models.ledger import (
    COST_TYPE_DEPORTATION,
    PAYMENT_TYPE_REFUND,
    Cost,
    Payment,
)
from placement_kernel.models.lifecycle_history import ApplicationLifecycleHistory
from placement_kernel.models.party import Candidate, Client
from placement_kernel.models.policy import (
    CancellationSetting,
    LawyerServiceSetting,
    TenantPolicySetting,
)

__all__ = [
    "Application",
    "ApplicationLifecycleHistory",
    "COST_TYPE_DEPORTATION",
    "CancellationSetting",
    "Candidate",
    "Client",
    "Cost",
    "DocumentChecklistItem",
    "DocumentTemplate",
    "FeeComponent",
    "FeeTemplate",
    "GuarantorChange",
    "LawyerServiceSetting",
    "PAYMENT_TYPE_REFUND",
    "Payment",
    "TenantPolicySetting",
]
