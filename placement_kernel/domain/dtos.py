"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    The immutable records that leave the service layer: applications,
    candidates, clients, ledger rows, lifecycle history entries, guarantor
    changes and checklist items.  ORM objects never cross this boundary.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ORM models convert themselves with
    ``to_dto()``; nothing here imports the ORM.

Invariants enforced:
    - Monetary fields are Decimal, never float.
    - Timestamps are timezone-aware UTC.
    - Status fields are enum members, not raw strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from placement_kernel.domain.documents import DocumentStatus, RequiredFrom
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    ApplicationType,
    CandidateStatus,
)


class LifecycleAction(str, Enum):
    """Fixed vocabulary of lifecycle history rows."""

    STATUS_CHANGE = "status_change"
    CANCELLATION = "cancellation"
    PAYMENT_ADDED = "payment_added"
    COST_ADDED = "cost_added"
    GUARANTOR_CHANGE = "guarantor_change"
    DOCUMENT_STATUS_CHANGE = "document_status_change"


@dataclass(frozen=True)
class ClientInfo:
    id: UUID
    tenant_id: UUID
    name: str
    phone: str | None = None


@dataclass(frozen=True)
class CandidateInfo:
    id: UUID
    tenant_id: UUID
    first_name: str
    last_name: str
    nationality: str | None
    status: CandidateStatus

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class ApplicationInfo:
    """Immutable snapshot of an application row."""

    id: UUID
    tenant_id: UUID
    status: ApplicationStatus
    application_type: ApplicationType
    client_id: UUID
    candidate_id: UUID
    from_client_id: UUID | None
    broker_id: UUID | None
    fee_template_id: UUID | None
    final_fee_amount: Decimal
    currency: str
    exact_arrival_date: date | None
    lawyer_service_requested: bool
    lawyer_fee_cost: Decimal | None
    lawyer_fee_charge: Decimal | None
    version: int
    created_at: datetime | None = None


@dataclass(frozen=True)
class PaymentInfo:
    id: UUID
    application_id: UUID
    client_id: UUID
    amount: Decimal
    currency: str
    payment_type: str
    payment_date: datetime
    is_refundable: bool
    notes: str | None = None


@dataclass(frozen=True)
class CostInfo:
    id: UUID
    application_id: UUID | None
    candidate_id: UUID | None
    amount: Decimal
    currency: str
    cost_type: str
    cost_date: datetime
    description: str | None = None


@dataclass(frozen=True)
class FeeComponentInfo:
    name: str
    amount: Decimal
    is_refundable: bool
    refundable_after_arrival: bool
    description: str | None = None


@dataclass(frozen=True)
class FeeTemplateInfo:
    id: UUID
    tenant_id: UUID
    name: str
    default_price: Decimal
    min_price: Decimal | None
    max_price: Decimal | None
    currency: str
    nationality: str | None
    service_type: ApplicationType | None
    components: tuple[FeeComponentInfo, ...] = field(default=())


@dataclass(frozen=True)
class LifecycleHistoryEntry:
    """One append-only audit row."""

    id: UUID
    tenant_id: UUID
    application_id: UUID
    action: LifecycleAction
    performed_by: UUID
    performed_at: datetime
    sequence: int
    from_status: ApplicationStatus | None = None
    to_status: ApplicationStatus | None = None
    from_client_id: UUID | None = None
    to_client_id: UUID | None = None
    candidate_status_before: CandidateStatus | None = None
    candidate_status_after: CandidateStatus | None = None
    financial_impact: dict[str, Any] | None = None
    notes: str | None = None


@dataclass(frozen=True)
class HistoryPage:
    entries: tuple[LifecycleHistoryEntry, ...]
    total: int
    limit: int
    offset: int


@dataclass(frozen=True)
class GuarantorChangeInfo:
    id: UUID
    tenant_id: UUID
    original_application_id: UUID
    new_application_id: UUID | None
    from_client_id: UUID
    to_client_id: UUID
    candidate_id: UUID
    refund_amount: Decimal
    refund_currency: str
    refund_processed: bool
    refund_processed_date: date | None
    candidate_status_before: CandidateStatus
    candidate_status_after: CandidateStatus
    change_date: datetime
    reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class DocumentItemInfo:
    id: UUID
    application_id: UUID
    document_name: str
    status: DocumentStatus
    stage: ApplicationStatus
    required: bool
    required_from: RequiredFrom
    order: int
