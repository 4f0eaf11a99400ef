"""
ApplicationService -- intake, lifecycle moves and ledger entries.

Responsibility:
    Opens placement applications, moves them along the lifecycle table,
    records client payments and office costs, and tracks the document
    checklist.  Cancellations and guarantor changes have their own
    orchestrators.

Architecture position:
    Services -- stateful orchestration over the kernel.

Invariants enforced:
    - A candidate has at most one non-terminal application.
    - New applications start in PENDING_AUTHORIZATION and move the
      candidate to IN_PROCESS.
    - Every status write is checked against domain/lifecycle.py and paired
      with a status_change history row in the same transaction.
    - WORKER_ARRIVED requires an exact arrival date.
    - Refund payments are never recorded here.

Failure modes:
    - CandidateUnavailableError, ActiveApplicationExistsError,
      FeeOutOfRangeError, ValidationError on intake.
    - InvalidTransitionError, MissingArrivalDateError, ConflictError on
      transitions.
    - PolicyMissingError when lawyer service is requested without a
      lawyer-service setting.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from placement_kernel.domain.documents import (
    TRANSFER_STEPS,
    DocumentStatus,
    document_requirements,
)
from placement_kernel.domain.dtos import (
    ApplicationInfo,
    CostInfo,
    DocumentItemInfo,
    LifecycleAction,
    PaymentInfo,
)
from placement_kernel.domain.lifecycle import (
    CANCELLED_STATES,
    ApplicationStatus,
    ApplicationType,
    CandidateStatus,
    candidate_status_change,
    is_valid_transition,
    requires_exact_arrival_date,
)
from placement_kernel.exceptions import (
    CandidateUnavailableError,
    DocumentItemNotFoundError,
    FeeOutOfRangeError,
    InvalidTransitionError,
    MissingArrivalDateError,
    ValidationError,
)
from placement_kernel.logging_config import get_logger
from placement_kernel.models.application import Application
from placement_kernel.models.document import DocumentChecklistItem
from placement_kernel.models.ledger import PAYMENT_TYPE_REFUND, Cost, Payment
from placement_services._orchestration import OrchestratorBase

logger = get_logger("services.application")

AVAILABLE_FOR_PLACEMENT = (
    CandidateStatus.AVAILABLE_ABROAD,
    CandidateStatus.AVAILABLE_IN_LEBANON,
)


@dataclass(frozen=True)
class NewApplicationRequest:
    client_id: UUID
    candidate_id: UUID
    application_type: ApplicationType = ApplicationType.NEW_CANDIDATE
    fee_template_id: UUID | None = None
    final_fee_amount: Decimal | None = None
    broker_id: UUID | None = None
    from_client_id: UUID | None = None
    lawyer_service_requested: bool = False
    lawyer_fee_cost: Decimal | None = None
    lawyer_fee_charge: Decimal | None = None


class ApplicationService(OrchestratorBase):
    """Application intake and day-to-day lifecycle operations."""

    # =========================================================================
    # Intake
    # =========================================================================

    def create_application(
        self,
        request: NewApplicationRequest,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> ApplicationInfo:
        """
        Open a placement for an available candidate.

        The fee defaults to the template's default price.  The template is
        the one given, or the one resolved for the candidate's nationality
        and the placement type.
        """
        with self._unit_of_work("create_application", tenant_id, performed_by):
            candidate = self._load_candidate(tenant_id, request.candidate_id)
            candidate_before = CandidateStatus(candidate.status)
            if candidate_before not in AVAILABLE_FOR_PLACEMENT:
                raise CandidateUnavailableError(candidate.id, candidate_before.value)
            self._load_client(tenant_id, request.client_id)
            self._ensure_no_open_application(tenant_id, candidate.id)

            application_type = ApplicationType(request.application_type)
            if request.fee_template_id is not None:
                template = self._policies.get_fee_template(tenant_id, request.fee_template_id)
            else:
                template = self._policies.resolve_fee_template(
                    tenant_id,
                    application_type,
                    nationality=candidate.nationality,
                    candidate_status=candidate_before,
                )

            fee = request.final_fee_amount
            if fee is None:
                fee = template.default_price if template is not None else Decimal("0")
            if fee < 0:
                raise ValidationError("Final fee cannot be negative", field="final_fee_amount")
            if template is not None and (
                (template.min_price is not None and fee < template.min_price)
                or (template.max_price is not None and fee > template.max_price)
            ):
                raise FeeOutOfRangeError(fee, template.min_price, template.max_price)

            lawyer_cost = None
            lawyer_charge = None
            if request.lawyer_service_requested:
                lawyer = self._policies.get_lawyer_service(tenant_id)
                lawyer_cost = (
                    request.lawyer_fee_cost
                    if request.lawyer_fee_cost is not None
                    else lawyer.lawyer_fee_cost
                )
                lawyer_charge = (
                    request.lawyer_fee_charge
                    if request.lawyer_fee_charge is not None
                    else lawyer.lawyer_fee_charge
                )

            application = Application(
                tenant_id=tenant_id,
                status=ApplicationStatus.PENDING_AUTHORIZATION.value,
                application_type=application_type.value,
                client_id=request.client_id,
                from_client_id=request.from_client_id,
                candidate_id=candidate.id,
                broker_id=request.broker_id,
                fee_template_id=template.id if template is not None else None,
                final_fee_amount=fee,
                currency=template.currency if template is not None else "USD",
                lawyer_service_requested=request.lawyer_service_requested,
                lawyer_fee_cost=lawyer_cost,
                lawyer_fee_charge=lawyer_charge,
                created_by_id=performed_by,
            )
            self._session.add(application)
            candidate.status = CandidateStatus.IN_PROCESS.value
            candidate.updated_by_id = performed_by
            self._session.flush()

            self._seed_checklist(application, ApplicationStatus.PENDING_AUTHORIZATION, performed_by)
            self._recorder.record(
                application.id,
                LifecycleAction.STATUS_CHANGE,
                performed_by,
                tenant_id,
                to_status=ApplicationStatus.PENDING_AUTHORIZATION,
                to_client_id=request.client_id,
                candidate_status_before=candidate_before,
                candidate_status_after=CandidateStatus.IN_PROCESS,
                financial_impact={
                    "final_fee_amount": str(fee),
                    "fee_template": template.name if template is not None else None,
                },
                notes="Application created",
            )
            self._session.flush()
            info = application.to_dto()

        logger.info(
            "application_created",
            extra={
                "application_id": str(info.id),
                "application_type": info.application_type.value,
                "final_fee_amount": str(info.final_fee_amount),
            },
        )
        return info

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def transition(
        self,
        application_id: UUID,
        to_status: ApplicationStatus | str,
        performed_by: UUID,
        tenant_id: UUID,
        exact_arrival_date: date | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ApplicationInfo:
        """
        Move an application one step along the lifecycle.

        Cancellation statuses are reached only through the cancellation
        workflow, which also settles the money.

        Raises:
            InvalidTransitionError: The move is not in the table.
            MissingArrivalDateError: Arrival without an exact arrival date.
            ValidationError: The arrival date is later than today.
            ConflictError: ``expected_version`` is stale.
        """
        target = ApplicationStatus(to_status)
        with self._unit_of_work("transition", tenant_id, performed_by, application_id):
            application = self._load_application(tenant_id, application_id)
            self._check_version(application, expected_version)

            current = ApplicationStatus(application.status)
            check = is_valid_transition(current, target)
            if not check.valid:
                raise InvalidTransitionError(
                    current.value, target.value, check.reason or "", check.valid_next_states
                )
            if target in CANCELLED_STATES:
                raise InvalidTransitionError(
                    current.value,
                    target.value,
                    "Cancellations are processed by the cancellation workflow",
                    check.valid_next_states,
                )

            if requires_exact_arrival_date(target):
                arrival = exact_arrival_date or application.exact_arrival_date
                if arrival is None:
                    raise MissingArrivalDateError(target.value)
                if arrival > self._clock.today():
                    raise ValidationError(
                        f"Arrival date {arrival.isoformat()} is in the future",
                        field="exact_arrival_date",
                    )
                application.exact_arrival_date = arrival

            candidate = self._load_candidate(tenant_id, application.candidate_id)
            candidate_before = CandidateStatus(candidate.status)
            candidate_after = candidate_status_change(current, target) or candidate_before
            if candidate_after != candidate_before:
                candidate.status = candidate_after.value
                candidate.updated_by_id = performed_by

            application.status = target.value
            application.updated_by_id = performed_by
            self._session.flush()

            self._seed_checklist(application, target, performed_by)
            self._recorder.record(
                application.id,
                LifecycleAction.STATUS_CHANGE,
                performed_by,
                tenant_id,
                from_status=current,
                to_status=target,
                candidate_status_before=candidate_before,
                candidate_status_after=candidate_after,
                notes=notes or f"Status changed from {current.value} to {target.value}",
            )
            self._session.flush()
            info = application.to_dto()

        logger.info(
            "application_transitioned",
            extra={
                "application_id": str(application_id),
                "from_status": current.value,
                "to_status": target.value,
                "version": info.version,
            },
        )
        return info

    # =========================================================================
    # Ledger
    # =========================================================================

    def record_payment(
        self,
        application_id: UUID,
        performed_by: UUID,
        tenant_id: UUID,
        amount: Decimal,
        payment_type: str,
        notes: str | None = None,
        is_refundable: bool = True,
        payment_date: datetime | None = None,
    ) -> PaymentInfo:
        """Record money received from the application's client."""
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", field="amount")
        if payment_type.upper() == PAYMENT_TYPE_REFUND:
            raise ValidationError(
                "Refunds are created by the cancellation and guarantor-change workflows",
                field="payment_type",
            )

        with self._unit_of_work("record_payment", tenant_id, performed_by, application_id):
            application = self._load_application(tenant_id, application_id, for_update=False)
            payment = Payment(
                tenant_id=tenant_id,
                application_id=application.id,
                client_id=application.client_id,
                amount=amount,
                currency=application.currency,
                payment_type=payment_type,
                is_refundable=is_refundable,
                payment_date=payment_date or self._clock.now(),
                notes=notes,
                created_by_id=performed_by,
            )
            self._session.add(payment)
            self._session.flush()
            self._recorder.record_payment_added(
                application.id, tenant_id, performed_by, amount, payment_type, notes
            )
            info = payment.to_dto()
        return info

    def record_cost(
        self,
        application_id: UUID,
        performed_by: UUID,
        tenant_id: UUID,
        amount: Decimal,
        cost_type: str,
        description: str | None = None,
        cost_date: datetime | None = None,
    ) -> CostInfo:
        """Record an office expense against the application."""
        if amount <= 0:
            raise ValidationError("Cost amount must be positive", field="amount")

        with self._unit_of_work("record_cost", tenant_id, performed_by, application_id):
            application = self._load_application(tenant_id, application_id, for_update=False)
            cost = Cost(
                tenant_id=tenant_id,
                application_id=application.id,
                candidate_id=application.candidate_id,
                amount=amount,
                currency=application.currency,
                cost_type=cost_type,
                description=description,
                cost_date=cost_date or self._clock.now(),
                created_by_id=performed_by,
            )
            self._session.add(cost)
            self._session.flush()
            self._recorder.record_cost_added(
                application.id, tenant_id, performed_by, amount, cost_type, description
            )
            info = cost.to_dto()
        return info

    # =========================================================================
    # Documents
    # =========================================================================

    def update_document_status(
        self,
        item_id: UUID,
        new_status: DocumentStatus | str,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> DocumentItemInfo:
        status = DocumentStatus(new_status)
        with self._unit_of_work("update_document_status", tenant_id, performed_by):
            item = self._session.execute(
                select(DocumentChecklistItem)
                .join(Application, Application.id == DocumentChecklistItem.application_id)
                .where(
                    DocumentChecklistItem.id == item_id,
                    Application.tenant_id == tenant_id,
                )
            ).scalar_one_or_none()
            if item is None:
                raise DocumentItemNotFoundError(item_id)

            old_status = DocumentStatus(item.status)
            if old_status != status:
                item.status = status.value
                item.updated_by_id = performed_by
                self._session.flush()
                self._recorder.record_document_status_change(
                    item.application_id,
                    tenant_id,
                    performed_by,
                    item.document_name,
                    old_status,
                    status,
                )
            info = item.to_dto()
        return info

    def list_documents(self, application_id: UUID, tenant_id: UUID) -> list[DocumentItemInfo]:
        self._load_application(tenant_id, application_id, for_update=False)
        items = self._session.execute(
            select(DocumentChecklistItem)
            .where(DocumentChecklistItem.application_id == application_id)
            .order_by(DocumentChecklistItem.display_order, DocumentChecklistItem.document_name)
        ).scalars().all()
        return [i.to_dto() for i in items]

    def outstanding_documents(self, application_id: UUID, tenant_id: UUID) -> list[str]:
        """Required documents for the placement type not yet approved."""
        application = self._load_application(tenant_id, application_id, for_update=False)
        items = self._session.execute(
            select(DocumentChecklistItem.document_name, DocumentChecklistItem.status).where(
                DocumentChecklistItem.application_id == application_id
            )
        ).all()
        on_checklist = {name for name, _ in items}
        approved = {name for name, status in items if status == DocumentStatus.APPROVED.value}
        has_transfer = set(TRANSFER_STEPS) <= on_checklist
        required = document_requirements(
            ApplicationType(application.application_type), has_existing_paperwork=has_transfer
        )
        return [name for name in required if name not in approved]
