"""
GuarantorChangeOrchestrator -- employer reassignment as the primary intent.

Responsibility:
    Ends a candidate's placement with one sponsor so a new sponsor can take
    over: computes the per-payment heuristic refund, ends the original
    application, records the GuarantorChange, and later materializes the
    replacement application and marks the refund processed.

Architecture position:
    Services -- stateful orchestration over the kernel.  Uses
    domain/guarantor_refund.py for the money and shares the replacement
    application builder with the cancellation workflow.

Invariants enforced:
    - The original application moves to CONTRACT_ENDED.  Only post-arrival,
      ACTIVE_EMPLOYMENT and RENEWAL_PENDING applications can be reassigned.
    - ``refund_processed`` goes False -> True exactly once.
    - ``new_application_id`` is set exactly once.
    - A positive refund is booked as a negative REFUND payment on the
      original application.

Failure modes:
    - ApplicationNotFoundError, ClientNotFoundError,
      GuarantorChangeNotFoundError, FeeTemplateNotFoundError.
    - InvalidTransitionError: original application terminal or pre-arrival.
    - AlreadyProcessedError: repeated finalize or refund processing.
    - ActiveApplicationExistsError: candidate already has an open placement
      when finalizing.

Audit relevance:
    Initiation writes a status_change row and a guarantor_change row on the
    original application; finalization writes the opening status_change row
    of the replacement application.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select

from placement_kernel.domain.documents import TRANSFER_STEPS
from placement_kernel.domain.dtos import (
    ApplicationInfo,
    GuarantorChangeInfo,
    LifecycleAction,
    PaymentInfo,
)
from placement_kernel.domain.guarantor_refund import (
    GuarantorRefundResult,
    PaymentLine,
    calculate_guarantor_refund,
    locate_candidate,
)
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    CandidateStatus,
    has_completed_paperwork,
    is_active,
    is_post_arrival,
    is_terminal,
    is_within_probation,
    valid_next_states,
)
from placement_kernel.exceptions import (
    AlreadyProcessedError,
    GuarantorChangeNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from placement_kernel.logging_config import get_logger
from placement_kernel.models.application import Application
from placement_kernel.models.guarantor_change import GuarantorChange
from placement_kernel.models.ledger import PAYMENT_TYPE_REFUND, Payment
from placement_kernel.models.lifecycle_history import ApplicationLifecycleHistory
from placement_services._orchestration import OrchestratorBase

logger = get_logger("services.guarantor_change")


def _can_reassign(status: ApplicationStatus) -> bool:
    """A sponsor can only be replaced once the worker is in the country."""
    if ApplicationStatus.CONTRACT_ENDED in valid_next_states(status):
        return True
    # RENEWAL_PENDING: the worker is still employed while permits renew.
    return is_post_arrival(status) or is_active(status)


@dataclass(frozen=True)
class GuarantorChangeRequest:
    original_application_id: UUID
    to_client_id: UUID
    reason: str | None = None
    candidate_in_lebanon: bool = False
    candidate_departed: bool = False
    custom_refund_amount: Decimal | None = None
    notes: str | None = None
    expected_version: int | None = None


@dataclass(frozen=True)
class GuarantorChangeResult:
    guarantor_change: GuarantorChangeInfo
    refund: GuarantorRefundResult
    original_application: ApplicationInfo
    refund_payment: PaymentInfo | None = None


@dataclass(frozen=True)
class GuarantorChangeFinalization:
    guarantor_change: GuarantorChangeInfo
    application: ApplicationInfo


class GuarantorChangeOrchestrator(OrchestratorBase):
    """Initiate, finalize and settle guarantor changes."""

    # =========================================================================
    # Initiate
    # =========================================================================

    def initiate_guarantor_change(
        self,
        request: GuarantorChangeRequest,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> GuarantorChangeResult:
        """
        End the original placement and record the reassignment.

        The replacement application is created by
        ``finalize_guarantor_change`` once the new sponsor's terms are known.
        """
        with self._unit_of_work(
            "initiate_guarantor_change",
            tenant_id,
            performed_by,
            request.original_application_id,
        ):
            result = self._initiate(request, performed_by, tenant_id)

        logger.info(
            "guarantor_change_initiated",
            extra={
                "guarantor_change_id": str(result.guarantor_change.id),
                "refund_amount": str(result.refund.final_refund),
                "location": result.refund.location.value,
            },
        )
        return result

    def _initiate(
        self,
        request: GuarantorChangeRequest,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> GuarantorChangeResult:
        application = self._load_application(tenant_id, request.original_application_id)
        self._check_version(application, request.expected_version)
        self._load_client(tenant_id, request.to_client_id)

        if request.to_client_id == application.client_id:
            raise ValidationError(
                "New client must differ from the current client", field="to_client_id"
            )

        original_status = ApplicationStatus(application.status)
        if not _can_reassign(original_status):
            reason = (
                f"{original_status.value} is a terminal status"
                if is_terminal(original_status)
                else f"{original_status.value} is before the worker's arrival"
            )
            raise InvalidTransitionError(
                original_status.value,
                ApplicationStatus.CONTRACT_ENDED.value,
                reason,
                valid_next_states(original_status),
            )

        refund = self._compute_refund(application, request)

        candidate = self._load_candidate(tenant_id, application.candidate_id)
        candidate_before = CandidateStatus(candidate.status)
        if request.candidate_departed:
            candidate_after = CandidateStatus.PLACED
        elif request.candidate_in_lebanon:
            candidate_after = CandidateStatus.AVAILABLE_IN_LEBANON
        else:
            candidate_after = CandidateStatus.AVAILABLE_ABROAD

        application.status = ApplicationStatus.CONTRACT_ENDED.value
        application.updated_by_id = performed_by
        candidate.status = candidate_after.value
        candidate.updated_by_id = performed_by

        refund_payment = None
        if refund.final_refund > 0:
            refund_payment = Payment(
                tenant_id=tenant_id,
                application_id=application.id,
                client_id=application.client_id,
                amount=-refund.final_refund,
                currency=application.currency,
                payment_type=PAYMENT_TYPE_REFUND,
                is_refundable=False,
                payment_date=self._clock.now(),
                notes=f"Refund for guarantor change - {request.reason or 'No reason provided'}",
                created_by_id=performed_by,
            )
            self._session.add(refund_payment)

        change = GuarantorChange(
            tenant_id=tenant_id,
            original_application_id=application.id,
            from_client_id=application.client_id,
            to_client_id=request.to_client_id,
            candidate_id=candidate.id,
            refund_amount=refund.final_refund,
            refund_currency=application.currency,
            refund_processed=False,
            candidate_status_before=candidate_before.value,
            candidate_status_after=candidate_after.value,
            reason=request.reason,
            notes=request.notes,
            change_date=self._clock.now(),
            created_by_id=performed_by,
        )
        self._session.add(change)
        self._session.flush()

        self._recorder.record(
            application.id,
            LifecycleAction.STATUS_CHANGE,
            performed_by,
            tenant_id,
            from_status=original_status,
            to_status=ApplicationStatus.CONTRACT_ENDED,
            candidate_status_before=candidate_before,
            candidate_status_after=candidate_after,
            notes=f"Guarantor change: {request.reason or 'No reason provided'}",
        )
        self._recorder.record_guarantor_change(
            application.id,
            tenant_id,
            performed_by,
            from_client_id=application.client_id,
            to_client_id=request.to_client_id,
            candidate_status_before=candidate_before,
            candidate_status_after=candidate_after,
            financial_impact={
                "guarantor_change_id": str(change.id),
                "original_status": original_status.value,
                "refund": refund.to_payload(),
            },
            notes=request.notes or request.reason,
        )

        self._session.flush()
        return GuarantorChangeResult(
            guarantor_change=change.to_dto(),
            refund=refund,
            original_application=application.to_dto(),
            refund_payment=refund_payment.to_dto() if refund_payment else None,
        )

    def _compute_refund(
        self,
        application: Application,
        request: GuarantorChangeRequest,
    ) -> GuarantorRefundResult:
        """Heuristic refund; probation runs from arrival, else from creation."""
        if application.exact_arrival_date is not None:
            reference = application.exact_arrival_date
        else:
            reference = application.created_at.date()
        within_probation = is_within_probation(reference, self._clock.today())

        payments = self._session.execute(
            select(Payment.payment_type, Payment.amount)
            .where(Payment.application_id == application.id)
            .order_by(Payment.payment_date)
        ).all()
        location = locate_candidate(
            candidate_in_country=request.candidate_in_lebanon,
            candidate_departed=request.candidate_departed,
            within_probation=within_probation,
        )
        return calculate_guarantor_refund(
            (PaymentLine(payment_type, amount) for payment_type, amount in payments),
            location,
            custom_refund_amount=request.custom_refund_amount,
        )

    # =========================================================================
    # Finalize
    # =========================================================================

    def finalize_guarantor_change(
        self,
        change_id: UUID,
        performed_by: UUID,
        tenant_id: UUID,
        fee_template_id: UUID | None = None,
        broker_id: UUID | None = None,
    ) -> GuarantorChangeFinalization:
        """
        Create the replacement application for the new sponsor.

        Raises:
            AlreadyProcessedError: The change already has a new application.
        """
        with self._unit_of_work("finalize_guarantor_change", tenant_id, performed_by):
            change = self._load_change(tenant_id, change_id)
            if change.new_application_id is not None:
                raise AlreadyProcessedError("GuarantorChange", change.id, "finalize")

            candidate = self._load_candidate(tenant_id, change.candidate_id)
            self._ensure_no_open_application(tenant_id, candidate.id)
            fee_template = (
                self._policies.get_fee_template(tenant_id, fee_template_id)
                if fee_template_id is not None
                else None
            )

            has_paperwork = self._original_had_paperwork(change.original_application_id)
            application = self._create_guarantor_change_application(
                tenant_id,
                performed_by,
                candidate,
                from_client_id=change.from_client_id,
                to_client_id=change.to_client_id,
                transfer_documents=TRANSFER_STEPS if has_paperwork else (),
                notes=f"Guarantor change application created from guarantor change {change.id}",
                fee_template=fee_template,
                broker_id=broker_id,
                financial_impact={
                    "guarantor_change_id": str(change.id),
                    "original_application_id": str(change.original_application_id),
                    "has_existing_paperwork": has_paperwork,
                },
            )
            change.new_application_id = application.id
            change.updated_by_id = performed_by
            self._session.flush()
            result = GuarantorChangeFinalization(
                guarantor_change=change.to_dto(),
                application=application.to_dto(),
            )

        logger.info(
            "guarantor_change_finalized",
            extra={
                "guarantor_change_id": str(change_id),
                "new_application_id": str(result.application.id),
            },
        )
        return result

    def _original_had_paperwork(self, original_application_id: UUID) -> bool:
        """Status the original held before it was ended by the change."""
        from_status = self._session.execute(
            select(ApplicationLifecycleHistory.from_status)
            .where(
                ApplicationLifecycleHistory.application_id == original_application_id,
                ApplicationLifecycleHistory.action == LifecycleAction.STATUS_CHANGE.value,
                ApplicationLifecycleHistory.to_status == ApplicationStatus.CONTRACT_ENDED.value,
            )
            .order_by(ApplicationLifecycleHistory.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return from_status is not None and has_completed_paperwork(from_status)

    # =========================================================================
    # Refund processing
    # =========================================================================

    def process_guarantor_change_refund(
        self,
        change_id: UUID,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> GuarantorChangeInfo:
        """
        Mark the change's refund as paid out.

        Raises:
            AlreadyProcessedError: Refund already marked processed.
        """
        with self._unit_of_work("process_guarantor_change_refund", tenant_id, performed_by):
            change = self._load_change(tenant_id, change_id)
            if change.refund_processed:
                raise AlreadyProcessedError("GuarantorChange", change.id, "refund")
            change.refund_processed = True
            change.refund_processed_date = self._clock.today()
            change.updated_by_id = performed_by
            self._session.flush()
            info = change.to_dto()

        logger.info(
            "guarantor_change_refund_processed",
            extra={"guarantor_change_id": str(change_id), "refund_amount": str(info.refund_amount)},
        )
        return info

    # =========================================================================
    # History
    # =========================================================================

    def candidate_guarantor_history(
        self,
        candidate_id: UUID,
        tenant_id: UUID,
    ) -> list[GuarantorChangeInfo]:
        changes = self._session.execute(
            select(GuarantorChange)
            .where(
                GuarantorChange.tenant_id == tenant_id,
                GuarantorChange.candidate_id == candidate_id,
            )
            .order_by(GuarantorChange.change_date.desc())
        ).scalars().all()
        return [c.to_dto() for c in changes]

    def client_guarantor_history(
        self,
        client_id: UUID,
        tenant_id: UUID,
    ) -> list[GuarantorChangeInfo]:
        """Changes where the client was the previous or the new sponsor."""
        changes = self._session.execute(
            select(GuarantorChange)
            .where(
                GuarantorChange.tenant_id == tenant_id,
                or_(
                    GuarantorChange.from_client_id == client_id,
                    GuarantorChange.to_client_id == client_id,
                ),
            )
            .order_by(GuarantorChange.change_date.desc())
        ).scalars().all()
        return [c.to_dto() for c in changes]

    def _load_change(self, tenant_id: UUID, change_id: UUID) -> GuarantorChange:
        change = self._session.execute(
            select(GuarantorChange)
            .where(GuarantorChange.id == change_id, GuarantorChange.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if change is None:
            raise GuarantorChangeNotFoundError(change_id)
        return change
