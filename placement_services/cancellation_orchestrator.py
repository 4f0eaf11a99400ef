"""
CancellationOrchestrator -- transactional cancellation use case.

Responsibility:
    Cancels an application: validates the move against the lifecycle
    table, resolves the governing policy for the requested type, computes
    the refund, and applies every consequence atomically: application and
    candidate status, refund payment, deportation cost, optional
    reassignment to a new sponsor, and the audit rows.

Architecture position:
    Services -- stateful orchestration over the kernel.  Composes
    PolicyStore, LifecycleRecorder and the pure domain modules
    (lifecycle, cancellation, refund).

Invariants enforced:
    - The target status is derived from the cancellation type's family and
      must be a legal move from the current status.
    - The policy is the one keyed by the requested type.  Dates never
      re-bucket an explicit type.
    - Exactly one status_change row followed by exactly one cancellation
      row is written on the cancelled application.
    - A refund is a new negative REFUND payment, never an edit.
    - ``candidate_departed`` forces the final refund to zero for
      post-arrival and candidate cancellations.

Failure modes:
    - ApplicationNotFoundError, ClientNotFoundError: unknown ids.
    - InvalidTransitionError: status cannot be cancelled with this type.
    - ConflictError: ``expected_version`` mismatch or a lost race.
    - PolicyMissingError: no active setting for the type (or no tenant
      policy when deportation is requested).
    - ValidationError: malformed request.
    Every failure rolls back all writes.

Audit relevance:
    The cancellation row carries the complete refund breakdown, the
    resolved policy name, the next action and any reassignment id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from placement_kernel.domain.cancellation import (
    CancellationFamily,
    CancellationType,
    family_of,
    months_since_arrival,
    parse_cancellation_type,
    post_arrival_type_for,
    target_status_for,
)
from placement_kernel.domain.documents import TRANSFER_STEPS
from placement_kernel.domain.dtos import (
    ApplicationInfo,
    CostInfo,
    LifecycleAction,
    LifecycleHistoryEntry,
    PaymentInfo,
)
from placement_kernel.domain.lifecycle import (
    PRE_ARRIVAL_STATES,
    ApplicationStatus,
    CandidateStatus,
    candidate_status_change,
    has_completed_paperwork,
    is_cancellable,
    is_post_arrival,
    is_valid_transition,
    is_within_probation,
)
from placement_kernel.domain.refund import (
    ZERO,
    RefundOverrides,
    RefundResult,
    calculate_refund,
    format_money,
)
from placement_kernel.exceptions import (
    InvalidTransitionError,
    PlacementKernelError,
    ValidationError,
)
from placement_kernel.logging_config import get_logger
from placement_kernel.models.application import Application
from placement_kernel.models.ledger import (
    COST_TYPE_DEPORTATION,
    PAYMENT_TYPE_REFUND,
    Cost,
    Payment,
)
from placement_services._orchestration import OrchestratorBase

logger = get_logger("services.cancellation")

DEPORTATION_DESCRIPTION = "Return ticket and deportation costs"
DEPARTED_NOTE = "Candidate departed: no refund"

WARNING_NOT_CANCELLABLE = "Application cannot be cancelled in current state"
WARNING_ACTIVE_EMPLOYMENT = "This will end an active employment contract"
WARNING_OUTSIDE_PROBATION = "Application is outside probation period - limited refund may apply"

NEXT_ACTION_REASSIGNMENT = "reassignment"
NEXT_ACTION_DEPORTATION = "deportation"
NEXT_ACTION_PENDING = "pending"


@dataclass(frozen=True)
class CancellationRequest:
    """
    Caller input for ``process_cancellation``.

    ``cancellation_type`` accepts a CancellationType or its value.  The
    legacy aliases ``pre_arrival`` and ``post_arrival`` are resolved at
    the boundary.
    """

    application_id: UUID
    cancellation_type: CancellationType | str
    reason: str | None = None
    notes: str | None = None
    custom_refund_amount: Decimal | None = None
    penalty_fee_override: Decimal | None = None
    candidate_in_lebanon: bool = False
    candidate_departed: bool = False
    new_client_id: UUID | None = None
    deport_candidate: bool = False
    expected_version: int | None = None


@dataclass(frozen=True)
class FinancialImpact:
    refund_amount: Decimal
    penalty_fee: Decimal
    non_refundable_fees: Decimal
    total_costs_absorbed: Decimal

    def to_payload(self) -> dict[str, str]:
        return {
            "refund_amount": str(self.refund_amount),
            "penalty_fee": str(self.penalty_fee),
            "non_refundable_fees": str(self.non_refundable_fees),
            "total_costs_absorbed": str(self.total_costs_absorbed),
        }


@dataclass(frozen=True)
class CancellationResult:
    application: ApplicationInfo
    cancellation_type: CancellationType
    refund: RefundResult
    financial_impact: FinancialImpact
    message: str
    next_action: str | None = None
    reassignment_application: ApplicationInfo | None = None
    refund_payment: PaymentInfo | None = None
    deportation_cost: CostInfo | None = None
    history: tuple[LifecycleHistoryEntry, ...] = field(default=())


@dataclass(frozen=True)
class CancellationOptions:
    """Advisory answer to "how could this application be cancelled?"."""

    can_cancel: bool
    available_types: tuple[CancellationType, ...] = ()
    warnings: tuple[str, ...] = ()
    refund_estimate: RefundResult | None = None


class CancellationOrchestrator(OrchestratorBase):
    """
    Cancels applications and books the financial consequences.

    Contract:
        ``process_cancellation`` either applies every write listed in the
        module docstring or none of them.

    Non-goals:
        - Does NOT send notifications or render receipts.
        - Does NOT change the fee template of the cancelled application.
    """

    # =========================================================================
    # Cancellation
    # =========================================================================

    def process_cancellation(
        self,
        request: CancellationRequest,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> CancellationResult:
        """
        Cancel an application.

        Args:
            request: What to cancel and how.
            performed_by: Actor id written on every row.
            tenant_id: Tenant scope of every lookup.

        Returns:
            CancellationResult with the updated application, the refund
            breakdown and the financial impact.
        """
        with self._unit_of_work(
            "process_cancellation", tenant_id, performed_by, request.application_id
        ):
            result = self._cancel(request, performed_by, tenant_id)

        logger.info(
            "application_cancelled",
            extra={
                "application_id": str(request.application_id),
                "cancellation_type": result.cancellation_type.value,
                "to_status": result.application.status.value,
                "final_refund": str(result.refund.final_refund),
                "next_action": result.next_action,
            },
        )
        return result

    def _cancel(
        self,
        request: CancellationRequest,
        performed_by: UUID,
        tenant_id: UUID,
    ) -> CancellationResult:
        application = self._load_application(tenant_id, request.application_id)
        self._check_version(application, request.expected_version)

        today = self._clock.today()
        cancellation_type = parse_cancellation_type(
            request.cancellation_type, application.exact_arrival_date, today
        )
        family = family_of(cancellation_type)
        self._validate_request(request, family, application)

        original_status = ApplicationStatus(application.status)
        target_status = target_status_for(cancellation_type)
        check = is_valid_transition(original_status, target_status)
        if not check.valid:
            raise InvalidTransitionError(
                original_status.value,
                target_status.value,
                check.reason or "",
                check.valid_next_states,
            )

        policy = self._policies.get_cancellation_policy(tenant_id, cancellation_type)
        refund = self._compute_refund(application, cancellation_type, today, request)
        if request.candidate_departed and family is not CancellationFamily.PRE_ARRIVAL:
            refund = refund.with_final_refund(ZERO, DEPARTED_NOTE)

        candidate = self._load_candidate(tenant_id, application.candidate_id)
        candidate_before = CandidateStatus(candidate.status)
        candidate_after = candidate_status_change(original_status, target_status) or candidate_before
        if request.new_client_id is not None:
            candidate_after = CandidateStatus.IN_PROCESS

        application.status = target_status.value
        application.updated_by_id = performed_by
        candidate.status = candidate_after.value
        candidate.updated_by_id = performed_by
        self._session.flush()

        refund_payment = None
        if refund.final_refund > 0:
            refund_payment = self._book_refund(
                application, refund.final_refund, family, request.reason, performed_by
            )

        deportation_cost = None
        if request.deport_candidate:
            deportation_cost = self._book_deportation(application, performed_by)

        reassignment = None
        if request.new_client_id is not None:
            self._load_client(tenant_id, request.new_client_id)
            self._ensure_no_open_application(
                tenant_id, candidate.id, exclude=[application.id]
            )
            has_paperwork = has_completed_paperwork(original_status)
            reassignment = self._create_guarantor_change_application(
                tenant_id,
                performed_by,
                candidate,
                from_client_id=application.client_id,
                to_client_id=request.new_client_id,
                transfer_documents=TRANSFER_STEPS if has_paperwork else (),
                notes=(
                    "Guarantor change application created from cancelled "
                    f"application {application.id}"
                ),
                financial_impact={
                    "original_application_id": str(application.id),
                    "has_existing_paperwork": has_paperwork,
                },
            )

        next_action = self._next_action(request, family)
        financial_impact = FinancialImpact(
            refund_amount=refund.final_refund,
            penalty_fee=refund.penalty_fee,
            non_refundable_fees=refund.non_refundable_components,
            total_costs_absorbed=self._total_costs(application.id),
        )

        status_entry = self._recorder.record(
            application.id,
            LifecycleAction.STATUS_CHANGE,
            performed_by,
            tenant_id,
            from_status=original_status,
            to_status=target_status,
            candidate_status_before=candidate_before,
            candidate_status_after=candidate_after,
            notes=self._status_note(cancellation_type, family, request.reason),
        )
        cancellation_entry = self._recorder.record(
            application.id,
            LifecycleAction.CANCELLATION,
            performed_by,
            tenant_id,
            from_status=original_status,
            to_status=target_status,
            from_client_id=application.client_id if reassignment else None,
            to_client_id=request.new_client_id,
            candidate_status_before=candidate_before,
            candidate_status_after=candidate_after,
            financial_impact=self._cancellation_payload(
                request,
                policy.name,
                refund,
                financial_impact,
                next_action,
                reassignment,
                deportation_cost,
            ),
            notes=self._cancellation_note(cancellation_type, request, deportation_cost),
        )

        self._session.flush()
        return CancellationResult(
            application=application.to_dto(),
            cancellation_type=cancellation_type,
            refund=refund,
            financial_impact=financial_impact,
            message=self._message(family, request, refund),
            next_action=next_action,
            reassignment_application=reassignment.to_dto() if reassignment else None,
            refund_payment=refund_payment.to_dto() if refund_payment else None,
            deportation_cost=deportation_cost.to_dto() if deportation_cost else None,
            history=tuple(e for e in (status_entry, cancellation_entry) if e is not None),
        )

    @staticmethod
    def _validate_request(
        request: CancellationRequest,
        family: CancellationFamily,
        application: Application,
    ) -> None:
        if request.new_client_id is not None and request.new_client_id == application.client_id:
            raise ValidationError(
                "New client must differ from the current client", field="new_client_id"
            )
        if request.new_client_id is not None and request.deport_candidate:
            raise ValidationError(
                "Choose either reassignment or deportation, not both", field="new_client_id"
            )
        if family is not CancellationFamily.POST_ARRIVAL:
            if request.new_client_id is not None:
                raise ValidationError(
                    "Reassignment is only available for post-arrival cancellations",
                    field="new_client_id",
                )
            if request.deport_candidate:
                raise ValidationError(
                    "Deportation is only available for post-arrival cancellations",
                    field="deport_candidate",
                )

    # -------------------------------------------------------------------------
    # Refund computation
    # -------------------------------------------------------------------------

    def _compute_refund(
        self,
        application: Application,
        cancellation_type: CancellationType,
        as_of: date,
        request: CancellationRequest | None = None,
    ) -> RefundResult:
        policy = self._policies.get_cancellation_policy(application.tenant_id, cancellation_type)
        components = self._policies.get_fee_components(
            application.tenant_id, application.fee_template_id
        )
        payments = self._session.execute(
            select(Payment.amount).where(Payment.application_id == application.id)
        ).scalars().all()

        months = None
        if application.exact_arrival_date is not None:
            months = months_since_arrival(application.exact_arrival_date, as_of)

        overrides = RefundOverrides(
            custom_refund_amount=request.custom_refund_amount if request else None,
            penalty_fee_override=request.penalty_fee_override if request else None,
            months_since_arrival=months,
        )
        return calculate_refund(cancellation_type, payments, components, policy, overrides)

    # -------------------------------------------------------------------------
    # Ledger writes
    # -------------------------------------------------------------------------

    def _book_refund(
        self,
        application: Application,
        amount: Decimal,
        family: CancellationFamily,
        reason: str | None,
        performed_by: UUID,
    ) -> Payment:
        match family:
            case CancellationFamily.PRE_ARRIVAL:
                label = "Pre-arrival cancellation refund"
            case CancellationFamily.POST_ARRIVAL:
                label = "Post-arrival cancellation refund"
            case CancellationFamily.CANDIDATE:
                label = "Candidate cancellation refund"

        payment = Payment(
            tenant_id=application.tenant_id,
            application_id=application.id,
            client_id=application.client_id,
            amount=-amount,
            currency=application.currency,
            payment_type=PAYMENT_TYPE_REFUND,
            is_refundable=False,
            payment_date=self._clock.now(),
            notes=f"{label} - {reason or 'No reason provided'}",
            created_by_id=performed_by,
        )
        self._session.add(payment)
        self._session.flush()
        logger.info(
            "refund_payment_created",
            extra={"payment_id": str(payment.id), "amount": str(payment.amount)},
        )
        return payment

    def _book_deportation(self, application: Application, performed_by: UUID) -> Cost:
        amount = self._policies.get_deportation_cost(application.tenant_id)
        cost = Cost(
            tenant_id=application.tenant_id,
            application_id=application.id,
            candidate_id=application.candidate_id,
            amount=amount,
            currency=application.currency,
            cost_type=COST_TYPE_DEPORTATION,
            description=DEPORTATION_DESCRIPTION,
            cost_date=self._clock.now(),
            created_by_id=performed_by,
        )
        self._session.add(cost)
        self._session.flush()
        logger.info(
            "deportation_cost_booked",
            extra={"cost_id": str(cost.id), "amount": str(amount)},
        )
        return cost

    # -------------------------------------------------------------------------
    # Audit text
    # -------------------------------------------------------------------------

    @staticmethod
    def _next_action(request: CancellationRequest, family: CancellationFamily) -> str | None:
        if family is not CancellationFamily.POST_ARRIVAL:
            return None
        if request.new_client_id is not None:
            return NEXT_ACTION_REASSIGNMENT
        if request.deport_candidate:
            return NEXT_ACTION_DEPORTATION
        return NEXT_ACTION_PENDING

    @staticmethod
    def _status_note(
        cancellation_type: CancellationType,
        family: CancellationFamily,
        reason: str | None,
    ) -> str:
        reason = reason or "No reason provided"
        match family:
            case CancellationFamily.PRE_ARRIVAL:
                return f"Pre-arrival cancellation: {reason}"
            case CancellationFamily.POST_ARRIVAL:
                return f"Post-arrival cancellation ({cancellation_type.value}): {reason}"
            case CancellationFamily.CANDIDATE:
                return f"Candidate cancellation: {reason}"

    @staticmethod
    def _cancellation_note(
        cancellation_type: CancellationType,
        request: CancellationRequest,
        deportation_cost: Cost | None,
    ) -> str:
        note = f"Cancellation ({cancellation_type.value}): {request.notes or request.reason or ''}".rstrip()
        if deportation_cost is not None:
            note += f" | Candidate marked for deportation ({format_money(deportation_cost.amount)})"
        return note

    @staticmethod
    def _cancellation_payload(
        request: CancellationRequest,
        policy_name: str,
        refund: RefundResult,
        impact: FinancialImpact,
        next_action: str | None,
        reassignment: Application | None,
        deportation_cost: Cost | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "refund_amount": str(refund.final_refund),
            "penalty_fee": str(refund.penalty_fee),
            "reason": request.reason,
            "policy_name": policy_name,
            "next_action": next_action,
            "candidate_in_lebanon": request.candidate_in_lebanon,
            "candidate_departed": request.candidate_departed,
            "refund": refund.to_payload(),
            "financial_impact": impact.to_payload(),
        }
        if reassignment is not None:
            payload["new_application_id"] = str(reassignment.id)
            payload["new_client_id"] = str(reassignment.client_id)
        if deportation_cost is not None:
            payload["deportation_cost"] = str(deportation_cost.amount)
        return payload

    @staticmethod
    def _message(
        family: CancellationFamily,
        request: CancellationRequest,
        refund: RefundResult,
    ) -> str:
        match family:
            case CancellationFamily.PRE_ARRIVAL:
                return "Application cancelled successfully. Candidate remains available abroad."
            case CancellationFamily.POST_ARRIVAL:
                message = (
                    "Application cancelled successfully. Candidate is now available in Lebanon."
                )
                if request.new_client_id is not None:
                    message += " New application created for reassignment."
                elif request.deport_candidate:
                    message += " Candidate marked for deportation."
                return message
            case CancellationFamily.CANDIDATE:
                message = "Application cancelled by candidate. All costs absorbed by office."
                if refund.final_refund > 0:
                    message += f" Refund of {format_money(refund.final_refund)} issued to client."
                return message

    # =========================================================================
    # Advisory options
    # =========================================================================

    def get_available_cancellation_options(
        self,
        application_id: UUID,
        tenant_id: UUID,
    ) -> CancellationOptions:
        """
        Which cancellation types apply now, with warnings and an estimate.

        Advisory only: nothing is locked or written, and the estimate may
        differ from the refund computed when the cancellation is processed.
        """
        application = self._load_application(tenant_id, application_id, for_update=False)
        status = ApplicationStatus(application.status)
        if not is_cancellable(status):
            return CancellationOptions(can_cancel=False, warnings=(WARNING_NOT_CANCELLABLE,))

        today = self._clock.today()
        arrival = application.exact_arrival_date
        if status in PRE_ARRIVAL_STATES:
            types = (
                CancellationType.PRE_ARRIVAL_CLIENT,
                CancellationType.PRE_ARRIVAL_CANDIDATE,
            )
        else:
            types = (
                post_arrival_type_for(arrival, today),
                CancellationType.CANDIDATE_CANCELLATION,
            )

        warnings: list[str] = []
        if status == ApplicationStatus.ACTIVE_EMPLOYMENT:
            warnings.append(WARNING_ACTIVE_EMPLOYMENT)
        if is_post_arrival(status) and arrival is not None and not is_within_probation(arrival, today):
            warnings.append(WARNING_OUTSIDE_PROBATION)

        estimate = None
        try:
            estimate = self._compute_refund(application, types[0], today)
        except PlacementKernelError as exc:
            logger.warning(
                "refund_estimate_failed",
                extra={
                    "application_id": str(application_id),
                    "cancellation_type": types[0].value,
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )

        return CancellationOptions(
            can_cancel=True,
            available_types=types,
            warnings=tuple(warnings),
            refund_estimate=estimate,
        )
