"""
CancellationOrchestrator: the full cancellation use case against a real
session.

Every test seeds the packaged tenant policy.  Applications are inserted
directly in the status under test; payments are added before cancelling.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from placement_kernel.domain.cancellation import CancellationType
from placement_kernel.domain.dtos import LifecycleAction
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    ApplicationType,
    CandidateStatus,
)
from placement_kernel.exceptions import (
    ActiveApplicationExistsError,
    ApplicationNotFoundError,
    ClientNotFoundError,
    InvalidTransitionError,
    PolicyMissingError,
    ValidationError,
)
from placement_kernel.models.application import Application
from placement_kernel.models.document import DocumentChecklistItem
from placement_kernel.models.ledger import Cost, Payment
from placement_kernel.models.party import Candidate
from placement_services import CancellationRequest
from placement_services.cancellation_orchestrator import (
    WARNING_ACTIVE_EMPLOYMENT,
    WARNING_NOT_CANCELLABLE,
    WARNING_OUTSIDE_PROBATION,
)

S = ApplicationStatus
T = CancellationType

# 20 days before the fixed clock date (2024-01-01)
RECENT_ARRIVAL = date(2023, 12, 12)
# well outside probation on the clock date
EARLY_ARRIVAL = date(2023, 6, 1)


@pytest.fixture
def office_refundable_template(make_fee_template, seeded_tenant):
    """2500 package where office service and processing survive arrival."""
    return make_fee_template(
        "Package With Office Refund",
        [
            ("Office Service", "800", True, True),
            ("Insurance", "300", False, False),
            ("Ticket", "600", True, False),
            ("Government Fees", "400", False, False),
            ("Medical Checkup", "200", False, False),
            ("Processing Fee", "200", True, True),
        ],
    )


def _payments(session, application_id):
    return session.execute(
        select(Payment).where(Payment.application_id == application_id)
    ).scalars().all()


class TestPreArrival:
    def test_client_cancellation_refunds_1400(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.VISA_PROCESSING, fee_template=standard_template)
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(
                application_id=application.id,
                cancellation_type=T.PRE_ARRIVAL_CLIENT,
                reason="Client changed plans",
            ),
            test_actor_id,
            seeded_tenant,
        )

        assert result.application.status == S.CANCELLED_PRE_ARRIVAL
        assert result.refund.final_refund == Decimal("1400.00")
        assert result.financial_impact.penalty_fee == Decimal("200.00")
        assert result.financial_impact.non_refundable_fees == Decimal("900.00")
        assert result.next_action is None
        assert result.message == (
            "Application cancelled successfully. Candidate remains available abroad."
        )

        refund = result.refund_payment
        assert refund.amount == Decimal("-1400.00")
        assert refund.payment_type == "REFUND"
        assert not refund.is_refundable
        assert refund.notes == "Pre-arrival cancellation refund - Client changed plans"
        assert len(_payments(session, application.id)) == 2

    def test_candidate_status_returns_to_available_abroad(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.PENDING_AUTHORIZATION)

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.PRE_ARRIVAL_CANDIDATE),
            test_actor_id,
            seeded_tenant,
        )

        (status_entry, cancellation_entry) = result.history
        assert status_entry.candidate_status_before == CandidateStatus.IN_PROCESS
        assert status_entry.candidate_status_after == CandidateStatus.AVAILABLE_ABROAD
        assert cancellation_entry.notes == "Cancellation (pre_arrival_candidate):"

    def test_candidate_withdrawal_refunds_everything(
        self,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.VISA_RECEIVED, fee_template=standard_template)
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.PRE_ARRIVAL_CANDIDATE),
            test_actor_id,
            seeded_tenant,
        )
        assert result.refund.final_refund == Decimal("2500.00")

    def test_legacy_pre_arrival_alias(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.AUTHORIZATION_RECEIVED)

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, "pre_arrival"),
            test_actor_id,
            seeded_tenant,
        )
        assert result.cancellation_type is T.PRE_ARRIVAL_CLIENT

    def test_departed_flag_does_not_zero_pre_arrival_refund(
        self,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.VISA_PROCESSING, fee_template=standard_template)
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT, candidate_departed=True),
            test_actor_id,
            seeded_tenant,
        )
        assert result.refund.final_refund == Decimal("1400.00")


class TestPostArrival:
    def test_within_probation_refunds_600(
        self,
        cancellation_orchestrator,
        make_application,
        add_payment,
        office_refundable_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(
            S.WORKER_ARRIVED,
            exact_arrival_date=RECENT_ARRIVAL,
            fee_template=office_refundable_template,
        )
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.POST_ARRIVAL_WITHIN_3_MONTHS, reason="Mismatch"),
            test_actor_id,
            seeded_tenant,
        )

        assert result.application.status == S.CANCELLED_POST_ARRIVAL
        assert result.refund.monthly_service_fees == Decimal("100.00")
        assert result.refund.final_refund == Decimal("600.00")
        assert result.next_action == "pending"
        assert result.refund_payment.notes == "Post-arrival cancellation refund - Mismatch"

    def test_legacy_post_arrival_alias_uses_arrival_date(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, "post_arrival"),
            test_actor_id,
            seeded_tenant,
        )
        assert result.cancellation_type is T.POST_ARRIVAL_AFTER_3_MONTHS

    def test_explicit_type_is_not_rebucketed_by_dates(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.POST_ARRIVAL_WITHIN_3_MONTHS),
            test_actor_id,
            seeded_tenant,
        )

        cancellation_entry = result.history[1]
        assert result.cancellation_type is T.POST_ARRIVAL_WITHIN_3_MONTHS
        assert cancellation_entry.financial_impact["policy_name"] == "Cancellation within probation"

    def test_deportation_books_tenant_cost(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.LABOUR_PERMIT_PROCESSING, exact_arrival_date=RECENT_ARRIVAL)

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(
                application.id,
                T.POST_ARRIVAL_WITHIN_3_MONTHS,
                reason="Absconded",
                deport_candidate=True,
            ),
            test_actor_id,
            seeded_tenant,
        )

        assert result.next_action == "deportation"
        assert result.deportation_cost.amount == Decimal("500")
        assert result.deportation_cost.cost_type == "DEPORTATION"
        assert result.financial_impact.total_costs_absorbed == Decimal("500")
        assert result.message.endswith("Candidate marked for deportation.")

        costs = session.execute(
            select(Cost).where(Cost.application_id == application.id)
        ).scalars().all()
        assert len(costs) == 1

        cancellation_entry = result.history[1]
        assert cancellation_entry.notes == (
            "Cancellation (post_arrival_within_3_months): Absconded"
            " | Candidate marked for deportation ($500.00)"
        )
        assert Decimal(cancellation_entry.financial_impact["deportation_cost"]) == Decimal("500")

    def test_reassignment_creates_guarantor_change_application(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        make_client,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)
        new_client = make_client("New Household")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(
                application.id,
                T.POST_ARRIVAL_AFTER_3_MONTHS,
                reason="Household moving abroad",
                new_client_id=new_client.id,
            ),
            test_actor_id,
            seeded_tenant,
        )

        new_application = result.reassignment_application
        assert new_application.application_type == ApplicationType.GUARANTOR_CHANGE
        assert new_application.status == S.PENDING_AUTHORIZATION
        assert new_application.client_id == new_client.id
        assert new_application.from_client_id == application.client_id
        assert new_application.final_fee_amount == Decimal("1200")
        assert result.next_action == "reassignment"
        assert result.history[1].candidate_status_after == CandidateStatus.IN_PROCESS

        documents = session.execute(
            select(DocumentChecklistItem.document_name).where(
                DocumentChecklistItem.application_id == new_application.id
            )
        ).scalars().all()
        assert set(documents) == {
            "Relinquish Letter",
            "Commitment Letter",
            "Transfer of Sponsorship",
            "Certificate of Deposit",
            "Relinquish Letter from Previous Client",
            "Commitment Letter from New Client",
            "Certificate of Deposit from New Client",
        }

        payload = result.history[1].financial_impact
        assert payload["new_application_id"] == str(new_application.id)
        assert payload["new_client_id"] == str(new_client.id)

    def test_reassignment_before_permits_skips_transfer_steps(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        make_client,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.WORKER_ARRIVED, exact_arrival_date=RECENT_ARRIVAL)
        new_client = make_client("New Household")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(
                application.id, T.POST_ARRIVAL_WITHIN_3_MONTHS, new_client_id=new_client.id
            ),
            test_actor_id,
            seeded_tenant,
        )

        documents = session.execute(
            select(DocumentChecklistItem.document_name).where(
                DocumentChecklistItem.application_id == result.reassignment_application.id
            )
        ).scalars().all()
        assert "Relinquish Letter from Previous Client" not in documents

    def test_reassignment_to_unknown_client_rolls_back(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)

        with pytest.raises(ClientNotFoundError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(
                    application.id, T.POST_ARRIVAL_AFTER_3_MONTHS, new_client_id=uuid4()
                ),
                test_actor_id,
                seeded_tenant,
            )

        session.refresh(application)
        assert application.status == S.ACTIVE_EMPLOYMENT.value

    def test_reassignment_blocked_by_other_open_application(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        make_client,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)
        # A stray open application for the same candidate.
        make_application(S.PENDING_AUTHORIZATION, candidate=session.get(Candidate, application.candidate_id))

        with pytest.raises(ActiveApplicationExistsError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(
                    application.id,
                    T.POST_ARRIVAL_AFTER_3_MONTHS,
                    new_client_id=make_client("Other").id,
                ),
                test_actor_id,
                seeded_tenant,
            )


class TestCandidateCancellation:
    def test_office_absorbs_costs_and_refunds_client(
        self,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(
            S.ACTIVE_EMPLOYMENT, exact_arrival_date=RECENT_ARRIVAL, fee_template=standard_template
        )
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.CANDIDATE_CANCELLATION, reason="Homesick"),
            test_actor_id,
            seeded_tenant,
        )

        assert result.application.status == S.CANCELLED_BY_CANDIDATE
        assert result.refund.final_refund == Decimal("1600.00")
        assert result.message == (
            "Application cancelled by candidate. All costs absorbed by office."
            " Refund of $1600.00 issued to client."
        )

    def test_departed_candidate_gets_no_refund(
        self,
        session,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(
            S.ACTIVE_EMPLOYMENT, exact_arrival_date=RECENT_ARRIVAL, fee_template=standard_template
        )
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.CANDIDATE_CANCELLATION, candidate_departed=True),
            test_actor_id,
            seeded_tenant,
        )

        assert result.refund.calculated_refund == Decimal("1600.00")
        assert result.refund.final_refund == Decimal("0.00")
        assert "Candidate departed: no refund" in result.refund.description
        assert result.refund_payment is None
        assert len(_payments(session, application.id)) == 1
        assert result.message == "Application cancelled by candidate. All costs absorbed by office."


class TestAuditTrail:
    def test_one_status_change_then_one_cancellation(
        self,
        cancellation_orchestrator,
        history_selector,
        make_application,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.VISA_PROCESSING)

        cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT, reason="Budget"),
            test_actor_id,
            seeded_tenant,
        )

        page = history_selector.for_application(seeded_tenant, application.id)
        actions = [entry.action for entry in page.entries]
        assert actions == [LifecycleAction.CANCELLATION, LifecycleAction.STATUS_CHANGE]

        cancellation_entry, status_entry = page.entries
        assert status_entry.sequence < cancellation_entry.sequence
        assert status_entry.notes == "Pre-arrival cancellation: Budget"
        assert status_entry.from_status == S.VISA_PROCESSING
        assert status_entry.to_status == S.CANCELLED_PRE_ARRIVAL
        assert all(entry.performed_by == test_actor_id for entry in page.entries)

    def test_cancellation_payload_carries_refund_breakdown(
        self,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
        test_actor_id,
    ):
        application = make_application(S.VISA_PROCESSING, fee_template=standard_template)
        add_payment(application, "2500")

        result = cancellation_orchestrator.process_cancellation(
            CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT, reason="Budget"),
            test_actor_id,
            seeded_tenant,
        )

        payload = result.history[1].financial_impact
        assert payload["refund_amount"] == "1400.00"
        assert payload["policy_name"] == "Client cancellation before arrival"
        assert payload["refund"]["final_refund"] == "1400.00"
        assert payload["financial_impact"]["penalty_fee"] == "200.00"
        assert payload["candidate_in_lebanon"] is False


class TestRejections:
    def test_unknown_application(self, cancellation_orchestrator, seeded_tenant, test_actor_id):
        with pytest.raises(ApplicationNotFoundError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(uuid4(), T.PRE_ARRIVAL_CLIENT), test_actor_id, seeded_tenant
            )

    def test_other_tenant_cannot_cancel(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.VISA_PROCESSING)
        with pytest.raises(ApplicationNotFoundError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT), test_actor_id, uuid4()
            )

    def test_pre_arrival_type_after_arrival_is_invalid(
        self, session, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.WORKER_ARRIVED, exact_arrival_date=RECENT_ARRIVAL)

        with pytest.raises(InvalidTransitionError) as exc_info:
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT),
                test_actor_id,
                seeded_tenant,
            )

        assert exc_info.value.to_status == "CANCELLED_PRE_ARRIVAL"
        session.refresh(application)
        assert application.status == S.WORKER_ARRIVED.value

    def test_renewal_pending_cannot_be_cancelled(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.RENEWAL_PENDING, exact_arrival_date=EARLY_ARRIVAL)
        with pytest.raises(InvalidTransitionError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(application.id, T.CANDIDATE_CANCELLATION),
                test_actor_id,
                seeded_tenant,
            )

    def test_reassignment_and_deportation_are_exclusive(
        self, cancellation_orchestrator, make_application, make_client, seeded_tenant, test_actor_id
    ):
        application = make_application(S.WORKER_ARRIVED, exact_arrival_date=RECENT_ARRIVAL)
        with pytest.raises(ValidationError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(
                    application.id,
                    T.POST_ARRIVAL_WITHIN_3_MONTHS,
                    new_client_id=make_client().id,
                    deport_candidate=True,
                ),
                test_actor_id,
                seeded_tenant,
            )

    def test_deportation_only_after_arrival(
        self, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.VISA_PROCESSING)
        with pytest.raises(ValidationError, match="Deportation"):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT, deport_candidate=True),
                test_actor_id,
                seeded_tenant,
            )

    def test_reassignment_to_current_client_rejected(
        self, session, cancellation_orchestrator, make_application, seeded_tenant, test_actor_id
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)

        with pytest.raises(ValidationError) as exc_info:
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(
                    application.id,
                    T.POST_ARRIVAL_AFTER_3_MONTHS,
                    new_client_id=application.client_id,
                ),
                test_actor_id,
                seeded_tenant,
            )

        assert exc_info.value.field == "new_client_id"
        session.refresh(application)
        assert application.status == S.ACTIVE_EMPLOYMENT.value
        transfers = session.execute(
            select(Application).where(
                Application.candidate_id == application.candidate_id,
                Application.application_type == ApplicationType.GUARANTOR_CHANGE.value,
            )
        ).scalars().all()
        assert transfers == []

    def test_missing_policy_fails_closed(
        self, session, cancellation_orchestrator, make_application, add_payment, test_actor_id, tenant_id
    ):
        application = make_application(S.VISA_PROCESSING)
        add_payment(application, "1000")

        with pytest.raises(PolicyMissingError) as exc_info:
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT),
                test_actor_id,
                tenant_id,
            )

        assert exc_info.value.policy_key == "pre_arrival_client"
        session.refresh(application)
        assert application.status == S.VISA_PROCESSING.value
        assert len(_payments(session, application.id)) == 1

    def test_failure_is_logged(
        self, captured_logs, cancellation_orchestrator, make_application, test_actor_id, tenant_id
    ):
        application = make_application(S.VISA_PROCESSING)

        with pytest.raises(PolicyMissingError):
            cancellation_orchestrator.process_cancellation(
                CancellationRequest(application.id, T.PRE_ARRIVAL_CLIENT),
                test_actor_id,
                tenant_id,
            )

        failed = [r for r in captured_logs() if r["message"] == "orchestration_failed"]
        assert len(failed) == 1
        assert failed[0]["operation"] == "process_cancellation"
        assert failed[0]["exc_code"] == "POLICY_MISSING"


class TestCancellationOptions:
    def test_pre_arrival_options_with_estimate(
        self,
        cancellation_orchestrator,
        make_application,
        add_payment,
        standard_template,
        seeded_tenant,
    ):
        application = make_application(S.VISA_PROCESSING, fee_template=standard_template)
        add_payment(application, "2500")

        options = cancellation_orchestrator.get_available_cancellation_options(
            application.id, seeded_tenant
        )

        assert options.can_cancel
        assert options.available_types == (T.PRE_ARRIVAL_CLIENT, T.PRE_ARRIVAL_CANDIDATE)
        assert options.warnings == ()
        assert options.refund_estimate.final_refund == Decimal("1400.00")

    def test_active_employment_outside_probation(
        self, cancellation_orchestrator, make_application, seeded_tenant
    ):
        application = make_application(S.ACTIVE_EMPLOYMENT, exact_arrival_date=EARLY_ARRIVAL)

        options = cancellation_orchestrator.get_available_cancellation_options(
            application.id, seeded_tenant
        )

        assert options.available_types == (T.POST_ARRIVAL_AFTER_3_MONTHS, T.CANDIDATE_CANCELLATION)
        assert options.warnings == (WARNING_ACTIVE_EMPLOYMENT, WARNING_OUTSIDE_PROBATION)

    def test_not_cancellable(self, cancellation_orchestrator, make_application, seeded_tenant):
        application = make_application(S.RENEWAL_PENDING)

        options = cancellation_orchestrator.get_available_cancellation_options(
            application.id, seeded_tenant
        )

        assert not options.can_cancel
        assert options.available_types == ()
        assert options.warnings == (WARNING_NOT_CANCELLABLE,)

    def test_estimate_omitted_without_policy(
        self, captured_logs, cancellation_orchestrator, make_application, tenant_id
    ):
        application = make_application(S.VISA_PROCESSING)

        options = cancellation_orchestrator.get_available_cancellation_options(
            application.id, tenant_id
        )

        assert options.can_cancel
        assert options.refund_estimate is None
        assert any(r["message"] == "refund_estimate_failed" for r in captured_logs())

    def test_options_write_nothing(
        self, session, cancellation_orchestrator, make_application, seeded_tenant
    ):
        application = make_application(S.VISA_PROCESSING)
        cancellation_orchestrator.get_available_cancellation_options(application.id, seeded_tenant)

        reloaded = session.get(Application, application.id)
        assert reloaded.status == S.VISA_PROCESSING.value
        assert reloaded.version == 1
