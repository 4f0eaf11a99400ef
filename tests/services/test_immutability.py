"""
Append-only enforcement for payments and lifecycle history rows.
"""

from decimal import Decimal

import pytest

from placement_kernel.domain.dtos import LifecycleAction
from placement_kernel.domain.lifecycle import ApplicationStatus
from placement_kernel.exceptions import ImmutabilityViolationError
from placement_kernel.models.lifecycle_history import ApplicationLifecycleHistory


@pytest.fixture
def application(make_application):
    return make_application(ApplicationStatus.VISA_PROCESSING)


class TestPaymentImmutability:
    def test_update_rejected(self, session, application, add_payment):
        payment = add_payment(application, "500")

        payment.amount = Decimal("5000")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Payment"
        assert exc_info.value.entity_id == str(payment.id)
        session.rollback()

    def test_delete_rejected(self, session, application, add_payment):
        payment = add_payment(application, "500")

        session.delete(payment)
        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            session.flush()
        session.rollback()


class TestHistoryImmutability:
    @pytest.fixture
    def history_row(self, session, lifecycle_recorder, application, test_actor_id):
        entry = lifecycle_recorder.record(
            application.id,
            LifecycleAction.STATUS_CHANGE,
            test_actor_id,
            application.tenant_id,
            to_status=ApplicationStatus.VISA_RECEIVED,
        )
        session.commit()
        return session.get(ApplicationLifecycleHistory, entry.id)

    def test_update_rejected(self, session, history_row):
        history_row.notes = "rewritten"
        with pytest.raises(ImmutabilityViolationError, match="cannot be updated"):
            session.flush()
        session.rollback()

    def test_delete_rejected(self, session, history_row):
        session.delete(history_row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
