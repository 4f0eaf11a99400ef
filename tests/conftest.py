"""
Pytest fixtures for the placement kernel test suite.

Provides:
- A database engine created once per session (tables built once)
- Per-test sessions isolated by an outer transaction that is rolled back
- A deterministic clock, a seeded tenant and factories for parties,
  applications, fee templates and payments
- Structured log capture

Environment Variables:
- DATABASE_URL: connection URL.  Defaults to in-memory SQLite, which is
  enough for everything except real multi-connection lock contention.
"""

import json
import logging
import os
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from placement_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from placement_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from placement_kernel.domain.clock import DeterministicClock
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    ApplicationType,
    CandidateStatus,
)
from placement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from placement_kernel.models.application import Application
from placement_kernel.models.fee_template import FeeComponent, FeeTemplate
from placement_kernel.models.ledger import Payment
from placement_kernel.models.party import Candidate, Client
from placement_kernel.selectors.lifecycle_history_selector import LifecycleHistorySelector
from placement_kernel.services.lifecycle_recorder import LifecycleRecorder
from placement_kernel.services.policy_store import PolicyStore
from placement_services import (
    ApplicationService,
    CancellationOrchestrator,
    GuarantorChangeOrchestrator,
    LifecycleAPI,
    seed_tenant_policies,
)

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

STANDARD_TEMPLATE = "Standard Package - Philippines"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: mark test as exercising optimistic locking"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture placement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, cancellation_orchestrator):
            cancellation_orchestrator.process_cancellation(...)
            logs = captured_logs()
            assert any(r["message"] == "application_cancelled" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("placement_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture
def db_connection(db_tables, db_engine):
    """Dedicated connection holding the outer transaction of one test."""
    conn = db_engine.connect()
    trans = conn.begin()
    yield conn
    try:
        trans.rollback()
    finally:
        conn.close()


@pytest.fixture
def session(db_connection) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins the outer transaction of ``db_connection``; any
    ``session.commit()`` inside the test releases a savepoint and the whole
    test is undone at teardown.
    """
    sess = Session(
        bind=db_connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    yield sess
    sess.close()


@pytest.fixture
def session_factory(db_connection):
    """Factory for extra sessions on the test connection (LifecycleAPI tests)."""

    def _factory() -> Session:
        return Session(
            bind=db_connection,
            join_transaction_mode="create_savepoint",
            expire_on_commit=False,
        )

    return _factory


# =============================================================================
# Identity and time
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


# =============================================================================
# Tenant policy
# =============================================================================


@pytest.fixture
def seeded_tenant(session, tenant_id, test_actor_id) -> UUID:
    """Tenant with the packaged default policy set, committed to the test savepoint."""
    seed_tenant_policies(session, tenant_id, test_actor_id)
    session.commit()
    return tenant_id


@pytest.fixture
def standard_template(session, seeded_tenant) -> FeeTemplate:
    return PolicyStore(session).find_fee_template_by_name(seeded_tenant, STANDARD_TEMPLATE)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_client(session, tenant_id, test_actor_id):
    def _make(name: str = "Client Household", tenant: UUID | None = None) -> Client:
        client = Client(
            tenant_id=tenant or tenant_id,
            name=name,
            phone="+961 1 000000",
            created_by_id=test_actor_id,
        )
        session.add(client)
        session.commit()
        return client

    return _make


@pytest.fixture
def make_candidate(session, tenant_id, test_actor_id):
    def _make(
        status: CandidateStatus = CandidateStatus.AVAILABLE_ABROAD,
        nationality: str | None = "Philippines",
        tenant: UUID | None = None,
    ) -> Candidate:
        candidate = Candidate(
            tenant_id=tenant or tenant_id,
            first_name="Maria",
            last_name="Santos",
            nationality=nationality,
            status=CandidateStatus(status).value,
            created_by_id=test_actor_id,
        )
        session.add(candidate)
        session.commit()
        return candidate

    return _make


@pytest.fixture
def make_fee_template(session, tenant_id, test_actor_id):
    """Create a template from ``(name, amount, is_refundable, refundable_after_arrival)`` tuples."""

    def _make(
        name: str,
        components: list[tuple[str, str, bool, bool]],
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        nationality: str | None = None,
    ) -> FeeTemplate:
        total = sum((Decimal(amount) for _, amount, _, _ in components), Decimal("0"))
        template = FeeTemplate(
            tenant_id=tenant_id,
            name=name,
            default_price=total,
            min_price=min_price,
            max_price=max_price,
            currency="USD",
            nationality=nationality,
            created_by_id=test_actor_id,
        )
        template.components = [
            FeeComponent(
                name=component,
                amount=Decimal(amount),
                is_refundable=is_refundable,
                refundable_after_arrival=after_arrival,
                display_order=order,
                created_by_id=test_actor_id,
            )
            for order, (component, amount, is_refundable, after_arrival) in enumerate(
                components, start=1
            )
        ]
        session.add(template)
        session.commit()
        return template

    return _make


@pytest.fixture
def make_application(session, tenant_id, test_actor_id, make_client, make_candidate):
    """Insert an application directly in the given status.

    The candidate status follows the lifecycle unless given explicitly.
    """

    def _make(
        status: ApplicationStatus = ApplicationStatus.PENDING_AUTHORIZATION,
        exact_arrival_date: date | None = None,
        fee_template: FeeTemplate | None = None,
        candidate_status: CandidateStatus | None = None,
        client: Client | None = None,
        candidate: Candidate | None = None,
        application_type: ApplicationType = ApplicationType.NEW_CANDIDATE,
    ) -> Application:
        status = ApplicationStatus(status)
        if candidate_status is None:
            if status in (
                ApplicationStatus.ACTIVE_EMPLOYMENT,
                ApplicationStatus.RENEWAL_PENDING,
            ):
                candidate_status = CandidateStatus.PLACED
            elif status == ApplicationStatus.CONTRACT_ENDED:
                candidate_status = CandidateStatus.AVAILABLE_IN_LEBANON
            else:
                candidate_status = CandidateStatus.IN_PROCESS
        client = client or make_client()
        candidate = candidate or make_candidate(status=candidate_status)
        application = Application(
            tenant_id=tenant_id,
            status=status.value,
            application_type=ApplicationType(application_type).value,
            client_id=client.id,
            candidate_id=candidate.id,
            fee_template_id=fee_template.id if fee_template is not None else None,
            final_fee_amount=fee_template.default_price if fee_template is not None else Decimal("0"),
            currency="USD",
            exact_arrival_date=exact_arrival_date,
            created_by_id=test_actor_id,
        )
        session.add(application)
        session.commit()
        return application

    return _make


@pytest.fixture
def add_payment(session, test_actor_id, deterministic_clock):
    def _add(
        application: Application,
        amount: str | Decimal,
        payment_type: str = "APPLICATION_FEE",
        payment_date: datetime | None = None,
    ) -> Payment:
        payment = Payment(
            tenant_id=application.tenant_id,
            application_id=application.id,
            client_id=application.client_id,
            amount=Decimal(amount),
            currency=application.currency,
            payment_type=payment_type,
            is_refundable=True,
            payment_date=payment_date or deterministic_clock.now(),
            created_by_id=test_actor_id,
        )
        session.add(payment)
        session.commit()
        return payment

    return _add


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def application_service(session, deterministic_clock) -> ApplicationService:
    return ApplicationService(session, deterministic_clock)


@pytest.fixture
def cancellation_orchestrator(session, deterministic_clock) -> CancellationOrchestrator:
    return CancellationOrchestrator(session, deterministic_clock)


@pytest.fixture
def guarantor_orchestrator(session, deterministic_clock) -> GuarantorChangeOrchestrator:
    return GuarantorChangeOrchestrator(session, deterministic_clock)


@pytest.fixture
def lifecycle_recorder(session, deterministic_clock) -> LifecycleRecorder:
    return LifecycleRecorder(session, deterministic_clock)


@pytest.fixture
def history_selector(session) -> LifecycleHistorySelector:
    return LifecycleHistorySelector(session)


@pytest.fixture
def lifecycle_api(session_factory, deterministic_clock) -> LifecycleAPI:
    return LifecycleAPI(session_factory=session_factory, clock=deterministic_clock)