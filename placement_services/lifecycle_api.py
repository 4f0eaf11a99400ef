"""
LifecycleAPI -- the surface offered to the HTTP layer.

Responsibility:
    One method per lifecycle operation.  Each call opens its own session
    through ``session_scope()``, runs one orchestrator with
    ``auto_commit=False`` and commits or rolls back as a unit.  Callers
    receive frozen DTOs; ORM objects never leave this module.

Architecture position:
    Services -- outermost layer of this package.  Routing, authentication
    and request parsing belong to the caller, which supplies the actor id
    and tenant id of every call.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from placement_kernel.db.engine import session_scope
from placement_kernel.domain.clock import Clock, SystemClock
from placement_kernel.domain.dtos import ApplicationInfo, GuarantorChangeInfo, HistoryPage
from placement_kernel.domain.lifecycle import ApplicationStatus
from placement_kernel.exceptions import ValidationError
from placement_kernel.logging_config import LogContext, get_logger
from placement_kernel.selectors.lifecycle_history_selector import (
    HistoryFilter,
    LifecycleHistorySelector,
)
from placement_services.application_service import ApplicationService, NewApplicationRequest
from placement_services.cancellation_orchestrator import (
    CancellationOptions,
    CancellationOrchestrator,
    CancellationRequest,
    CancellationResult,
)
from placement_services.guarantor_change_orchestrator import (
    GuarantorChangeFinalization,
    GuarantorChangeOrchestrator,
    GuarantorChangeRequest,
    GuarantorChangeResult,
)

logger = get_logger("services.lifecycle_api")


class LifecycleAPI:
    """
    Transaction-per-call facade over the placement services.

    Args:
        session_factory: Builds the session for each call.  Defaults to
            the engine's session factory.
        clock: Injected into every orchestrator.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _scope(self):
        return session_scope(self._session_factory)

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    def create_application(
        self,
        request: NewApplicationRequest,
        actor_id: UUID,
        tenant_id: UUID,
    ) -> ApplicationInfo:
        with self._scope() as session:
            service = ApplicationService(session, self._clock, auto_commit=False)
            return service.create_application(request, actor_id, tenant_id)

    def transition(
        self,
        application_id: UUID,
        to_status: ApplicationStatus | str,
        actor_id: UUID,
        tenant_id: UUID,
        exact_arrival_date: date | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ApplicationInfo:
        with self._scope() as session:
            service = ApplicationService(session, self._clock, auto_commit=False)
            return service.transition(
                application_id,
                to_status,
                actor_id,
                tenant_id,
                exact_arrival_date=exact_arrival_date,
                notes=notes,
                expected_version=expected_version,
            )

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancellation_options(self, application_id: UUID, tenant_id: UUID) -> CancellationOptions:
        with self._scope() as session:
            orchestrator = CancellationOrchestrator(session, self._clock, auto_commit=False)
            return orchestrator.get_available_cancellation_options(application_id, tenant_id)

    def cancel(
        self,
        request: CancellationRequest,
        actor_id: UUID,
        tenant_id: UUID,
    ) -> CancellationResult:
        with self._scope() as session:
            orchestrator = CancellationOrchestrator(session, self._clock, auto_commit=False)
            return orchestrator.process_cancellation(request, actor_id, tenant_id)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def history(
        self,
        tenant_id: UUID,
        application_id: UUID | None = None,
        candidate_id: UUID | None = None,
        client_id: UUID | None = None,
        filters: HistoryFilter | None = None,
    ) -> HistoryPage:
        """
        History of one application, candidate or client, newest first.

        Raises:
            ValidationError: Not exactly one of the three ids was given.
        """
        targets = [t for t in (application_id, candidate_id, client_id) if t is not None]
        if len(targets) != 1:
            raise ValidationError(
                "Exactly one of application_id, candidate_id or client_id is required"
            )
        criteria = replace(
            filters or HistoryFilter(),
            application_id=application_id,
            candidate_id=candidate_id,
            client_id=client_id,
        )
        with LogContext.bind(tenant_id=tenant_id), self._scope() as session:
            page = LifecycleHistorySelector(session).query(tenant_id, criteria)
        logger.debug("history_read", extra={"total": page.total, "returned": len(page.entries)})
        return page

    # -------------------------------------------------------------------------
    # Guarantor change
    # -------------------------------------------------------------------------

    def initiate_guarantor_change(
        self,
        request: GuarantorChangeRequest,
        actor_id: UUID,
        tenant_id: UUID,
    ) -> GuarantorChangeResult:
        with self._scope() as session:
            orchestrator = GuarantorChangeOrchestrator(session, self._clock, auto_commit=False)
            return orchestrator.initiate_guarantor_change(request, actor_id, tenant_id)

    def finalize_guarantor_change(
        self,
        change_id: UUID,
        actor_id: UUID,
        tenant_id: UUID,
        fee_template_id: UUID | None = None,
        broker_id: UUID | None = None,
    ) -> GuarantorChangeFinalization:
        with self._scope() as session:
            orchestrator = GuarantorChangeOrchestrator(session, self._clock, auto_commit=False)
            return orchestrator.finalize_guarantor_change(
                change_id, actor_id, tenant_id, fee_template_id, broker_id
            )

    def process_guarantor_change_refund(
        self,
        change_id: UUID,
        actor_id: UUID,
        tenant_id: UUID,
    ) -> GuarantorChangeInfo:
        with self._scope() as session:
            orchestrator = GuarantorChangeOrchestrator(session, self._clock, auto_commit=False)
            return orchestrator.process_guarantor_change_refund(change_id, actor_id, tenant_id)
