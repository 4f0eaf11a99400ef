"""
LifecycleRecorder -- writer for the append-only application history.

Responsibility:
    Appends ApplicationLifecycleHistory rows with a fixed action
    vocabulary (status_change, cancellation, payment_added, cost_added,
    guarantor_change, document_status_change) and renders the standard
    notes for payment, cost and document events.

Architecture position:
    Kernel > Services.  Flushes within the caller's transaction; never
    commits.  Readers live in selectors/lifecycle_history_selector.py.

Invariants enforced:
    - Each row has exactly one actor (performed_by) and one tenant.
    - Each row references an existing application in the same tenant.
      A missing application is logged and the write skipped.
    - sequence increases by one per application, so rows written in the
      same instant keep their order.
    - Rows are never updated (db/immutability.py).

Failure modes:
    - ``record`` (strict path): database errors propagate and abort the
      caller's transaction.  Orchestrators use it for status_change and
      cancellation rows so the audit commits with the business change.
    - ``record_best_effort``: the write runs in a SAVEPOINT.  A database
      error rolls back the savepoint only, is logged, and the caller
      continues.

Audit relevance:
    This service is the only writer of application_lifecycle_history.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from placement_kernel.domain.clock import Clock, SystemClock
from placement_kernel.domain.documents import DocumentStatus
from placement_kernel.domain.dtos import LifecycleAction, LifecycleHistoryEntry
from placement_kernel.domain.lifecycle import ApplicationStatus, CandidateStatus
from placement_kernel.domain.refund import format_money
from placement_kernel.logging_config import get_logger
from placement_kernel.models.application import Application
from placement_kernel.models.lifecycle_history import ApplicationLifecycleHistory
from placement_kernel.services.base import BaseService

logger = get_logger("services.lifecycle_recorder")


def _value(member) -> str | None:
    if member is None:
        return None
    return member.value if hasattr(member, "value") else str(member)


class LifecycleRecorder(BaseService[ApplicationLifecycleHistory]):
    """Append-only writer for lifecycle history."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _next_sequence(self, application_id: UUID) -> int:
        count = self.session.execute(
            select(func.count())
            .select_from(ApplicationLifecycleHistory)
            .where(ApplicationLifecycleHistory.application_id == application_id)
        ).scalar_one()
        return int(count) + 1

    def record(
        self,
        application_id: UUID,
        action: LifecycleAction,
        performed_by: UUID,
        tenant_id: UUID,
        *,
        from_status: ApplicationStatus | None = None,
        to_status: ApplicationStatus | None = None,
        from_client_id: UUID | None = None,
        to_client_id: UUID | None = None,
        candidate_status_before: CandidateStatus | None = None,
        candidate_status_after: CandidateStatus | None = None,
        financial_impact: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> LifecycleHistoryEntry | None:
        """
        Append one history row and flush.

        Returns:
            The written entry, or None when the application does not exist
            in the tenant.
        """
        application = self.session.get(Application, application_id)
        if application is None or application.tenant_id != tenant_id:
            logger.warning(
                "lifecycle_history_skipped_missing_application",
                extra={
                    "application_id": str(application_id),
                    "tenant_id": str(tenant_id),
                    "action": LifecycleAction(action).value,
                },
            )
            return None

        row = ApplicationLifecycleHistory(
            tenant_id=tenant_id,
            application_id=application_id,
            action=LifecycleAction(action).value,
            sequence=self._next_sequence(application_id),
            from_status=_value(from_status),
            to_status=_value(to_status),
            from_client_id=from_client_id,
            to_client_id=to_client_id,
            candidate_status_before=_value(candidate_status_before),
            candidate_status_after=_value(candidate_status_after),
            financial_impact=financial_impact,
            notes=notes,
            performed_by=performed_by,
            performed_at=self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "lifecycle_history_recorded",
            extra={
                "application_id": str(application_id),
                "action": row.action,
                "sequence": row.sequence,
                "from_status": row.from_status,
                "to_status": row.to_status,
            },
        )
        return row.to_dto()

    def record_best_effort(
        self,
        application_id: UUID,
        action: LifecycleAction,
        performed_by: UUID,
        tenant_id: UUID,
        **fields: Any,
    ) -> LifecycleHistoryEntry | None:
        """Like ``record`` but a database failure only loses the audit row."""
        savepoint = self.session.begin_nested()
        try:
            entry = self.record(application_id, action, performed_by, tenant_id, **fields)
            savepoint.commit()
            return entry
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.error(
                "lifecycle_history_write_failed",
                extra={
                    "application_id": str(application_id),
                    "action": LifecycleAction(action).value,
                    "error": str(exc),
                },
            )
            return None

    # -------------------------------------------------------------------------
    # Convenience writers
    # -------------------------------------------------------------------------

    def record_payment_added(
        self,
        application_id: UUID,
        tenant_id: UUID,
        performed_by: UUID,
        amount: Decimal,
        payment_type: str,
        notes: str | None = None,
    ) -> LifecycleHistoryEntry | None:
        message = f"Payment added: {format_money(amount)} ({payment_type})"
        if notes:
            message += f" - {notes}"
        return self.record_best_effort(
            application_id,
            LifecycleAction.PAYMENT_ADDED,
            performed_by,
            tenant_id,
            financial_impact={"amount": str(amount), "payment_type": payment_type},
            notes=message,
        )

    def record_cost_added(
        self,
        application_id: UUID,
        tenant_id: UUID,
        performed_by: UUID,
        amount: Decimal,
        cost_type: str,
        description: str | None = None,
    ) -> LifecycleHistoryEntry | None:
        message = f"Cost added: {format_money(amount)} ({cost_type})"
        if description:
            message += f" - {description}"
        return self.record_best_effort(
            application_id,
            LifecycleAction.COST_ADDED,
            performed_by,
            tenant_id,
            financial_impact={"amount": str(amount), "cost_type": cost_type},
            notes=message,
        )

    def record_guarantor_change(
        self,
        application_id: UUID,
        tenant_id: UUID,
        performed_by: UUID,
        from_client_id: UUID,
        to_client_id: UUID,
        candidate_status_before: CandidateStatus,
        candidate_status_after: CandidateStatus,
        financial_impact: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> LifecycleHistoryEntry | None:
        return self.record(
            application_id,
            LifecycleAction.GUARANTOR_CHANGE,
            performed_by,
            tenant_id,
            from_client_id=from_client_id,
            to_client_id=to_client_id,
            candidate_status_before=candidate_status_before,
            candidate_status_after=candidate_status_after,
            financial_impact=financial_impact,
            notes=notes,
        )

    def record_document_status_change(
        self,
        application_id: UUID,
        tenant_id: UUID,
        performed_by: UUID,
        document_name: str,
        old_status: DocumentStatus,
        new_status: DocumentStatus,
    ) -> LifecycleHistoryEntry | None:
        return self.record_best_effort(
            application_id,
            LifecycleAction.DOCUMENT_STATUS_CHANGE,
            performed_by,
            tenant_id,
            notes=(
                f'Document "{document_name}" status changed from '
                f"{DocumentStatus(old_status).value} to {DocumentStatus(new_status).value}"
            ),
        )
