"""
Shared plumbing for the placement orchestrators.

Every orchestrator loads applications row-locked, owns its transaction
boundary (``auto_commit=True``) or joins the caller's (``auto_commit=False``),
translates optimistic-lock failures into ConflictError, and seeds document
checklists.  These helpers keep that behaviour identical across the
application, cancellation and guarantor-change services.
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from placement_kernel.domain.clock import Clock, SystemClock
from placement_kernel.domain.documents import DocumentStatus, RequiredFrom
from placement_kernel.domain.dtos import LifecycleAction
from placement_kernel.domain.lifecycle import (
    ApplicationStatus,
    ApplicationType,
    CandidateStatus,
    TERMINAL_STATES,
)
from placement_kernel.exceptions import (
    ActiveApplicationExistsError,
    ApplicationNotFoundError,
    CandidateNotFoundError,
    ClientNotFoundError,
    ConflictError,
)
from placement_kernel.logging_config import LogContext, get_logger
from placement_kernel.models.application import Application
from placement_kernel.models.document import DocumentChecklistItem
from placement_kernel.models.fee_template import FeeTemplate
from placement_kernel.models.ledger import Cost
from placement_kernel.models.party import Candidate, Client
from placement_kernel.services.lifecycle_recorder import LifecycleRecorder
from placement_kernel.services.policy_store import PolicyStore

logger = get_logger("services.orchestration")


class OrchestratorBase:
    """
    Common constructor and transaction handling.

    Transaction boundary: with ``auto_commit=True`` the orchestrator
    commits on success and rolls back on failure.  With
    ``auto_commit=False`` it only flushes; the caller (``session_scope()``
    or an enclosing orchestrator) owns commit/rollback.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._policies = PolicyStore(session)
        self._recorder = LifecycleRecorder(session, self._clock)

    # -------------------------------------------------------------------------
    # Transaction boundary
    # -------------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        tenant_id: UUID,
        actor_id: UUID | None = None,
        application_id: UUID | None = None,
    ) -> Iterator[None]:
        t0 = time.monotonic()
        with LogContext.bind(
            operation=operation,
            tenant_id=tenant_id,
            actor_id=actor_id,
            application_id=application_id,
        ):
            try:
                yield
                self._session.flush()
                if self._auto_commit:
                    self._session.commit()
            except StaleDataError as exc:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "concurrent_modification_detected",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise ConflictError("Application", application_id) from exc
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    "orchestration_failed",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise

            logger.info(
                "orchestration_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )

    # -------------------------------------------------------------------------
    # Loaders
    # -------------------------------------------------------------------------

    def _load_application(
        self,
        tenant_id: UUID,
        application_id: UUID,
        for_update: bool = True,
    ) -> Application:
        """
        Load an application in the tenant, row-locked by default.

        Raises:
            ApplicationNotFoundError: Missing or owned by another tenant.
        """
        stmt = select(Application).where(
            Application.id == application_id,
            Application.tenant_id == tenant_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        application = self._session.execute(stmt).scalar_one_or_none()
        if application is None:
            raise ApplicationNotFoundError(application_id)
        return application

    @staticmethod
    def _check_version(application: Application, expected_version: int | None) -> None:
        if expected_version is not None and application.version != expected_version:
            raise ConflictError(
                "Application",
                application.id,
                expected_version=expected_version,
                actual_version=application.version,
            )

    def _load_candidate(self, tenant_id: UUID, candidate_id: UUID, for_update: bool = True) -> Candidate:
        stmt = select(Candidate).where(
            Candidate.id == candidate_id,
            Candidate.tenant_id == tenant_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        candidate = self._session.execute(stmt).scalar_one_or_none()
        if candidate is None:
            raise CandidateNotFoundError(candidate_id)
        return candidate

    def _load_client(self, tenant_id: UUID, client_id: UUID) -> Client:
        client = self._session.execute(
            select(Client).where(Client.id == client_id, Client.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if client is None:
            raise ClientNotFoundError(client_id)
        return client

    def _ensure_no_open_application(
        self,
        tenant_id: UUID,
        candidate_id: UUID,
        exclude: Sequence[UUID] = (),
    ) -> None:
        """One non-terminal application per candidate."""
        stmt = select(Application.id).where(
            Application.tenant_id == tenant_id,
            Application.candidate_id == candidate_id,
            Application.status.not_in([s.value for s in TERMINAL_STATES]),
        )
        if exclude:
            stmt = stmt.where(Application.id.not_in(list(exclude)))
        existing = self._session.execute(stmt.limit(1)).scalar_one_or_none()
        if existing is not None:
            raise ActiveApplicationExistsError(candidate_id, existing)

    def _total_costs(self, application_id: UUID) -> Decimal:
        total = self._session.execute(
            select(func.coalesce(func.sum(Cost.amount), 0)).where(
                Cost.application_id == application_id
            )
        ).scalar_one()
        return Decimal(total)

    # -------------------------------------------------------------------------
    # Document checklist
    # -------------------------------------------------------------------------

    def _seed_checklist(
        self,
        application: Application,
        stage: ApplicationStatus,
        actor_id: UUID,
        extra_documents: Sequence[str] = (),
    ) -> int:
        """
        Add checklist items for ``stage`` from the tenant's templates, then
        ``extra_documents`` (office-provided, ordered after the templates).
        Names already on the checklist are skipped.

        Returns:
            Number of items added.
        """
        existing = set(
            self._session.execute(
                select(DocumentChecklistItem.document_name).where(
                    DocumentChecklistItem.application_id == application.id
                )
            ).scalars().all()
        )
        templates = self._policies.document_templates_for_stage(
            application.tenant_id, stage, ApplicationType(application.application_type)
        )
        added = 0
        for template in templates:
            if template.name in existing:
                continue
            self._session.add(
                DocumentChecklistItem(
                    application_id=application.id,
                    document_name=template.name,
                    status=DocumentStatus.PENDING.value,
                    stage=ApplicationStatus(stage).value,
                    required=template.required,
                    required_from=template.required_from,
                    display_order=template.display_order,
                    created_by_id=actor_id,
                )
            )
            existing.add(template.name)
            added += 1

        for index, name in enumerate(extra_documents, start=1):
            if name in existing:
                continue
            self._session.add(
                DocumentChecklistItem(
                    application_id=application.id,
                    document_name=name,
                    status=DocumentStatus.PENDING.value,
                    stage=ApplicationStatus(stage).value,
                    required=True,
                    required_from=RequiredFrom.OFFICE.value,
                    display_order=len(templates) + index,
                    created_by_id=actor_id,
                )
            )
            existing.add(name)
            added += 1

        if added:
            self._session.flush()
        logger.debug(
            "checklist_seeded",
            extra={"stage": ApplicationStatus(stage).value, "items_added": added},
        )
        return added

    # -------------------------------------------------------------------------
    # Guarantor-change applications
    # -------------------------------------------------------------------------

    def _create_guarantor_change_application(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        candidate: Candidate,
        from_client_id: UUID,
        to_client_id: UUID,
        transfer_documents: Sequence[str],
        notes: str,
        fee_template: FeeTemplate | None = None,
        broker_id: UUID | None = None,
        financial_impact: dict | None = None,
    ) -> Application:
        """
        Create the follow-on application for a candidate moving sponsor.

        The fee template, when not given, is resolved for a
        GUARANTOR_CHANGE placement of an in-country candidate.
        """
        if fee_template is None:
            fee_template = self._policies.resolve_fee_template(
                tenant_id,
                ApplicationType.GUARANTOR_CHANGE,
                nationality=candidate.nationality,
                candidate_status=CandidateStatus.AVAILABLE_IN_LEBANON,
            )

        application = Application(
            tenant_id=tenant_id,
            status=ApplicationStatus.PENDING_AUTHORIZATION.value,
            application_type=ApplicationType.GUARANTOR_CHANGE.value,
            client_id=to_client_id,
            from_client_id=from_client_id,
            candidate_id=candidate.id,
            broker_id=broker_id,
            fee_template_id=fee_template.id if fee_template else None,
            final_fee_amount=fee_template.default_price if fee_template else Decimal("0"),
            currency=fee_template.currency if fee_template else "USD",
            created_by_id=actor_id,
        )
        self._session.add(application)
        self._session.flush()

        self._seed_checklist(
            application,
            ApplicationStatus.PENDING_AUTHORIZATION,
            actor_id,
            extra_documents=transfer_documents,
        )

        self._recorder.record(
            application.id,
            LifecycleAction.STATUS_CHANGE,
            actor_id,
            tenant_id,
            to_status=ApplicationStatus.PENDING_AUTHORIZATION,
            from_client_id=from_client_id,
            to_client_id=to_client_id,
            candidate_status_after=CandidateStatus(candidate.status),
            financial_impact=financial_impact,
            notes=notes,
        )

        logger.info(
            "guarantor_change_application_created",
            extra={
                "new_application_id": str(application.id),
                "from_client_id": str(from_client_id),
                "to_client_id": str(to_client_id),
                "fee_template": fee_template.name if fee_template else None,
                "transfer_documents": len(transfer_documents),
            },
        )
        return application
