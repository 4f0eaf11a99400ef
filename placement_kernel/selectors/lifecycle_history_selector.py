"""
Module: placement_kernel.selectors.lifecycle_history_selector
Responsibility: Read-only queries over application_lifecycle_history:
    per application, per candidate, per client, filtered search, summaries,
    the tenant activity timeline and tenant statistics.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Read-only.
    - Newest first: ORDER BY performed_at DESC, sequence DESC.  Rows of one
      cancellation share performed_at; sequence keeps cancellation above
      its status_change.
    - Every query is scoped to one tenant.

Failure modes:
    - Returns empty pages when nothing matches; never raises on absence.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from placement_kernel.db.base import as_utc
from placement_kernel.domain.dtos import HistoryPage, LifecycleAction, LifecycleHistoryEntry
from placement_kernel.models.application import Application
from placement_kernel.models.lifecycle_history import ApplicationLifecycleHistory
from placement_kernel.selectors.base import BaseSelector

APPLICATION_HISTORY_LIMIT = 50
CANDIDATE_HISTORY_LIMIT = 100
TIMELINE_LIMIT = 20
SUMMARY_RECENT = 10

H = ApplicationLifecycleHistory


@dataclass(frozen=True)
class HistoryFilter:
    """Criteria for ``LifecycleHistorySelector.query``.  None means "any"."""

    actions: tuple[LifecycleAction, ...] = ()
    performed_by: UUID | None = None
    performed_from: datetime | None = None
    performed_to: datetime | None = None
    application_id: UUID | None = None
    candidate_id: UUID | None = None
    client_id: UUID | None = None
    limit: int = APPLICATION_HISTORY_LIMIT
    offset: int = 0


@dataclass(frozen=True)
class HistorySummary:
    """Counts by action plus the most recent entries."""

    total: int
    counts_by_action: dict[str, int]
    recent: tuple[LifecycleHistoryEntry, ...]
    first_event_at: datetime | None = None
    last_event_at: datetime | None = None


@dataclass(frozen=True)
class HistoryStatistics:
    total: int
    by_action: dict[str, int] = field(default_factory=dict)
    by_actor: dict[str, int] = field(default_factory=dict)
    by_month: dict[str, int] = field(default_factory=dict)


class LifecycleHistorySelector(BaseSelector[ApplicationLifecycleHistory]):
    """Reads the lifecycle audit trail."""

    def __init__(self, session: Session):
        super().__init__(session)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _newest_first(stmt):
        return stmt.order_by(H.performed_at.desc(), H.sequence.desc())

    def _page(self, stmt, limit: int, offset: int) -> HistoryPage:
        total = self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        rows = self.session.execute(
            self._newest_first(stmt).limit(limit).offset(offset)
        ).scalars().all()
        return HistoryPage(
            entries=tuple(r.to_dto() for r in rows),
            total=int(total),
            limit=limit,
            offset=offset,
        )

    @staticmethod
    def _for_candidate(candidate_id: UUID):
        return H.application_id.in_(
            select(Application.id).where(Application.candidate_id == candidate_id)
        )

    @staticmethod
    def _for_client(client_id: UUID):
        sponsored = select(Application.id).where(
            or_(Application.client_id == client_id, Application.from_client_id == client_id)
        )
        return or_(
            H.application_id.in_(sponsored),
            H.from_client_id == client_id,
            H.to_client_id == client_id,
        )

    def _summary(self, condition) -> HistorySummary:
        counts = dict(
            self.session.execute(
                select(H.action, func.count()).where(condition).group_by(H.action)
            ).all()
        )
        bounds = self.session.execute(
            select(func.min(H.performed_at), func.max(H.performed_at)).where(condition)
        ).one()
        recent = self.session.execute(
            self._newest_first(select(H).where(condition)).limit(SUMMARY_RECENT)
        ).scalars().all()
        return HistorySummary(
            total=sum(counts.values()),
            counts_by_action={str(k): int(v) for k, v in counts.items()},
            recent=tuple(r.to_dto() for r in recent),
            first_event_at=as_utc(bounds[0]),
            last_event_at=as_utc(bounds[1]),
        )

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    def for_application(
        self,
        tenant_id: UUID,
        application_id: UUID,
        limit: int = APPLICATION_HISTORY_LIMIT,
        offset: int = 0,
    ) -> HistoryPage:
        stmt = select(H).where(H.tenant_id == tenant_id, H.application_id == application_id)
        return self._page(stmt, limit, offset)

    def for_candidate(
        self,
        tenant_id: UUID,
        candidate_id: UUID,
        limit: int = CANDIDATE_HISTORY_LIMIT,
        offset: int = 0,
    ) -> HistoryPage:
        """History across every application the candidate has had."""
        stmt = select(H).where(H.tenant_id == tenant_id, self._for_candidate(candidate_id))
        return self._page(stmt, limit, offset)

    def for_client(
        self,
        tenant_id: UUID,
        client_id: UUID,
        limit: int = CANDIDATE_HISTORY_LIMIT,
        offset: int = 0,
    ) -> HistoryPage:
        """History where the client is the current or a prior sponsor."""
        stmt = select(H).where(H.tenant_id == tenant_id, self._for_client(client_id))
        return self._page(stmt, limit, offset)

    def query(self, tenant_id: UUID, criteria: HistoryFilter) -> HistoryPage:
        stmt = select(H).where(H.tenant_id == tenant_id)
        if criteria.actions:
            stmt = stmt.where(H.action.in_([LifecycleAction(a).value for a in criteria.actions]))
        if criteria.performed_by is not None:
            stmt = stmt.where(H.performed_by == criteria.performed_by)
        if criteria.performed_from is not None:
            stmt = stmt.where(H.performed_at >= criteria.performed_from)
        if criteria.performed_to is not None:
            stmt = stmt.where(H.performed_at <= criteria.performed_to)
        if criteria.application_id is not None:
            stmt = stmt.where(H.application_id == criteria.application_id)
        if criteria.candidate_id is not None:
            stmt = stmt.where(self._for_candidate(criteria.candidate_id))
        if criteria.client_id is not None:
            stmt = stmt.where(self._for_client(criteria.client_id))
        return self._page(stmt, criteria.limit, criteria.offset)

    def application_summary(self, tenant_id: UUID, application_id: UUID) -> HistorySummary:
        return self._summary((H.tenant_id == tenant_id) & (H.application_id == application_id))

    def candidate_summary(self, tenant_id: UUID, candidate_id: UUID) -> HistorySummary:
        return self._summary((H.tenant_id == tenant_id) & self._for_candidate(candidate_id))

    def activity_timeline(
        self,
        tenant_id: UUID,
        limit: int = TIMELINE_LIMIT,
        since: datetime | None = None,
    ) -> tuple[LifecycleHistoryEntry, ...]:
        """Most recent events across the tenant."""
        stmt = select(H).where(H.tenant_id == tenant_id)
        if since is not None:
            stmt = stmt.where(H.performed_at >= since)
        rows = self.session.execute(self._newest_first(stmt).limit(limit)).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def statistics(
        self,
        tenant_id: UUID,
        performed_from: datetime | None = None,
        performed_to: datetime | None = None,
    ) -> HistoryStatistics:
        """Totals by action, by actor and by month (``YYYY-MM``)."""
        stmt = select(H.action, H.performed_by, H.performed_at).where(H.tenant_id == tenant_id)
        if performed_from is not None:
            stmt = stmt.where(H.performed_at >= performed_from)
        if performed_to is not None:
            stmt = stmt.where(H.performed_at <= performed_to)

        by_action: Counter[str] = Counter()
        by_actor: Counter[str] = Counter()
        by_month: Counter[str] = Counter()
        total = 0
        for action, actor, performed_at in self.session.execute(stmt):
            total += 1
            by_action[str(action)] += 1
            by_actor[str(actor)] += 1
            by_month[as_utc(performed_at).strftime("%Y-%m")] += 1

        return HistoryStatistics(
            total=total,
            by_action=dict(by_action),
            by_actor=dict(by_actor),
            by_month=dict(sorted(by_month.items())),
        )
