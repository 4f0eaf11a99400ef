"""
Application lifecycle state machine (``placement_kernel.domain.lifecycle``).

Responsibility
--------------
Declares the application status set, the explicit transition table, the
candidate-status side effect of each transition, and the probation window.
Every status change in the system is checked here first.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over frozen value objects.
ZERO I/O.  Imports only ``domain/workflow.py`` and the logging factory.

Invariants enforced
-------------------
* A pair missing from the table is NOT allowed.  There is no permissive
  default and no wildcard.
* ``WORKER_ARRIVED`` is the only side-conditioned target (exact arrival
  date).  The condition is reported through ``requires_exact_arrival_date``;
  callers raise ``MissingArrivalDateError``, never ``InvalidTransitionError``.
* Terminal states have no outgoing transitions.
* Candidate status is a derived side effect of the transition; callers
  never choose it.

Failure modes
-------------
* ``is_valid_transition`` returns ``valid=False`` with a reason and the
  currently valid next states.  It never raises.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from placement_kernel.domain.workflow import Guard, Transition, Workflow
from placement_kernel.logging_config import get_logger

logger = get_logger("domain.lifecycle")

PROBATION_MONTHS = 3


class ApplicationStatus(str, Enum):
    """Lifecycle state of a placement application."""

    PENDING_AUTHORIZATION = "PENDING_AUTHORIZATION"
    AUTHORIZATION_RECEIVED = "AUTHORIZATION_RECEIVED"
    VISA_PROCESSING = "VISA_PROCESSING"
    VISA_RECEIVED = "VISA_RECEIVED"
    WORKER_ARRIVED = "WORKER_ARRIVED"
    LABOUR_PERMIT_PROCESSING = "LABOUR_PERMIT_PROCESSING"
    RESIDENCY_PERMIT_PROCESSING = "RESIDENCY_PERMIT_PROCESSING"
    ACTIVE_EMPLOYMENT = "ACTIVE_EMPLOYMENT"
    CONTRACT_ENDED = "CONTRACT_ENDED"
    RENEWAL_PENDING = "RENEWAL_PENDING"
    CANCELLED_PRE_ARRIVAL = "CANCELLED_PRE_ARRIVAL"
    CANCELLED_POST_ARRIVAL = "CANCELLED_POST_ARRIVAL"
    CANCELLED_BY_CANDIDATE = "CANCELLED_BY_CANDIDATE"


class CandidateStatus(str, Enum):
    """Availability of a worker.  Derived from application transitions."""

    AVAILABLE_ABROAD = "AVAILABLE_ABROAD"
    AVAILABLE_IN_LEBANON = "AVAILABLE_IN_LEBANON"
    RESERVED = "RESERVED"
    IN_PROCESS = "IN_PROCESS"
    PLACED = "PLACED"


class ApplicationType(str, Enum):
    NEW_CANDIDATE = "NEW_CANDIDATE"
    GUARANTOR_CHANGE = "GUARANTOR_CHANGE"


S = ApplicationStatus
C = CandidateStatus

PRE_ARRIVAL_STATES: tuple[ApplicationStatus, ...] = (
    S.PENDING_AUTHORIZATION,
    S.AUTHORIZATION_RECEIVED,
    S.VISA_PROCESSING,
    S.VISA_RECEIVED,
)

POST_ARRIVAL_STATES: tuple[ApplicationStatus, ...] = (
    S.WORKER_ARRIVED,
    S.LABOUR_PERMIT_PROCESSING,
    S.RESIDENCY_PERMIT_PROCESSING,
    S.ACTIVE_EMPLOYMENT,
)

CANCELLED_STATES: tuple[ApplicationStatus, ...] = (
    S.CANCELLED_PRE_ARRIVAL,
    S.CANCELLED_POST_ARRIVAL,
    S.CANCELLED_BY_CANDIDATE,
)

TERMINAL_STATES: tuple[ApplicationStatus, ...] = (S.CONTRACT_ENDED,) + CANCELLED_STATES

ACTIVE_STATES: tuple[ApplicationStatus, ...] = (
    S.ACTIVE_EMPLOYMENT,
    S.RENEWAL_PENDING,
)

# Statuses whose permits can be carried into a guarantor-change placement.
PAPERWORK_COMPLETE_STATES: tuple[ApplicationStatus, ...] = (
    S.ACTIVE_EMPLOYMENT,
    S.CONTRACT_ENDED,
    S.RENEWAL_PENDING,
)


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

EXACT_ARRIVAL_DATE_SET = Guard(
    name="exact_arrival_date_set",
    description="Application carries the worker's exact arrival date",
)


# -----------------------------------------------------------------------------
# Transition table
# -----------------------------------------------------------------------------

def _cancellation_transitions(
    sources: tuple[ApplicationStatus, ...],
    target: ApplicationStatus,
    action: str,
    candidate_status: CandidateStatus,
) -> tuple[Transition, ...]:
    return tuple(
        Transition(
            from_state=source.value,
            to_state=target.value,
            action=action,
            candidate_status=candidate_status.value,
        )
        for source in sources
    )


APPLICATION_WORKFLOW = Workflow(
    name="placement_application",
    description="Placement application from authorization to termination",
    initial_state=S.PENDING_AUTHORIZATION.value,
    states=tuple(s.value for s in ApplicationStatus),
    transitions=(
        Transition(S.PENDING_AUTHORIZATION.value, S.AUTHORIZATION_RECEIVED.value,
                   action="authorization_received"),
        Transition(S.AUTHORIZATION_RECEIVED.value, S.VISA_PROCESSING.value,
                   action="visa_application_submitted"),
        Transition(S.VISA_PROCESSING.value, S.VISA_RECEIVED.value,
                   action="visa_received"),
        Transition(S.VISA_RECEIVED.value, S.WORKER_ARRIVED.value,
                   action="worker_arrived",
                   guard=EXACT_ARRIVAL_DATE_SET,
                   candidate_status=C.IN_PROCESS.value),
        Transition(S.WORKER_ARRIVED.value, S.LABOUR_PERMIT_PROCESSING.value,
                   action="labour_permit_started"),
        Transition(S.LABOUR_PERMIT_PROCESSING.value, S.RESIDENCY_PERMIT_PROCESSING.value,
                   action="labour_permit_received"),
        Transition(S.RESIDENCY_PERMIT_PROCESSING.value, S.ACTIVE_EMPLOYMENT.value,
                   action="permits_complete",
                   candidate_status=C.PLACED.value),
        Transition(S.ACTIVE_EMPLOYMENT.value, S.CONTRACT_ENDED.value,
                   action="contract_ended",
                   candidate_status=C.AVAILABLE_IN_LEBANON.value),
        Transition(S.ACTIVE_EMPLOYMENT.value, S.RENEWAL_PENDING.value,
                   action="renewal_required"),
        Transition(S.RENEWAL_PENDING.value, S.ACTIVE_EMPLOYMENT.value,
                   action="permit_renewed"),
    )
    + _cancellation_transitions(
        PRE_ARRIVAL_STATES, S.CANCELLED_PRE_ARRIVAL, "cancel_pre_arrival",
        C.AVAILABLE_ABROAD,
    )
    + _cancellation_transitions(
        POST_ARRIVAL_STATES, S.CANCELLED_POST_ARRIVAL, "cancel_post_arrival",
        C.AVAILABLE_IN_LEBANON,
    )
    + _cancellation_transitions(
        POST_ARRIVAL_STATES, S.CANCELLED_BY_CANDIDATE, "cancel_by_candidate",
        C.AVAILABLE_IN_LEBANON,
    ),
    terminal_states=tuple(s.value for s in TERMINAL_STATES),
)

logger.info(
    "lifecycle_workflow_registered",
    extra={
        "workflow": APPLICATION_WORKFLOW.name,
        "states": len(APPLICATION_WORKFLOW.states),
        "transitions": len(APPLICATION_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionCheck:
    """Outcome of ``is_valid_transition``."""

    valid: bool
    reason: str | None = None
    transition: Transition | None = None
    valid_next_states: tuple[ApplicationStatus, ...] = field(default=())


def _status(value: ApplicationStatus | str) -> ApplicationStatus:
    return value if isinstance(value, ApplicationStatus) else ApplicationStatus(value)


def valid_next_states(from_status: ApplicationStatus | str) -> tuple[ApplicationStatus, ...]:
    """Statuses reachable in one step, happy path first then cancellations."""
    current = _status(from_status)
    return tuple(
        ApplicationStatus(t.to_state)
        for t in APPLICATION_WORKFLOW.outgoing(current.value)
    )


def is_valid_transition(
    from_status: ApplicationStatus | str,
    to_status: ApplicationStatus | str,
) -> TransitionCheck:
    current = _status(from_status)
    target = _status(to_status)
    transition = APPLICATION_WORKFLOW.find(current.value, target.value)
    if transition is not None:
        return TransitionCheck(valid=True, transition=transition)

    next_states = valid_next_states(current)
    if current in TERMINAL_STATES:
        reason = f"{current.value} is a terminal status"
    elif current == target:
        reason = f"Application is already in {current.value}"
    else:
        reason = f"Invalid transition from {current.value} to {target.value}"
    return TransitionCheck(valid=False, reason=reason, valid_next_states=next_states)


def requires_exact_arrival_date(to_status: ApplicationStatus | str) -> bool:
    return _status(to_status) == S.WORKER_ARRIVED


def candidate_status_change(
    from_status: ApplicationStatus | str,
    to_status: ApplicationStatus | str,
) -> CandidateStatus | None:
    """Candidate side effect of a legal transition, or None."""
    transition = APPLICATION_WORKFLOW.find(_status(from_status).value, _status(to_status).value)
    if transition is None or transition.candidate_status is None:
        return None
    return CandidateStatus(transition.candidate_status)


def is_cancellable(status: ApplicationStatus | str) -> bool:
    current = _status(status)
    return any(
        ApplicationStatus(t.to_state) in CANCELLED_STATES
        for t in APPLICATION_WORKFLOW.outgoing(current.value)
    )


def is_terminal(status: ApplicationStatus | str) -> bool:
    return _status(status) in TERMINAL_STATES


def is_active(status: ApplicationStatus | str) -> bool:
    return _status(status) in ACTIVE_STATES


def is_post_arrival(status: ApplicationStatus | str) -> bool:
    return _status(status) in POST_ARRIVAL_STATES


def has_completed_paperwork(status: ApplicationStatus | str) -> bool:
    """True once permits exist that a follow-on placement may reuse."""
    return _status(status) in PAPERWORK_COMPLETE_STATES


# -----------------------------------------------------------------------------
# Probation window
# -----------------------------------------------------------------------------

def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of short months."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def probation_end_date(arrival: date) -> date:
    return add_months(arrival, PROBATION_MONTHS)


def is_within_probation(arrival: date, on: date) -> bool:
    """True while ``on`` falls on or before the probation end date."""
    return on <= probation_end_date(arrival)
