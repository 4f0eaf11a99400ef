"""
Typed Exception Hierarchy for the Placement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Refund and lifecycle errors must be handled precisely. Callers (the API
layer, back-office tooling, tests) catch by TYPE and read structured
attributes; they never parse message strings.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        orchestrator.process_cancellation(request, actor_id, tenant_id)
    except InvalidTransitionError as e:
        api_response(
            code=e.code,
            reason=e.reason,
            valid_next_states=[s.value for s in e.valid_next_states],
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PlacementKernelError:

    PlacementKernelError (base)
    |
    +-- NotFoundError
    |   +-- ApplicationNotFoundError
    |   +-- CandidateNotFoundError
    |   +-- ClientNotFoundError
    |   +-- FeeTemplateNotFoundError
    |   +-- GuarantorChangeNotFoundError
    |   +-- DocumentItemNotFoundError
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError
    |   +-- MissingPreconditionError
    |       +-- MissingArrivalDateError
    |
    +-- PolicyError
    |   +-- PolicyMissingError
    |   +-- InvalidPolicyError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- AlreadyProcessedError
    |
    +-- ValidationError
    |   +-- CandidateUnavailableError
    |   +-- ActiveApplicationExistsError
    |   +-- FeeOutOfRangeError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | APPLICATION_NOT_FOUND       | Application missing or not in tenant
                | CANDIDATE_NOT_FOUND         | Candidate missing or not in tenant
                | CLIENT_NOT_FOUND            | Client missing or not in tenant
                | FEE_TEMPLATE_NOT_FOUND      | No fee template resolvable
                | GUARANTOR_CHANGE_NOT_FOUND  | GuarantorChange id unknown
                | DOCUMENT_ITEM_NOT_FOUND     | Checklist item unknown
----------------|-----------------------------|-----------------------------------------
Lifecycle       | INVALID_TRANSITION          | Move not in the transition table
                | MISSING_PRECONDITION        | Side-condition of a move not met
                | MISSING_ARRIVAL_DATE        | WORKER_ARRIVED without arrival date
----------------|-----------------------------|-----------------------------------------
Policy          | POLICY_MISSING              | No active CancellationSetting
                | INVALID_POLICY              | Policy rejected at the write boundary
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONFLICT                    | Application modified concurrently
----------------|-----------------------------|-----------------------------------------
Idempotency     | ALREADY_PROCESSED           | Refund or finalization repeated
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed caller input
                | CANDIDATE_UNAVAILABLE       | Candidate cannot start a placement
                | ACTIVE_APPLICATION_EXISTS   | Candidate already has an open placement
                | FEE_OUT_OF_RANGE            | Fee outside template min/max
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row

===============================================================================
DESIGN DECISIONS
===============================================================================

1. PolicyMissingError is never converted into a default. A silently
   defaulted policy produces a wrong refund that still looks valid.

2. ConflictError is retryable: the caller re-reads the application and
   decides again. InvalidTransitionError is not.

3. MissingPreconditionError is deliberately NOT an InvalidTransitionError.
   The move is legal; the request is incomplete.

===============================================================================
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class PlacementKernelError(Exception):
    """
    Base exception for all placement kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PLACEMENT_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(PlacementKernelError):
    """Base exception for missing (or out-of-tenant) entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ApplicationNotFoundError(NotFoundError):
    """Application does not exist or belongs to another tenant."""

    code: str = "APPLICATION_NOT_FOUND"
    entity_type = "Application"


class CandidateNotFoundError(NotFoundError):
    """Candidate does not exist or belongs to another tenant."""

    code: str = "CANDIDATE_NOT_FOUND"
    entity_type = "Candidate"


class ClientNotFoundError(NotFoundError):
    """Client does not exist or belongs to another tenant."""

    code: str = "CLIENT_NOT_FOUND"
    entity_type = "Client"


class FeeTemplateNotFoundError(NotFoundError):
    """No fee template could be resolved."""

    code: str = "FEE_TEMPLATE_NOT_FOUND"
    entity_type = "FeeTemplate"


class GuarantorChangeNotFoundError(NotFoundError):
    """GuarantorChange record does not exist."""

    code: str = "GUARANTOR_CHANGE_NOT_FOUND"
    entity_type = "GuarantorChange"


class DocumentItemNotFoundError(NotFoundError):
    """Document checklist item does not exist."""

    code: str = "DOCUMENT_ITEM_NOT_FOUND"
    entity_type = "DocumentChecklistItem"


# Lifecycle exceptions


class LifecycleError(PlacementKernelError):
    """Base exception for application lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """The requested status change is not in the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        reason: str,
        valid_next_states: Sequence[Any] = (),
    ):
        self.from_status = str(from_status)
        self.to_status = str(to_status)
        self.reason = reason
        self.valid_next_states = tuple(valid_next_states)
        super().__init__(
            f"Invalid transition {self.from_status} -> {self.to_status}: {reason}"
        )


class MissingPreconditionError(LifecycleError):
    """A legal transition was requested without its side-condition."""

    code: str = "MISSING_PRECONDITION"

    def __init__(self, to_status: str, precondition: str):
        self.to_status = str(to_status)
        self.precondition = precondition
        super().__init__(
            f"Transition to {self.to_status} requires {precondition}"
        )


class MissingArrivalDateError(MissingPreconditionError):
    """Arrival cannot be recorded without an exact arrival date."""

    code: str = "MISSING_ARRIVAL_DATE"

    def __init__(self, to_status: str):
        super().__init__(to_status, "an exact arrival date")


# Policy exceptions


class PolicyError(PlacementKernelError):
    """Base exception for tenant policy errors."""

    code: str = "POLICY_ERROR"


class PolicyMissingError(PolicyError):
    """No active policy row exists for the tenant and key."""

    code: str = "POLICY_MISSING"

    def __init__(self, tenant_id: str, policy_kind: str, policy_key: str):
        self.tenant_id = str(tenant_id)
        self.policy_kind = policy_kind
        self.policy_key = policy_key
        super().__init__(
            f"No active {policy_kind} '{policy_key}' for tenant {tenant_id}"
        )


class InvalidPolicyError(PolicyError):
    """A policy value was rejected when it was written."""

    code: str = "INVALID_POLICY"

    def __init__(self, policy_key: str, errors: Sequence[str]):
        self.policy_key = policy_key
        self.errors = tuple(errors)
        super().__init__(
            f"Invalid policy '{policy_key}': " + "; ".join(self.errors)
        )


# Concurrency exceptions


class ConcurrencyError(PlacementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """The entity changed underneath the caller. Re-read and retry."""

    code: str = "CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Idempotency


class AlreadyProcessedError(PlacementKernelError):
    """A one-way operation was invoked a second time."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, entity_type: str, entity_id: Any, operation: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.operation = operation
        super().__init__(
            f"{operation} already processed for {entity_type} {entity_id}"
        )


# Validation exceptions


class ValidationError(PlacementKernelError):
    """Malformed or inconsistent caller input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class CandidateUnavailableError(ValidationError):
    """Candidate status does not allow a new placement."""

    code: str = "CANDIDATE_UNAVAILABLE"

    def __init__(self, candidate_id: Any, status: str):
        self.candidate_id = str(candidate_id)
        self.status = str(status)
        super().__init__(
            f"Candidate {candidate_id} is not available (status {status})",
            field="candidate_id",
        )


class ActiveApplicationExistsError(ValidationError):
    """Candidate already has a non-terminal application."""

    code: str = "ACTIVE_APPLICATION_EXISTS"

    def __init__(self, candidate_id: Any, application_id: Any):
        self.candidate_id = str(candidate_id)
        self.application_id = str(application_id)
        super().__init__(
            f"Candidate {candidate_id} already has active application "
            f"{application_id}",
            field="candidate_id",
        )


class FeeOutOfRangeError(ValidationError):
    """Final fee falls outside the fee template's price range."""

    code: str = "FEE_OUT_OF_RANGE"

    def __init__(self, amount: Any, min_price: Any, max_price: Any):
        self.amount = str(amount)
        self.min_price = None if min_price is None else str(min_price)
        self.max_price = None if max_price is None else str(max_price)
        super().__init__(
            f"Fee {amount} outside allowed range "
            f"[{self.min_price}, {self.max_price}]",
            field="final_fee_amount",
        )


# Immutability exceptions


class ImmutabilityError(PlacementKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    ApplicationLifecycleHistory and Payment rows are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
