"""
ORM-level append-only enforcement.

Payments and lifecycle history rows are facts: a refund is a new negative
payment, a correction is a new history row.  This module registers
SQLAlchemy mapper listeners that reject any UPDATE or DELETE of those rows
before SQL reaches the database.

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError

PROTECTED ENTITIES

Entity                       | When Immutable
-----------------------------|------------------------
Payment                      | ALWAYS (from creation)
ApplicationLifecycleHistory  | ALWAYS (from creation)

Usage:

    from placement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from placement_kernel.exceptions import ImmutabilityViolationError
from placement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are append-only and cannot be {operation.lower()}d",
    )


def _reject_update(mapper, connection, target):
    _reject(target, "UPDATE")


def _reject_delete(mapper, connection, target):
    _reject(target, "DELETE")


def _protected_models():
    from placement_kernel.models.ledger import Payment
    from placement_kernel.models.lifecycle_history import ApplicationLifecycleHistory

    return (Payment, ApplicationLifecycleHistory)


def register_immutability_listeners():
    """
    Register append-only listeners on every protected model.

    Safe to call more than once.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests that must violate the rule on purpose.
    """
    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
