"""
Cancellation types (``placement_kernel.domain.cancellation``).

Responsibility
--------------
The closed set of cancellation types, their family (pre-arrival,
post-arrival, candidate), the target status each family drives the
application to, and the time arithmetic that selects a post-arrival bucket.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* ``CancellationType`` is closed.  Every dispatch over it is an exhaustive
  ``match``; there is no string-keyed registry and no "unknown type" path
  past ``parse_cancellation_type``.
* Legacy inputs are resolved once, at the boundary:
  ``pre_arrival`` -> ``pre_arrival_client``;
  ``post_arrival`` -> within/after probation from the arrival date.
"""

from __future__ import annotations

import math
from datetime import date
from enum import Enum

from placement_kernel.domain.lifecycle import (
    PROBATION_MONTHS,
    ApplicationStatus,
    is_within_probation,
)
from placement_kernel.exceptions import ValidationError
from placement_kernel.logging_config import get_logger

logger = get_logger("domain.cancellation")

DAYS_PER_BILLING_MONTH = 30


class CancellationType(str, Enum):
    """Policy key selecting the governing CancellationSetting."""

    PRE_ARRIVAL_CLIENT = "pre_arrival_client"
    PRE_ARRIVAL_CANDIDATE = "pre_arrival_candidate"
    POST_ARRIVAL_WITHIN_3_MONTHS = "post_arrival_within_3_months"
    POST_ARRIVAL_AFTER_3_MONTHS = "post_arrival_after_3_months"
    CANDIDATE_CANCELLATION = "candidate_cancellation"


class CancellationFamily(str, Enum):
    PRE_ARRIVAL = "pre_arrival"
    POST_ARRIVAL = "post_arrival"
    CANDIDATE = "candidate"


LEGACY_PRE_ARRIVAL = "pre_arrival"
LEGACY_POST_ARRIVAL = "post_arrival"


def family_of(cancellation_type: CancellationType) -> CancellationFamily:
    match cancellation_type:
        case CancellationType.PRE_ARRIVAL_CLIENT | CancellationType.PRE_ARRIVAL_CANDIDATE:
            return CancellationFamily.PRE_ARRIVAL
        case (
            CancellationType.POST_ARRIVAL_WITHIN_3_MONTHS
            | CancellationType.POST_ARRIVAL_AFTER_3_MONTHS
        ):
            return CancellationFamily.POST_ARRIVAL
        case CancellationType.CANDIDATE_CANCELLATION:
            return CancellationFamily.CANDIDATE


def target_status_for(cancellation_type: CancellationType) -> ApplicationStatus:
    match family_of(cancellation_type):
        case CancellationFamily.PRE_ARRIVAL:
            return ApplicationStatus.CANCELLED_PRE_ARRIVAL
        case CancellationFamily.POST_ARRIVAL:
            return ApplicationStatus.CANCELLED_POST_ARRIVAL
        case CancellationFamily.CANDIDATE:
            return ApplicationStatus.CANCELLED_BY_CANDIDATE


def months_since_arrival(arrival: date, as_of: date) -> int:
    """Whole days between the dates, divided by 30, any partial month counted."""
    days = abs((as_of - arrival).days)
    return math.ceil(days / DAYS_PER_BILLING_MONTH)


def within_probation_by_months(arrival: date, as_of: date) -> bool:
    return months_since_arrival(arrival, as_of) <= PROBATION_MONTHS


def post_arrival_type_for(arrival: date | None, as_of: date) -> CancellationType:
    """Probation bucket for a post-arrival cancellation.

    Without an arrival date the application is treated as inside probation.
    """
    if arrival is None or is_within_probation(arrival, as_of):
        return CancellationType.POST_ARRIVAL_WITHIN_3_MONTHS
    return CancellationType.POST_ARRIVAL_AFTER_3_MONTHS


def parse_cancellation_type(
    value: CancellationType | str,
    arrival: date | None = None,
    as_of: date | None = None,
) -> CancellationType:
    """Resolve caller input, including legacy aliases, to a CancellationType.

    Raises:
        ValidationError: value is not a known type or alias, or the legacy
            ``post_arrival`` alias is used without ``as_of``.
    """
    if isinstance(value, CancellationType):
        return value
    if value == LEGACY_PRE_ARRIVAL:
        logger.info(
            "legacy_cancellation_type_resolved",
            extra={"legacy_type": value, "resolved_type": CancellationType.PRE_ARRIVAL_CLIENT.value},
        )
        return CancellationType.PRE_ARRIVAL_CLIENT
    if value == LEGACY_POST_ARRIVAL:
        if as_of is None:
            raise ValidationError(
                "Legacy 'post_arrival' requires a reference date", field="cancellation_type"
            )
        resolved = post_arrival_type_for(arrival, as_of)
        logger.warning(
            "legacy_cancellation_type_resolved",
            extra={"legacy_type": value, "resolved_type": resolved.value},
        )
        return resolved
    try:
        return CancellationType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown cancellation type: {value}", field="cancellation_type"
        ) from None
