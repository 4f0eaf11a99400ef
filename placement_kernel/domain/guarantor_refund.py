"""
Guarantor-change refund heuristic (``placement_kernel.domain.guarantor_refund``).

Responsibility
--------------
Per-payment refund rules used when a candidate is reassigned to a new
sponsor as the primary intent (not as a side effect of a cancellation).

Architecture position
---------------------
**Kernel domain layer** -- pure computation.  ZERO I/O.

Rules
-----
* Candidate departed: nothing is refunded.
* Candidate in country, beyond probation: every receipt refunded in full.
* Candidate in country, within probation: insurance and visa receipts are
  non-refundable, all others refunded at 50%.
* Candidate abroad: insurance non-refundable, all others in full.
* Only positive receipts are considered; earlier refunds are not refunded.
* A custom amount replaces the computed refund.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from placement_kernel.domain.refund import ZERO, quantize_money
from placement_kernel.exceptions import ValidationError

HALF = Decimal("0.5")

INSURANCE = "INSURANCE"
VISA_FEE = "VISA_FEE"


class CandidateLocation(str, Enum):
    DEPARTED = "departed"
    IN_COUNTRY_WITHIN_PROBATION = "in_country_within_probation"
    IN_COUNTRY_AFTER_PROBATION = "in_country_after_probation"
    ABROAD = "abroad"


@dataclass(frozen=True)
class PaymentLine:
    payment_type: str
    amount: Decimal


@dataclass(frozen=True)
class PaymentRefundLine:
    payment_type: str
    amount: Decimal
    is_refundable: bool
    refund_amount: Decimal


@dataclass(frozen=True)
class GuarantorRefundResult:
    location: CandidateLocation
    total_paid: Decimal
    refundable_amount: Decimal
    non_refundable_amount: Decimal
    calculated_refund: Decimal
    final_refund: Decimal
    breakdown: tuple[PaymentRefundLine, ...]

    def to_payload(self) -> dict:
        return {
            "location": self.location.value,
            "total_paid": str(self.total_paid),
            "refundable_amount": str(self.refundable_amount),
            "non_refundable_amount": str(self.non_refundable_amount),
            "calculated_refund": str(self.calculated_refund),
            "final_refund": str(self.final_refund),
            "breakdown": [
                {
                    "payment_type": line.payment_type,
                    "amount": str(line.amount),
                    "is_refundable": line.is_refundable,
                    "refund_amount": str(line.refund_amount),
                }
                for line in self.breakdown
            ],
        }


def locate_candidate(
    candidate_in_country: bool,
    candidate_departed: bool,
    within_probation: bool,
) -> CandidateLocation:
    if candidate_departed:
        return CandidateLocation.DEPARTED
    if candidate_in_country:
        if within_probation:
            return CandidateLocation.IN_COUNTRY_WITHIN_PROBATION
        return CandidateLocation.IN_COUNTRY_AFTER_PROBATION
    return CandidateLocation.ABROAD


def _refund_for(line: PaymentLine, location: CandidateLocation) -> tuple[bool, Decimal]:
    payment_type = line.payment_type.upper()
    match location:
        case CandidateLocation.DEPARTED:
            return False, ZERO
        case CandidateLocation.IN_COUNTRY_AFTER_PROBATION:
            return True, line.amount
        case CandidateLocation.IN_COUNTRY_WITHIN_PROBATION:
            if payment_type in (INSURANCE, VISA_FEE):
                return False, ZERO
            return True, line.amount * HALF
        case CandidateLocation.ABROAD:
            if payment_type == INSURANCE:
                return False, ZERO
            return True, line.amount


def calculate_guarantor_refund(
    payments: Iterable[PaymentLine],
    location: CandidateLocation,
    custom_refund_amount: Decimal | None = None,
) -> GuarantorRefundResult:
    if custom_refund_amount is not None and custom_refund_amount < 0:
        raise ValidationError("Custom refund amount cannot be negative", field="custom_refund_amount")

    breakdown: list[PaymentRefundLine] = []
    total_paid = ZERO
    refundable = ZERO
    non_refundable = ZERO
    for line in payments:
        if line.amount <= 0:
            continue
        total_paid += line.amount
        is_refundable, refund_amount = _refund_for(line, location)
        refund_amount = quantize_money(refund_amount)
        breakdown.append(
            PaymentRefundLine(
                payment_type=line.payment_type,
                amount=quantize_money(line.amount),
                is_refundable=is_refundable,
                refund_amount=refund_amount,
            )
        )
        if is_refundable:
            refundable += refund_amount
        else:
            non_refundable += line.amount

    calculated = quantize_money(refundable)
    final = calculated if custom_refund_amount is None else quantize_money(custom_refund_amount)
    return GuarantorRefundResult(
        location=location,
        total_paid=quantize_money(total_paid),
        refundable_amount=quantize_money(refundable),
        non_refundable_amount=quantize_money(non_refundable),
        calculated_refund=calculated,
        final_refund=final,
        breakdown=tuple(breakdown),
    )
