"""
Component-aware refund calculator (``placement_kernel.domain.refund``).

Responsibility
--------------
Computes the monetary consequence of cancelling an application: which
fee components are refunded, the penalty, the monthly service deduction,
the percentage scaling, the cap and the floor.  Produces a structured,
auditable breakdown plus a one-line description.

Architecture position
---------------------
**Kernel domain layer** -- pure computation.  ZERO I/O.  The caller
resolves the policy (PolicyStore) and the payment/component inputs.

Invariants enforced
-------------------
* ``calculated_refund >= 0``.
* ``calculated_refund <= policy.max_refund_amount`` when a cap is set.
* ``pre_arrival_candidate`` refunds every component, whatever its flags.
* For post-arrival types, ``refundable_after_arrival=False`` makes a
  component non-refundable and wins over every other rule.
* The governing policy is the one supplied for the type.  Nothing here
  re-derives the bucket from dates.
* All monetary outputs are quantized to cents (ROUND_HALF_UP).

Failure modes
-------------
* ``ValidationError`` for a negative override or a policy that does not
  belong to the requested cancellation type.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal

from placement_kernel.domain.cancellation import CancellationType
from placement_kernel.exceptions import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

SYNTHETIC_COMPONENT_NAME = "Application Fee"

REASON_AFTER_ARRIVAL = "Non-refundable after arrival"
REASON_PER_POLICY = "Non-refundable per policy"
REASON_COMPONENT_FLAG = "Non-refundable component"
REASON_CANDIDATE_PRE_ARRIVAL = "Full refund: candidate cancelled before arrival"


def quantize_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    return f"${quantize_money(amount)}"


@dataclass(frozen=True)
class FeeComponentSpec:
    """A fee template line as the calculator sees it."""

    name: str
    amount: Decimal
    is_refundable: bool = True
    refundable_after_arrival: bool = True


@dataclass(frozen=True)
class CancellationPolicy:
    """Resolved CancellationSetting for one tenant and one type."""

    cancellation_type: CancellationType
    penalty_fee: Decimal = ZERO
    refund_percentage: Decimal = HUNDRED
    non_refundable_components: frozenset[str] = frozenset()
    monthly_service_fee: Decimal = ZERO
    max_refund_amount: Decimal | None = None
    name: str = ""


@dataclass(frozen=True)
class RefundOverrides:
    """Caller-supplied adjustments to the computed refund."""

    custom_refund_amount: Decimal | None = None
    penalty_fee_override: Decimal | None = None
    months_since_arrival: int | None = None


@dataclass(frozen=True)
class ComponentRefundLine:
    component: str
    amount: Decimal
    is_refundable: bool
    reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    """Structured outcome of a refund computation."""

    cancellation_type: CancellationType
    total_paid: Decimal
    refundable_components: Decimal
    non_refundable_components: Decimal
    penalty_fee: Decimal
    monthly_service_fees: Decimal
    calculated_refund: Decimal
    final_refund: Decimal
    description: str
    component_breakdown: tuple[ComponentRefundLine, ...] = field(default=())
    custom_refund_applied: bool = False

    def with_final_refund(self, amount: Decimal, note: str) -> RefundResult:
        """Copy with a different final refund and a note appended to the description."""
        final = quantize_money(amount)
        return replace(
            self,
            final_refund=final,
            description=_describe(self, final) + f" | {note}",
        )

    def to_payload(self) -> dict:
        """JSON-safe form for audit rows.  Amounts are strings."""
        return {
            "cancellation_type": self.cancellation_type.value,
            "total_paid": str(self.total_paid),
            "refundable_components": str(self.refundable_components),
            "non_refundable_components": str(self.non_refundable_components),
            "penalty_fee": str(self.penalty_fee),
            "monthly_service_fees": str(self.monthly_service_fees),
            "calculated_refund": str(self.calculated_refund),
            "final_refund": str(self.final_refund),
            "custom_refund_applied": self.custom_refund_applied,
            "component_breakdown": [
                {
                    "component": line.component,
                    "amount": str(line.amount),
                    "is_refundable": line.is_refundable,
                    "reason": line.reason,
                }
                for line in self.component_breakdown
            ],
        }


@dataclass(frozen=True)
class _TypeRules:
    refund_everything: bool
    after_arrival_rule: bool
    monthly_fees_apply: bool


def _rules_for(cancellation_type: CancellationType) -> _TypeRules:
    match cancellation_type:
        case CancellationType.PRE_ARRIVAL_CANDIDATE:
            return _TypeRules(refund_everything=True, after_arrival_rule=False, monthly_fees_apply=False)
        case CancellationType.PRE_ARRIVAL_CLIENT:
            return _TypeRules(refund_everything=False, after_arrival_rule=False, monthly_fees_apply=False)
        case (
            CancellationType.POST_ARRIVAL_WITHIN_3_MONTHS
            | CancellationType.POST_ARRIVAL_AFTER_3_MONTHS
        ):
            return _TypeRules(refund_everything=False, after_arrival_rule=True, monthly_fees_apply=True)
        case CancellationType.CANDIDATE_CANCELLATION:
            return _TypeRules(refund_everything=False, after_arrival_rule=False, monthly_fees_apply=False)


def _classify(
    component: FeeComponentSpec,
    rules: _TypeRules,
    policy: CancellationPolicy,
) -> ComponentRefundLine:
    amount = quantize_money(component.amount)
    if rules.refund_everything:
        return ComponentRefundLine(component.name, amount, True, REASON_CANDIDATE_PRE_ARRIVAL)
    if rules.after_arrival_rule and not component.refundable_after_arrival:
        return ComponentRefundLine(component.name, amount, False, REASON_AFTER_ARRIVAL)
    if component.name in policy.non_refundable_components:
        return ComponentRefundLine(component.name, amount, False, REASON_PER_POLICY)
    if not component.is_refundable:
        return ComponentRefundLine(component.name, amount, False, REASON_COMPONENT_FLAG)
    return ComponentRefundLine(component.name, amount, True)


def _describe(result: RefundResult, final_refund: Decimal) -> str:
    parts = [f"Total paid: {format_money(result.total_paid)}"]
    if result.non_refundable_components > 0:
        parts.append(f"Non-refundable components: {format_money(result.non_refundable_components)}")
    if result.penalty_fee > 0:
        parts.append(f"Cancellation penalty: {format_money(result.penalty_fee)}")
    if result.monthly_service_fees > 0:
        parts.append(f"Monthly service fees: {format_money(result.monthly_service_fees)}")
    parts.append(f"Final refund: {format_money(final_refund)}")
    return " | ".join(parts)


def calculate_refund(
    cancellation_type: CancellationType,
    payments: Iterable[Decimal],
    components: Sequence[FeeComponentSpec],
    policy: CancellationPolicy,
    overrides: RefundOverrides | None = None,
) -> RefundResult:
    """
    Compute the refund for cancelling an application.

    Args:
        cancellation_type: The requested type.  Selects the handling rules.
        payments: Signed payment amounts recorded against the application.
        components: Fee template components.  Empty means "one synthetic
            component worth everything paid".
        policy: The tenant's CancellationSetting for ``cancellation_type``.
        overrides: Custom refund, penalty override, months since arrival.

    Returns:
        RefundResult with totals, per-component breakdown and description.

    Raises:
        ValidationError: overrides are negative, or the policy was resolved
            for a different type.
    """
    overrides = overrides or RefundOverrides()
    if policy.cancellation_type != cancellation_type:
        raise ValidationError(
            f"Policy for {policy.cancellation_type.value} supplied for "
            f"{cancellation_type.value} cancellation",
            field="cancellation_type",
        )
    if overrides.custom_refund_amount is not None and overrides.custom_refund_amount < 0:
        raise ValidationError("Custom refund amount cannot be negative", field="custom_refund_amount")
    if overrides.penalty_fee_override is not None and overrides.penalty_fee_override < 0:
        raise ValidationError("Penalty fee override cannot be negative", field="penalty_fee_override")

    rules = _rules_for(cancellation_type)
    total_paid = quantize_money(sum((Decimal(p) for p in payments), ZERO))

    if not components:
        components = (FeeComponentSpec(name=SYNTHETIC_COMPONENT_NAME, amount=total_paid),)

    breakdown = tuple(_classify(c, rules, policy) for c in components)
    refundable = sum((line.amount for line in breakdown if line.is_refundable), ZERO)
    non_refundable = sum((line.amount for line in breakdown if not line.is_refundable), ZERO)

    penalty = quantize_money(
        overrides.penalty_fee_override
        if overrides.penalty_fee_override is not None
        else policy.penalty_fee
    )

    monthly = ZERO
    months = overrides.months_since_arrival
    if rules.monthly_fees_apply and months is not None and months > 0:
        monthly = quantize_money(Decimal(months) * policy.monthly_service_fee)

    calculated = refundable - penalty - monthly
    if policy.refund_percentage < HUNDRED:
        calculated = calculated * policy.refund_percentage / HUNDRED
    if policy.max_refund_amount is not None:
        calculated = min(calculated, policy.max_refund_amount)
    calculated = quantize_money(max(ZERO, calculated))

    custom_applied = overrides.custom_refund_amount is not None
    final = quantize_money(overrides.custom_refund_amount) if custom_applied else calculated

    result = RefundResult(
        cancellation_type=cancellation_type,
        total_paid=total_paid,
        refundable_components=quantize_money(refundable),
        non_refundable_components=quantize_money(non_refundable),
        penalty_fee=penalty,
        monthly_service_fees=monthly,
        calculated_refund=calculated,
        final_refund=final,
        description="",
        component_breakdown=breakdown,
        custom_refund_applied=custom_applied,
    )
    return replace(result, description=_describe(result, final))
