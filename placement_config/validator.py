"""
Policy Defaults Validator (``placement_config.validator``).

Responsibility
--------------
Checks a parsed ``TenantPolicyDefaults`` before it is seeded into a
tenant, so a bad YAML edit is caught at load time rather than at the
first cancellation.

Invariants enforced
-------------------
* Every cancellation type has exactly one setting.
* refund_percentage in [0, 100]; fees, caps and costs non-negative.
* Non-refundable component names are non-blank strings without duplicates.
* Fee templates have unique names, unique component names, and
  ``min_price <= default_price <= max_price`` where bounds are set.
* Document template stages are lifecycle statuses and ``required_from``
  is a known party.

Failure modes
-------------
* Errors (``PolicyValidationResult.errors``) -> the defaults MUST NOT be
  seeded.
* Warnings -> seeding may proceed but the file should be reviewed (for
  example a non-refundable name that matches no template component).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal

from placement_config.schema import FeeTemplateDef, TenantPolicyDefaults
from placement_kernel.domain.cancellation import CancellationType
from placement_kernel.domain.documents import RequiredFrom
from placement_kernel.domain.lifecycle import ApplicationStatus, ApplicationType


@dataclass
class PolicyValidationResult:
    """
    Contract: ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _check_non_negative(result: PolicyValidationResult, label: str, value: Decimal | None) -> None:
    if value is not None and value < 0:
        result.add_error(f"{label} must be >= 0 (got {value})")


def validate_policy_defaults(defaults: TenantPolicyDefaults) -> PolicyValidationResult:
    """Validate a policy defaults document."""
    result = PolicyValidationResult()

    _check_non_negative(result, "tenant.deportation_cost", defaults.deportation_cost)
    _check_non_negative(result, "lawyer_service.lawyer_fee_cost", defaults.lawyer_service.lawyer_fee_cost)
    _check_non_negative(
        result, "lawyer_service.lawyer_fee_charge", defaults.lawyer_service.lawyer_fee_charge
    )

    _validate_cancellation_settings(defaults, result)
    _validate_fee_templates(defaults.fee_templates, result)
    _validate_document_templates(defaults, result)
    return result


def _validate_cancellation_settings(
    defaults: TenantPolicyDefaults,
    result: PolicyValidationResult,
) -> None:
    known = {t.value for t in CancellationType}
    counts = Counter(s.cancellation_type for s in defaults.cancellation_settings)

    for key, count in counts.items():
        if key not in known:
            result.add_error(f"Unknown cancellation type '{key}'")
        elif count > 1:
            result.add_error(f"Cancellation type '{key}' is defined {count} times")
    for key in sorted(known - set(counts)):
        result.add_error(f"Missing cancellation setting for '{key}'")

    component_names = {
        c.name for template in defaults.fee_templates for c in template.components
    }
    for setting in defaults.cancellation_settings:
        key = setting.cancellation_type
        if not Decimal("0") <= setting.refund_percentage <= Decimal("100"):
            result.add_error(f"{key}.refund_percentage must be between 0 and 100")
        _check_non_negative(result, f"{key}.penalty_fee", setting.penalty_fee)
        _check_non_negative(result, f"{key}.monthly_service_fee", setting.monthly_service_fee)
        _check_non_negative(result, f"{key}.max_refund_amount", setting.max_refund_amount)

        seen: set[str] = set()
        for name in setting.non_refundable_components:
            if not isinstance(name, str) or not name.strip():
                result.add_error(f"{key}.non_refundable_components has a blank or non-string name")
                continue
            if name in seen:
                result.add_error(f"{key}.non_refundable_components lists '{name}' twice")
            seen.add(name)
            if component_names and name not in component_names:
                result.add_warning(
                    f"{key}.non_refundable_components: '{name}' matches no fee template component"
                )


def _validate_fee_templates(
    templates: tuple[FeeTemplateDef, ...],
    result: PolicyValidationResult,
) -> None:
    for name, count in Counter(t.name for t in templates).items():
        if count > 1:
            result.add_error(f"Fee template '{name}' is defined {count} times")

    service_types = {t.value for t in ApplicationType}
    for template in templates:
        label = f"fee_template '{template.name}'"
        _check_non_negative(result, f"{label}.default_price", template.default_price)
        if template.min_price is not None and template.default_price < template.min_price:
            result.add_error(f"{label}: default_price is below min_price")
        if template.max_price is not None and template.default_price > template.max_price:
            result.add_error(f"{label}: default_price is above max_price")
        if template.service_type is not None and template.service_type not in service_types:
            result.add_error(f"{label}: unknown service_type '{template.service_type}'")

        for component_name, count in Counter(c.name for c in template.components).items():
            if count > 1:
                result.add_error(f"{label}: component '{component_name}' is defined {count} times")
        for component in template.components:
            _check_non_negative(result, f"{label}.{component.name}.amount", component.amount)

        if template.components:
            component_total = sum((c.amount for c in template.components), Decimal("0"))
            if component_total != template.default_price:
                result.add_warning(
                    f"{label}: components total {component_total} "
                    f"differs from default_price {template.default_price}"
                )


def _validate_document_templates(
    defaults: TenantPolicyDefaults,
    result: PolicyValidationResult,
) -> None:
    stages = {s.value for s in ApplicationStatus}
    parties = {p.value for p in RequiredFrom}
    types = {t.value for t in ApplicationType}
    for name, count in Counter((d.stage, d.name) for d in defaults.document_templates).items():
        if count > 1:
            result.add_error(f"Document template '{name[1]}' at {name[0]} is defined {count} times")
    for doc in defaults.document_templates:
        if doc.stage not in stages:
            result.add_error(f"Document template '{doc.name}': unknown stage '{doc.stage}'")
        if doc.application_type is not None and doc.application_type not in types:
            result.add_error(
                f"Document template '{doc.name}': unknown application_type '{doc.application_type}'"
            )
        if doc.required_from not in parties:
            result.add_error(
                f"Document template '{doc.name}': unknown required_from '{doc.required_from}'"
            )
