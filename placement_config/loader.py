"""
Policy Defaults Loader (``placement_config.loader``).

Responsibility
--------------
Loads the tenant policy YAML file and parses it into the typed
``placement_config.schema`` dataclasses.  Runtime callers go through
``placement_config.get_policy_defaults()``, which also validates.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields are never silently defaulted.
* Money is parsed to ``Decimal`` from its string form, never via float.
* ``compute_checksum`` is a deterministic SHA-256 of the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Non-numeric amounts  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from placement_config.schema import (
    CancellationSettingDef,
    DocumentTemplateDef,
    FeeComponentDef,
    FeeTemplateDef,
    LawyerServiceDef,
    TenantPolicyDefaults,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a money value.  Floats go through ``str`` so 0.1 stays 0.1."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name}: expected a number, got {value!r}") from None


def _optional_decimal(data: dict[str, Any], key: str, context: str) -> Decimal | None:
    value = data.get(key)
    return None if value is None else parse_decimal(value, f"{context}.{key}")


def parse_cancellation_setting(data: dict[str, Any]) -> CancellationSettingDef:
    key = data["cancellation_type"]
    components = data.get("non_refundable_components") or []
    if not isinstance(components, list):
        raise ValueError(f"{key}.non_refundable_components: expected a list")
    return CancellationSettingDef(
        cancellation_type=key,
        name=data["name"],
        penalty_fee=parse_decimal(data.get("penalty_fee", 0), f"{key}.penalty_fee"),
        refund_percentage=parse_decimal(
            data.get("refund_percentage", 100), f"{key}.refund_percentage"
        ),
        non_refundable_components=tuple(components),
        monthly_service_fee=parse_decimal(
            data.get("monthly_service_fee", 0), f"{key}.monthly_service_fee"
        ),
        max_refund_amount=_optional_decimal(data, "max_refund_amount", key),
        description=data.get("description"),
        active=bool(data.get("active", True)),
    )


def parse_fee_component(data: dict[str, Any], template_name: str) -> FeeComponentDef:
    name = data["name"]
    return FeeComponentDef(
        name=name,
        amount=parse_decimal(data["amount"], f"{template_name}.{name}.amount"),
        is_refundable=bool(data.get("is_refundable", True)),
        refundable_after_arrival=bool(data.get("refundable_after_arrival", False)),
        description=data.get("description"),
    )


def parse_fee_template(data: dict[str, Any]) -> FeeTemplateDef:
    name = data["name"]
    return FeeTemplateDef(
        name=name,
        default_price=parse_decimal(data["default_price"], f"{name}.default_price"),
        min_price=_optional_decimal(data, "min_price", name),
        max_price=_optional_decimal(data, "max_price", name),
        currency=data.get("currency", "USD"),
        nationality=data.get("nationality"),
        service_type=data.get("service_type"),
        description=data.get("description"),
        components=tuple(
            parse_fee_component(c, name) for c in data.get("components") or []
        ),
    )


def parse_document_template(data: dict[str, Any]) -> DocumentTemplateDef:
    return DocumentTemplateDef(
        stage=data["stage"],
        name=data["name"],
        application_type=data.get("application_type"),
        required_from=data.get("required_from", "office"),
        order=int(data.get("order", 0)),
        required=bool(data.get("required", True)),
        description=data.get("description"),
    )


def parse_lawyer_service(data: dict[str, Any]) -> LawyerServiceDef:
    return LawyerServiceDef(
        lawyer_fee_cost=parse_decimal(data["lawyer_fee_cost"], "lawyer_service.lawyer_fee_cost"),
        lawyer_fee_charge=parse_decimal(
            data["lawyer_fee_charge"], "lawyer_service.lawyer_fee_charge"
        ),
        description=data.get("description"),
    )


def parse_policy_defaults(data: dict[str, Any]) -> TenantPolicyDefaults:
    """
    Parse a whole policy document.

    Raises:
        KeyError: a required section or field is missing.
        ValueError: a value has the wrong shape.
    """
    tenant = data["tenant"]
    return TenantPolicyDefaults(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        default_currency=tenant.get("default_currency", "USD"),
        deportation_cost=parse_decimal(tenant["deportation_cost"], "tenant.deportation_cost"),
        lawyer_service=parse_lawyer_service(data["lawyer_service"]),
        cancellation_settings=tuple(
            parse_cancellation_setting(s) for s in data.get("cancellation_settings") or []
        ),
        fee_templates=tuple(parse_fee_template(t) for t in data.get("fee_templates") or []),
        document_templates=tuple(
            parse_document_template(d) for d in data.get("document_templates") or []
        ),
        checksum=compute_checksum(data),
    )


def load_policy_defaults(path: Path) -> TenantPolicyDefaults:
    return parse_policy_defaults(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
