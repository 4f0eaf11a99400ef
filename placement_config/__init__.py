"""
placement_config -- public entrypoint for tenant policy defaults.

Responsibility:
    Provides ``get_policy_defaults()``: the policy set a new tenant is
    seeded with (cancellation settings, fee templates, lawyer pricing,
    deportation cost, document templates).  YAML loading is internal.

Architecture position:
    Configuration.  Sits above ``placement_kernel`` (it reuses the
    kernel's enums for validation) and below ``placement_services``.  The
    kernel MUST NEVER import from ``placement_config``.

Invariants enforced:
    - The defaults pass ``validate_policy_defaults`` before they are
      returned.
    - Same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the YAML file does not exist.
    - ``ValueError`` -- parse or validation failure.

Audit relevance:
    Every successful call emits a ``PLACEMENT_CONFIG_TRACE`` log entry with
    the config id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from placement_config.loader import load_policy_defaults
from placement_config.schema import TenantPolicyDefaults
from placement_config.validator import PolicyValidationResult, validate_policy_defaults

_logger = logging.getLogger("placement_kernel.config")

DEFAULT_POLICY_FILE = Path(__file__).parent / "defaults" / "tenant_policies.yaml"


def get_policy_defaults(path: Path | None = None) -> TenantPolicyDefaults:
    """
    Load and validate tenant policy defaults.

    Args:
        path: Override YAML path.  Defaults to
            placement_config/defaults/tenant_policies.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file fails validation.
    """
    defaults = load_policy_defaults(path or DEFAULT_POLICY_FILE)

    validation = validate_policy_defaults(defaults)
    if not validation.is_valid:
        raise ValueError(
            "Policy defaults validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("policy_defaults_warning", extra={"warning": warning})

    _logger.info(
        "PLACEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PLACEMENT_CONFIG_TRACE",
            "config_id": defaults.config_id,
            "config_version": defaults.version,
            "checksum": defaults.checksum,
            "cancellation_setting_count": len(defaults.cancellation_settings),
            "fee_template_count": len(defaults.fee_templates),
            "document_template_count": len(defaults.document_templates),
        },
    )
    return defaults


__all__ = [
    "DEFAULT_POLICY_FILE",
    "PolicyValidationResult",
    "TenantPolicyDefaults",
    "get_policy_defaults",
    "validate_policy_defaults",
]
