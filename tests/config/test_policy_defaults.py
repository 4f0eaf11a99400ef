"""
Tenant policy defaults: YAML loading, validation and the write-time
checks on cancellation settings.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from placement_config import DEFAULT_POLICY_FILE, get_policy_defaults
from placement_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_decimal,
    parse_policy_defaults,
)
from placement_config.schema import CancellationSettingDef, FeeComponentDef, FeeTemplateDef
from placement_config.validator import validate_policy_defaults
from placement_kernel.domain.cancellation import CancellationType
from placement_kernel.exceptions import InvalidPolicyError
from placement_kernel.models.policy import CancellationSetting, normalize_component_names


@pytest.fixture
def raw_defaults() -> dict:
    return load_yaml_file(DEFAULT_POLICY_FILE)


class TestLoader:
    def test_packaged_defaults_load_and_validate(self):
        defaults = get_policy_defaults()

        assert defaults.config_id == "placement-defaults"
        assert defaults.deportation_cost == Decimal("500")
        assert defaults.lawyer_service.lawyer_fee_cost == Decimal("100")
        assert defaults.lawyer_service.lawyer_fee_charge == Decimal("150")
        assert {s.cancellation_type for s in defaults.cancellation_settings} == {
            t.value for t in CancellationType
        }

    def test_after_probation_policy_values(self):
        setting = get_policy_defaults().cancellation_setting("post_arrival_after_3_months")

        assert setting.penalty_fee == Decimal("500")
        assert setting.refund_percentage == Decimal("50")
        assert setting.max_refund_amount == Decimal("1000")
        assert set(setting.non_refundable_components) == {"Insurance", "Government Fees", "Ticket"}

    def test_standard_package_components(self):
        template = get_policy_defaults().fee_template("Standard Package - Philippines")

        assert template.default_price == Decimal("2500")
        assert sum(c.amount for c in template.components) == Decimal("2500")
        assert not any(c.refundable_after_arrival for c in template.components)

    def test_checksum_is_deterministic(self, raw_defaults):
        assert compute_checksum(raw_defaults) == compute_checksum(dict(raw_defaults))
        assert get_policy_defaults().checksum == compute_checksum(raw_defaults)

    def test_checksum_changes_with_content(self, raw_defaults):
        edited = dict(raw_defaults, version=2)
        assert compute_checksum(edited) != compute_checksum(raw_defaults)

    def test_floats_parse_through_strings(self):
        assert parse_decimal(0.1, "amount") == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", True])
    def test_non_numeric_amount_rejected(self, value):
        with pytest.raises(ValueError, match="expected a number"):
            parse_decimal(value, "amount")

    def test_missing_tenant_section_raises_key_error(self, raw_defaults):
        del raw_defaults["tenant"]
        with pytest.raises(KeyError):
            parse_policy_defaults(raw_defaults)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_policy_defaults(tmp_path / "missing.yaml")

    def test_invalid_file_raises_value_error(self, tmp_path, raw_defaults):
        raw_defaults["cancellation_settings"][0]["refund_percentage"] = 150
        path = tmp_path / "policies.yaml"
        path.write_text(yaml.safe_dump(raw_defaults))

        with pytest.raises(ValueError, match="refund_percentage must be between 0 and 100"):
            get_policy_defaults(path)


class TestValidator:
    def test_packaged_defaults_have_no_errors(self):
        result = validate_policy_defaults(get_policy_defaults())
        assert result.is_valid, result.errors

    def test_missing_cancellation_type_is_an_error(self):
        defaults = get_policy_defaults()
        trimmed = replace(defaults, cancellation_settings=defaults.cancellation_settings[1:])

        result = validate_policy_defaults(trimmed)
        assert "Missing cancellation setting for 'pre_arrival_client'" in result.errors

    def test_duplicate_and_unknown_types_are_errors(self):
        defaults = get_policy_defaults()
        extra = (
            defaults.cancellation_settings[0],
            CancellationSettingDef(cancellation_type="mutual_agreement", name="Mutual"),
        )
        result = validate_policy_defaults(
            replace(defaults, cancellation_settings=defaults.cancellation_settings + extra)
        )

        assert "Cancellation type 'pre_arrival_client' is defined 2 times" in result.errors
        assert "Unknown cancellation type 'mutual_agreement'" in result.errors

    def test_duplicate_non_refundable_name_is_an_error(self):
        defaults = get_policy_defaults()
        settings = tuple(
            replace(s, non_refundable_components=("Insurance", "Insurance"))
            if s.cancellation_type == "candidate_cancellation"
            else s
            for s in defaults.cancellation_settings
        )
        result = validate_policy_defaults(replace(defaults, cancellation_settings=settings))
        assert "candidate_cancellation.non_refundable_components lists 'Insurance' twice" in result.errors

    def test_unknown_component_name_is_a_warning(self):
        defaults = get_policy_defaults()
        settings = tuple(
            replace(s, non_refundable_components=("Airport Pickup",))
            if s.cancellation_type == "candidate_cancellation"
            else s
            for s in defaults.cancellation_settings
        )
        result = validate_policy_defaults(replace(defaults, cancellation_settings=settings))

        assert result.is_valid
        assert any("Airport Pickup" in w for w in result.warnings)

    def test_fee_template_price_range_checked(self):
        defaults = get_policy_defaults()
        bad = FeeTemplateDef(
            name="Broken",
            default_price=Decimal("50"),
            min_price=Decimal("100"),
            components=(
                FeeComponentDef(name="A", amount=Decimal("25")),
                FeeComponentDef(name="A", amount=Decimal("25")),
            ),
        )
        result = validate_policy_defaults(
            replace(defaults, fee_templates=defaults.fee_templates + (bad,))
        )

        assert "fee_template 'Broken': default_price is below min_price" in result.errors
        assert "fee_template 'Broken': component 'A' is defined 2 times" in result.errors

    def test_unknown_document_stage_is_an_error(self, raw_defaults):
        raw_defaults["document_templates"].append({"stage": "ONBOARDING", "name": "Photo"})
        result = validate_policy_defaults(parse_policy_defaults(raw_defaults))
        assert "Document template 'Photo': unknown stage 'ONBOARDING'" in result.errors


class TestCancellationSettingWriteValidation:
    def _setting(self, **overrides) -> CancellationSetting:
        fields = {
            "tenant_id": uuid4(),
            "cancellation_type": "pre_arrival_client",
            "name": "Client cancellation",
            "penalty_fee": Decimal("200"),
            "refund_percentage": Decimal("100"),
            "non_refundable_components": [],
            "created_by_id": uuid4(),
        }
        fields.update(overrides)
        return CancellationSetting(**fields)

    def test_component_names_are_normalized(self):
        setting = self._setting(non_refundable_components=[" Ticket", "Insurance", "Ticket "])
        assert setting.non_refundable_components == ["Insurance", "Ticket"]

    def test_blank_component_name_rejected(self):
        with pytest.raises(InvalidPolicyError) as exc_info:
            self._setting(non_refundable_components=["Insurance", "  "])
        assert exc_info.value.policy_key == "pre_arrival_client"
        assert exc_info.value.code == "INVALID_POLICY"

    def test_string_instead_of_list_rejected(self):
        with pytest.raises(InvalidPolicyError):
            self._setting(non_refundable_components="Insurance, Ticket")

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidPolicyError, match="unknown cancellation type"):
            self._setting(cancellation_type="post_arrival")

    @pytest.mark.parametrize("value", [Decimal("-1"), Decimal("100.01")])
    def test_refund_percentage_bounds(self, value):
        with pytest.raises(InvalidPolicyError):
            self._setting(refund_percentage=value)

    def test_negative_penalty_rejected(self):
        with pytest.raises(InvalidPolicyError, match="penalty_fee must be >= 0"):
            self._setting(penalty_fee=Decimal("-10"))

    def test_to_policy_exposes_a_frozenset(self):
        policy = self._setting(non_refundable_components=["Insurance"]).to_policy()

        assert policy.cancellation_type is CancellationType.PRE_ARRIVAL_CLIENT
        assert policy.non_refundable_components == frozenset({"Insurance"})

    def test_non_string_name_rejected(self):
        with pytest.raises(InvalidPolicyError, match="is not a string"):
            normalize_component_names("candidate_cancellation", ["Insurance", 42])
