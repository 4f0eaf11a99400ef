"""Per-payment refund heuristic used by guarantor changes."""

from decimal import Decimal

import pytest

from placement_kernel.domain.guarantor_refund import (
    CandidateLocation,
    PaymentLine,
    calculate_guarantor_refund,
    locate_candidate,
)
from placement_kernel.exceptions import ValidationError

PAYMENTS = (
    PaymentLine("APPLICATION_FEE", Decimal("1000")),
    PaymentLine("INSURANCE", Decimal("300")),
    PaymentLine("VISA_FEE", Decimal("200")),
)


@pytest.mark.parametrize(
    "in_country,departed,within,expected",
    [
        (False, True, True, CandidateLocation.DEPARTED),
        (True, True, False, CandidateLocation.DEPARTED),
        (True, False, True, CandidateLocation.IN_COUNTRY_WITHIN_PROBATION),
        (True, False, False, CandidateLocation.IN_COUNTRY_AFTER_PROBATION),
        (False, False, True, CandidateLocation.ABROAD),
    ],
)
def test_locate_candidate(in_country, departed, within, expected):
    assert locate_candidate(in_country, departed, within) is expected


class TestRefundRules:
    def test_departed_refunds_nothing(self):
        result = calculate_guarantor_refund(PAYMENTS, CandidateLocation.DEPARTED)

        assert result.final_refund == Decimal("0.00")
        assert result.non_refundable_amount == Decimal("1500.00")

    def test_in_country_after_probation_refunds_everything(self):
        result = calculate_guarantor_refund(PAYMENTS, CandidateLocation.IN_COUNTRY_AFTER_PROBATION)
        assert result.final_refund == Decimal("1500.00")

    def test_in_country_within_probation_halves_and_keeps_insurance_and_visa(self):
        result = calculate_guarantor_refund(PAYMENTS, CandidateLocation.IN_COUNTRY_WITHIN_PROBATION)

        assert result.final_refund == Decimal("500.00")
        assert result.non_refundable_amount == Decimal("500.00")
        refundable = {line.payment_type for line in result.breakdown if line.is_refundable}
        assert refundable == {"APPLICATION_FEE"}

    def test_abroad_keeps_insurance_only(self):
        result = calculate_guarantor_refund(PAYMENTS, CandidateLocation.ABROAD)
        assert result.final_refund == Decimal("1200.00")

    def test_payment_type_match_is_case_insensitive(self):
        result = calculate_guarantor_refund(
            [PaymentLine("insurance", Decimal("300"))], CandidateLocation.ABROAD
        )
        assert result.final_refund == Decimal("0.00")

    def test_earlier_refunds_are_ignored(self):
        payments = PAYMENTS + (PaymentLine("REFUND", Decimal("-400")),)
        result = calculate_guarantor_refund(payments, CandidateLocation.IN_COUNTRY_AFTER_PROBATION)

        assert result.total_paid == Decimal("1500.00")
        assert len(result.breakdown) == 3


class TestCustomAmount:
    def test_custom_amount_replaces_calculation(self):
        result = calculate_guarantor_refund(
            PAYMENTS, CandidateLocation.ABROAD, custom_refund_amount=Decimal("250")
        )

        assert result.calculated_refund == Decimal("1200.00")
        assert result.final_refund == Decimal("250.00")

    def test_negative_custom_amount_rejected(self):
        with pytest.raises(ValidationError):
            calculate_guarantor_refund(
                PAYMENTS, CandidateLocation.ABROAD, custom_refund_amount=Decimal("-5")
            )


def test_payload_is_json_safe():
    payload = calculate_guarantor_refund(PAYMENTS, CandidateLocation.ABROAD).to_payload()

    assert payload["location"] == "abroad"
    assert payload["final_refund"] == "1200.00"
    assert payload["breakdown"][1] == {
        "payment_type": "INSURANCE",
        "amount": "300.00",
        "is_refundable": False,
        "refund_amount": "0.00",
    }
