"""Cost model tests"""
import math
import pytest
from types import SimpleNamespace

from app.core.config import TOKENS_PER_CREDIT
from app.services.cost_model import (
    compute_deduction, normalize_cost_rate, resolve_rates, tokens_to_credits
)


@pytest.mark.critical
class TestComputeDeduction:
    """Deductions are always whole, positive numbers of credits"""

    @pytest.mark.parametrize("input_tokens,output_tokens,input_rate,output_rate", [
        (1, 0, 1, 1),
        (50, 50, 1, 1),
        (101, 0, 1, 1),
        (3, 7, 2.5, 0.3),
        (12345, 6789, 1.7, 9.1),
        (0.4, 0.2, 1, 1),
    ])
    def test_result_is_positive_multiple_of_credit(self, input_tokens, output_tokens, input_rate, output_rate):
        deduction = compute_deduction(input_tokens, output_tokens, input_rate, output_rate)
        assert deduction % TOKENS_PER_CREDIT == 0
        assert deduction >= TOKENS_PER_CREDIT

    def test_exact_credit_is_not_rounded_up(self):
        assert compute_deduction(50, 50) == 100

    def test_partial_credit_rounds_up(self):
        assert compute_deduction(100, 1) == 200

    def test_rates_weight_each_side(self):
        # 100 * 2 + 100 * 4 = 600
        assert compute_deduction(100, 100, 2, 4) == 600

    def test_invalid_rates_fall_back_to_baseline(self):
        assert compute_deduction(150, 75, 0, -5) == compute_deduction(150, 75, 1, 1)

    def test_rates_normalize_independently(self):
        # Only the output rate is invalid
        assert compute_deduction(100, 100, 3, float("nan")) == compute_deduction(100, 100, 3, 1)

    def test_non_finite_usage_charges_one_credit(self):
        assert compute_deduction(float("inf"), 10) == TOKENS_PER_CREDIT
        assert compute_deduction(float("nan"), 10) == TOKENS_PER_CREDIT

    def test_zero_usage_charges_one_credit(self):
        assert compute_deduction(0, 0) == TOKENS_PER_CREDIT

    def test_malformed_counts_charge_one_credit(self):
        assert compute_deduction("lots", None) == TOKENS_PER_CREDIT


@pytest.mark.medium
class TestRates:
    @pytest.mark.parametrize("rate,expected", [
        (2, 2.0),
        ("1.5", 1.5),
        (0, None),
        (-1, None),
        (None, None),
        (True, None),
        (math.inf, None),
        ("abc", None),
    ])
    def test_normalize_cost_rate(self, rate, expected):
        assert normalize_cost_rate(rate) == expected

    def test_resolve_rates_without_config(self):
        assert resolve_rates(None) == (1.0, 1.0)

    def test_resolve_rates_mixed_config(self):
        config = SimpleNamespace(input_cost_per_million=0, output_cost_per_million=6)
        assert resolve_rates(config) == (1.0, 6.0)

    def test_tokens_to_credits_floors(self):
        assert tokens_to_credits(250) == 2
        assert tokens_to_credits(-50) == 0
        assert tokens_to_credits(None) == 0
