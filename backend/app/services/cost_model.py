"""Cost model - converts raw token usage into ledger tokens and credits"""
import math
from typing import Optional, Tuple

from app.core.config import settings
from app.models.model_config import ModelConfig

# Baseline cost per million raw tokens, in ledger-token units
DEFAULT_COST_PER_MILLION = 1


def tokens_per_credit() -> int:
    return settings.TOKENS_PER_CREDIT


def normalize_cost_rate(rate) -> Optional[float]:
    """Return ``rate`` if it is a finite number greater than zero, else None"""
    if rate is None or isinstance(rate, bool):
        return None
    try:
        value = float(rate)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def resolve_rates(model_config: Optional[ModelConfig]) -> Tuple[float, float]:
    """Input/output rates for a model config, each falling back to the baseline independently"""
    input_rate = float(DEFAULT_COST_PER_MILLION)
    output_rate = float(DEFAULT_COST_PER_MILLION)

    if model_config is not None:
        normalized_input = normalize_cost_rate(model_config.input_cost_per_million)
        normalized_output = normalize_cost_rate(model_config.output_cost_per_million)
        if normalized_input is not None:
            input_rate = normalized_input
        if normalized_output is not None:
            output_rate = normalized_output

    return input_rate, output_rate


def compute_deduction(
    input_tokens: float,
    output_tokens: float,
    input_rate=DEFAULT_COST_PER_MILLION,
    output_rate=DEFAULT_COST_PER_MILLION,
) -> int:
    """Ledger tokens to deduct for one usage event.

    The weighted cost is rounded up to a whole number of credits, so the
    result is always a positive multiple of TOKENS_PER_CREDIT. Malformed
    input that yields a non-finite or non-positive cost is charged exactly
    one credit.
    """
    per_credit = tokens_per_credit()
    in_rate = normalize_cost_rate(input_rate) or DEFAULT_COST_PER_MILLION
    out_rate = normalize_cost_rate(output_rate) or DEFAULT_COST_PER_MILLION

    try:
        weighted_input = float(input_tokens) * in_rate / DEFAULT_COST_PER_MILLION
        weighted_output = float(output_tokens) * out_rate / DEFAULT_COST_PER_MILLION
        total = weighted_input + weighted_output
    except (TypeError, ValueError, OverflowError):
        return per_credit

    if not math.isfinite(total) or total <= 0:
        return per_credit

    credits = max(1, math.ceil(total / per_credit))
    return credits * per_credit


def tokens_to_credits(tokens: int) -> int:
    """Display credits for a token amount (floor, never negative)"""
    return max(0, int(tokens or 0)) // tokens_per_credit()
