"""Tests for core/cost.py - USD estimation and aggregation.

Invariants:
    - No pricing entry -> None, never a zero breakdown
    - Rates are per 1M tokens; cached and cache-write tokens fall back to the input rate
    - sum_costs is None as soon as one call lacks pricing
"""

import pytest

from pi_runtime.core.cost import estimate_usd, sum_costs, sum_usage
from pi_runtime.schemas.usage import CostBreakdown, TokenCost, TokenUsage


# ==============================================================================
# estimate_usd
# ==============================================================================


def test_no_pricing_returns_none():
    assert estimate_usd(TokenUsage(input_tokens=100), None) is None


def test_basic_input_output_pricing():
    """1000 in at $3/M + 500 out at $15/M = 0.003 + 0.0075."""
    cost = estimate_usd(
        TokenUsage(input_tokens=1000, output_tokens=500),
        TokenCost(input=3.0, output=15.0),
    )
    assert cost.input == pytest.approx(0.003)
    assert cost.output == pytest.approx(0.0075)
    assert cost.total == pytest.approx(0.0105)
    assert cost.currency == "USD"


def test_cached_tokens_use_cached_rate():
    cost = estimate_usd(
        TokenUsage(input_tokens=0, cached_input_tokens=1_000_000),
        TokenCost(input=2.0, output=8.0, cached_input=0.5),
    )
    assert cost.cached_input == pytest.approx(0.5)
    assert cost.total == pytest.approx(0.5)


def test_cached_tokens_fall_back_to_input_rate():
    cost = estimate_usd(
        TokenUsage(cached_input_tokens=1_000_000),
        TokenCost(input=2.0, output=8.0),
    )
    assert cost.cached_input == pytest.approx(2.0)


def test_cache_write_tokens_priced_separately():
    cost = estimate_usd(
        TokenUsage(cache_write_tokens=1_000_000),
        TokenCost(input=3.0, output=15.0, cache_write=3.75),
    )
    assert cost.cache_write == pytest.approx(3.75)
    assert cost.total == pytest.approx(3.75)


def test_zero_usage_with_pricing_is_zero_not_none():
    cost = estimate_usd(TokenUsage(), TokenCost(input=1.0, output=1.0))
    assert cost is not None
    assert cost.total == 0.0


def test_estimate_is_deterministic():
    usage = TokenUsage(input_tokens=123, output_tokens=45, cached_input_tokens=6)
    pricing = TokenCost(input=0.15, output=0.6, cached_input=0.075)
    assert estimate_usd(usage, pricing) == estimate_usd(usage, pricing)


# ==============================================================================
# Aggregation
# ==============================================================================


def test_sum_usage_adds_every_field():
    total = sum_usage([
        TokenUsage(input_tokens=1, output_tokens=2, cached_input_tokens=3),
        TokenUsage(input_tokens=10, output_tokens=20, cache_write_tokens=4),
    ])
    assert total == TokenUsage(
        input_tokens=11, output_tokens=22,
        cached_input_tokens=3, cache_write_tokens=4,
    )
    assert total.total_tokens == 40


def test_sum_usage_of_nothing_is_zero():
    assert sum_usage([]) == TokenUsage()


def test_sum_costs_adds_totals():
    a = CostBreakdown(input=0.1, output=0.2, total=0.3)
    b = CostBreakdown(input=0.01, output=0.02, total=0.03)
    total = sum_costs([a, b])
    assert total.total == pytest.approx(0.33)
    assert total.input == pytest.approx(0.11)


def test_sum_costs_none_when_any_call_unpriced():
    a = CostBreakdown(input=0.1, output=0.2, total=0.3)
    assert sum_costs([a, None]) is None


def test_sum_costs_of_nothing_is_none():
    assert sum_costs([]) is None
