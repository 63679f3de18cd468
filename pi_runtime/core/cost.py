"""Cost Accounting - pure USD estimation from reported usage and a pricing entry.

Invariants:
    - estimate_usd is deterministic: same (usage, cost) always yields an equal breakdown
    - No pricing entry -> None, never a zero-valued breakdown
    - Rates are USD per 1M tokens; no rounding before the total is summed
    - Cached-input tokens bill at cached_input if set, else at the input rate
    - Cache-write tokens bill at cache_write if set, else at the input rate
"""

from typing import Iterable

from pi_runtime.schemas.usage import CostBreakdown, TokenCost, TokenUsage


PER_MILLION = 1_000_000.0


def estimate_usd(
    usage: TokenUsage, cost: TokenCost | None,
) -> CostBreakdown | None:
    if cost is None:
        return None
    cached_rate = cost.cached_input if cost.cached_input is not None else cost.input
    write_rate = cost.cache_write if cost.cache_write is not None else cost.input

    input_usd = usage.input_tokens * cost.input / PER_MILLION
    output_usd = usage.output_tokens * cost.output / PER_MILLION
    cached_usd = usage.cached_input_tokens * cached_rate / PER_MILLION
    write_usd = usage.cache_write_tokens * write_rate / PER_MILLION
    return CostBreakdown(
        input=input_usd,
        output=output_usd,
        cached_input=cached_usd,
        cache_write=write_usd,
        total=input_usd + output_usd + cached_usd + write_usd,
    )


def sum_usage(usages: Iterable[TokenUsage]) -> TokenUsage:
    total = TokenUsage()
    for u in usages:
        total = total + u
    return total


def sum_costs(costs: Iterable[CostBreakdown | None]) -> CostBreakdown | None:
    """Aggregate per-call costs. Any unpriced call makes the sum unknown (None)."""
    costs = list(costs)
    if not costs or any(c is None for c in costs):
        return None
    return CostBreakdown(
        input=sum(c.input for c in costs),
        output=sum(c.output for c in costs),
        cached_input=sum(c.cached_input for c in costs),
        cache_write=sum(c.cache_write for c in costs),
        total=sum(c.total for c in costs),
    )
