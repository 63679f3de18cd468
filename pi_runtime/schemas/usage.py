"""Usage & Cost Schemas - token counts reported by providers and USD pricing.

Invariants:
    - All token counts are >= 0
    - input_tokens counts non-cached input only; cached reads are cached_input_tokens
    - TokenCost rates are USD per one million tokens
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cached_input_tokens: int = Field(default=0, ge=0)
    cache_write_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens + self.output_tokens
            + self.cached_input_tokens + self.cache_write_tokens
        )

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
        )


class TokenCost(BaseModel):
    """Pricing entry for one model. None rates fall back to the input rate."""
    model_config = ConfigDict(frozen=True)

    input: float = Field(ge=0)
    output: float = Field(ge=0)
    cached_input: float | None = Field(default=None, ge=0)
    cache_write: float | None = Field(default=None, ge=0)


class CostBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: float
    output: float
    cached_input: float = 0.0
    cache_write: float = 0.0
    total: float
    currency: Literal["USD"] = "USD"
