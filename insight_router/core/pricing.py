"""
Pricing calculations and rate management.

Cost estimates for provider usage, reported to the paywall alongside quota
denials.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict

from .token_counter import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


PRICING_TABLE = PricingTable({
    "gpt-3.5-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0005"),
        completion_cost_per_1k=Decimal("0.0015")
    ),
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.005"),
        completion_cost_per_1k=Decimal("0.015")
    ),
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006")
    ),
    "gpt-4-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.01"),
        completion_cost_per_1k=Decimal("0.03")
    ),
})

COST_QUANTUM = Decimal("0.0001")


def calculate_cost(model: str, usage: TokenUsage) -> float:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Total cost rounded UP to 4 decimal places

    Raises:
        ValueError: If model is not supported
    """
    pricing = PRICING_TABLE.get_pricing(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP))


def estimate_cost(model: str, total_tokens: int) -> float:
    """Estimate the cost of a token count whose prompt/completion split is unknown.

    Tokens are priced at the completion rate, the upper bound for the model.

    Raises:
        ValueError: If model is not supported or total_tokens is negative
    """
    if total_tokens < 0:
        raise ValueError("total_tokens cannot be negative")
    return calculate_cost(model, TokenUsage(prompt_tokens=0, completion_tokens=total_tokens))
