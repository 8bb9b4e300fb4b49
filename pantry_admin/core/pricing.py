"""
Pricing calculations and rate management.

Turns token usage into an estimated monetary cost using a static price table.
Everything here is pure: no I/O, no clock, no logging.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_UP
from fractions import Fraction
from types import MappingProxyType
from typing import Dict, Mapping, Tuple, Union

from .errors import FailureKind, PartialFailure
from .usage import UsageSummary

TokenCount = Union[int, Decimal]

_THOUSAND = Decimal("1000")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens

    def __post_init__(self):
        if self.prompt_cost_per_1k < 0 or self.completion_cost_per_1k < 0:
            raise ValueError("prices must be >= 0")


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table with a default model for unknown ids."""
    prices: Mapping[str, ModelPricing]
    default_model: str

    def __post_init__(self):
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))
        if self.default_model not in self.prices:
            raise ValueError(f"Default model has no pricing: {self.default_model}")

    def is_known(self, model: str) -> bool:
        return model in self.prices

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model, falling back to the default model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or for the default model when unknown
        """
        return self.prices.get(model, self.prices[self.default_model])


# OpenAI list prices converted from per-million to per-1K tokens
PRICING_TABLE = PricingTable(
    prices={
        "gpt-3.5-turbo": ModelPricing(
            prompt_cost_per_1k=Decimal("0.0005"),
            completion_cost_per_1k=Decimal("0.0015")
        ),
        "gpt-4o-mini": ModelPricing(
            prompt_cost_per_1k=Decimal("0.0004"),
            completion_cost_per_1k=Decimal("0.0016")
        ),
        "gpt-4o": ModelPricing(
            prompt_cost_per_1k=Decimal("0.0025"),
            completion_cost_per_1k=Decimal("0.0100")
        ),
        "gpt-4-turbo": ModelPricing(
            prompt_cost_per_1k=Decimal("0.0100"),
            completion_cost_per_1k=Decimal("0.0300")
        ),
    },
    default_model="gpt-3.5-turbo",
)


def estimate(
    model_id: str,
    prompt_tokens: TokenCount,
    completion_tokens: TokenCount,
    table: PricingTable = PRICING_TABLE
) -> Decimal:
    """Estimate the cost of one model's usage.

    Unknown models are priced as the table's default model. No rounding is
    applied so sums over several models stay exact.

    Args:
        model_id: Model identifier
        prompt_tokens: Prompt token count
        completion_tokens: Completion token count
        table: Price table to use

    Returns:
        Estimated cost as an exact Decimal
    """
    pricing = table.get_pricing(model_id)

    # Calculate prompt cost: (tokens / 1000) * cost_per_1k
    prompt_cost = (Decimal(prompt_tokens) / _THOUSAND) * pricing.prompt_cost_per_1k

    # Calculate completion cost: (tokens / 1000) * cost_per_1k
    completion_cost = (Decimal(completion_tokens) / _THOUSAND) * pricing.completion_cost_per_1k

    return prompt_cost + completion_cost


@dataclass(frozen=True)
class CostEstimate:
    """Estimated cost of a usage summary.

    ``approximate`` is set whenever the figure relied on a fallback: no
    per-model breakdown, tokens without a model, or a model missing from the
    price table.
    """
    total: Decimal = _ZERO
    by_model: Mapping[str, Decimal] = field(default_factory=dict)
    approximate: bool = False
    unpriced_models: Tuple[str, ...] = ()

    def rounded(self, places: int = 4) -> Decimal:
        """Total rounded UP to ``places`` decimals (conservative bias)."""
        return self.total.quantize(Decimal(1).scaleb(-places), rounding=ROUND_UP)

    @property
    def failures(self) -> Tuple[PartialFailure, ...]:
        return tuple(
            PartialFailure(
                FailureKind.UNKNOWN_MODEL_PRICING,
                None,
                f"no pricing for model {model}; default model price used"
            )
            for model in self.unpriced_models
        )


def estimate_usage_cost(
    summary: UsageSummary,
    table: PricingTable = PRICING_TABLE
) -> CostEstimate:
    """Estimate the cost of a usage summary.

    With a per-model breakdown the cost is the sum over models. Tokens that
    carry no model are spread across the breakdown in proportion to each
    model's share of attributed tokens. Without any breakdown the default
    model is assumed. Both fallbacks mark the estimate approximate.

    Args:
        summary: Usage summary to price
        table: Price table to use

    Returns:
        CostEstimate for the summary
    """
    if summary.total_tokens == 0:
        return CostEstimate()

    if not summary.by_model:
        cost = estimate(
            table.default_model,
            summary.unattributed.prompt_tokens,
            summary.unattributed.completion_tokens,
            table
        )
        return CostEstimate(
            total=cost,
            by_model={table.default_model: cost},
            approximate=True
        )

    models = sorted(summary.by_model)
    attributed = summary.attributed_tokens
    extra = summary.unattributed
    costs: Dict[str, Fraction] = {}

    # Shares are exact fractions so the allocated tokens sum to the real total
    for model in models:
        usage = summary.by_model[model]
        if attributed > 0:
            share = Fraction(usage.total_tokens, attributed)
        else:
            share = Fraction(1, len(models))
        prompt = usage.prompt_tokens + extra.prompt_tokens * share
        completion = usage.completion_tokens + extra.completion_tokens * share
        costs[model] = _exact_cost(table.get_pricing(model), prompt, completion)

    unpriced = tuple(model for model in models if not table.is_known(model))
    return CostEstimate(
        total=_to_decimal(sum(costs.values(), Fraction(0))),
        by_model={model: _to_decimal(cost) for model, cost in costs.items()},
        approximate=extra.total_tokens > 0 or bool(unpriced),
        unpriced_models=unpriced
    )


def _exact_cost(pricing: ModelPricing, prompt_tokens: Fraction, completion_tokens: Fraction) -> Fraction:
    return (
        prompt_tokens * Fraction(pricing.prompt_cost_per_1k)
        + completion_tokens * Fraction(pricing.completion_cost_per_1k)
    ) / 1000


def _to_decimal(value: Fraction) -> Decimal:
    return Decimal(value.numerator) / Decimal(value.denominator)
