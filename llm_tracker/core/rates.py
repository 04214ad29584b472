"""
Model rate resolution and cost calculation.

Classifies model identifiers into providers, looks up per-1K-token
rates and computes request cost. Everything here is pure: the rate
table is immutable and is passed in by the caller.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from .errors import InvalidModelForProviderError, UnknownModelError


class Provider(Enum):
    """Supported LLM vendors, in lookup order."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    XAI = "xai"
    DEEPSEEK = "deepseek"
    ALIBABA = "alibaba"
    COHERE = "cohere"


@dataclass(frozen=True)
class ModelRate:
    """Input/output price per 1000 tokens."""
    input_rate: float
    output_rate: float

    def __post_init__(self):
        if self.input_rate < 0:
            raise ValueError("input_rate cannot be negative")
        if self.output_rate < 0:
            raise ValueError("output_rate cannot be negative")


@dataclass(frozen=True)
class CostBreakdown:
    """Computed cost of a single request."""
    input_cost: float
    output_cost: float
    total_cost: float


@dataclass(frozen=True)
class RateTable:
    """Read-only catalog of model rates grouped by provider.

    Providers are always iterated in ``Provider`` declaration order,
    regardless of the order the mapping was built in.
    """
    rates: Mapping[Provider, Mapping[str, ModelRate]]

    def __post_init__(self):
        frozen = {}
        for provider in Provider:
            models = self.rates.get(provider, {})
            frozen[provider] = MappingProxyType(dict(models))
        object.__setattr__(self, "rates", MappingProxyType(frozen))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Tuple[float, float]]]) -> "RateTable":
        """Build a table from ``{provider: {model: (input, output)}}``.

        Raises:
            ValueError: If a provider name is unknown or a rate is negative
        """
        rates: Dict[Provider, Dict[str, ModelRate]] = {}
        for provider_name, models in data.items():
            try:
                provider = Provider(provider_name)
            except ValueError:
                valid = [p.value for p in Provider]
                raise ValueError(f"Unknown provider '{provider_name}', must be one of: {valid}")
            rates[provider] = {
                model: ModelRate(input_rate=float(pair[0]), output_rate=float(pair[1]))
                for model, pair in models.items()
            }
        return cls(rates)

    def providers(self) -> Tuple[Provider, ...]:
        return tuple(self.rates.keys())

    def models(self, provider: Provider) -> Tuple[str, ...]:
        return tuple(self.rates[provider].keys())

    def entries(self) -> Iterator[Tuple[Provider, str, ModelRate]]:
        """Yield every (provider, model, rate) triple in lookup order."""
        for provider, models in self.rates.items():
            for model, rate in models.items():
                yield provider, model, rate

    def resolve_provider(self, model: str) -> Provider:
        """Classify a model identifier into its provider.

        The input is lower-cased before lookup but the stored keys are
        compared as-is, so a table key containing upper-case letters can
        never be classified.

        Raises:
            UnknownModelError: If no provider offers the model
        """
        model_lower = model.lower()
        for provider, models in self.rates.items():
            if model_lower in models:
                return provider
        raise UnknownModelError(model)

    def resolve_rates(self, model: str, provider: Optional[Union[Provider, str]] = None) -> ModelRate:
        """Look up the rates for a model, deriving the provider if omitted.

        The model key is matched exactly against the provider's catalog.

        Raises:
            UnknownModelError: If provider is omitted and no provider offers the model
            InvalidModelForProviderError: If the provider does not offer the exact key
        """
        if provider is None:
            actual = self.resolve_provider(model)
        else:
            actual = as_provider(model, provider)

        models = self.rates[actual]
        if model not in models:
            raise InvalidModelForProviderError(model, actual.value)
        return models[model]


def as_provider(model: str, provider: Union[Provider, str]) -> Provider:
    """Coerce a provider name, treating unknown names as a model/provider mismatch."""
    if isinstance(provider, Provider):
        return provider
    try:
        return Provider(provider)
    except ValueError:
        raise InvalidModelForProviderError(model, str(provider))


# Rates in USD per 1000 tokens
DEFAULT_RATE_TABLE = RateTable.from_mapping({
    "openai": {
        "gpt-4o": (0.0025, 0.01),
        "gpt-3.5-turbo": (0.0005, 0.0015),
        "gpt-4.5": (0.075, 0.15),
        "o3": (0.01, 0.04),
        "o1-2024-12-17": (0.015, 0.06),
        "o1-preview": (0.015, 0.06),
        "o3-mini-high": (0.0011, 0.0044),
        "o3-mini": (0.0011, 0.0044),
        "o1-mini": (0.0011, 0.0044),
        "gpt-4o-mini": (0.0011, 0.0044),
    },
    "anthropic": {
        "claude-3-sonnet": (0.003, 0.015),
        "claude-3.7-sonnet": (0.003, 0.015),
    },
    "google": {
        "gemini-2.5-pro": (0.0025, 0.015),
        "gemini-2.0-flash-001": (0.0001, 0.0004),
    },
    "xai": {
        "grok-3-preview": (0.003, 0.015),
    },
    "deepseek": {
        "deepseek-v3": (0.00027, 0.0011),
        "deepseek-r1": (0.00055, 0.00219),
    },
    "alibaba": {
        "qwen2.5-max": (0.0016, 0.0064),
        "qwen-plus-0125": (0.0004, 0.0012),
    },
    "cohere": {
        "command-a": (0.0025, 0.01),
    },
})


def resolve_provider(model: str, table: RateTable = DEFAULT_RATE_TABLE) -> Provider:
    """Classify a model identifier into its provider."""
    return table.resolve_provider(model)


def resolve_rates(
    model: str,
    provider: Optional[Union[Provider, str]] = None,
    table: RateTable = DEFAULT_RATE_TABLE,
) -> ModelRate:
    """Look up input/output rates for a model."""
    return table.resolve_rates(model, provider)


def compute_cost(prompt_tokens: int, completion_tokens: int, rates: ModelRate) -> CostBreakdown:
    """Calculate request cost from token counts and per-1K rates.

    No rounding is applied and token counts are not validated.

    Args:
        prompt_tokens: Number of input tokens
        completion_tokens: Number of output tokens
        rates: Resolved rate pair

    Returns:
        CostBreakdown with input, output and total cost
    """
    # (tokens / 1000) * cost_per_1k
    input_cost = (prompt_tokens / 1000) * rates.input_rate
    output_cost = (completion_tokens / 1000) * rates.output_rate
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + output_cost,
    )
