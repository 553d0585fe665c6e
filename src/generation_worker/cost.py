"""
Approximate cost accounting for generation calls.

Prices are USD per 1M tokens and only used for usage reporting; they do not
influence admission.
"""

import math
from dataclasses import dataclass
from typing import Any

PRICING: dict[str, tuple[float, float]] = {
    # model_id: (input, output)
    "g2.5-flash": (0.075, 0.3),
    "g2.5-flash-lite": (0.0375, 0.15),
    "g2.0-flash": (0.075, 0.3),
    "g2.5-pro": (1.25, 5.0),
}
# Unknown models are priced like flash
FALLBACK_PRICING = PRICING["g2.5-flash"]


@dataclass(frozen=True)
class TokenUsage:
    tokens_in: int
    tokens_out: int

    @property
    def total(self) -> int:
        return self.tokens_in + self.tokens_out


def calculate_cost(model_id: str, tokens_in: int, tokens_out: int) -> float:
    input_price, output_price = PRICING.get(model_id, FALLBACK_PRICING)
    return (tokens_in / 1_000_000) * input_price + (tokens_out / 1_000_000) * output_price


def _field(container: Any, *names: str) -> int | None:
    for name in names:
        if isinstance(container, dict):
            value = container.get(name)
        else:
            value = getattr(container, name, None)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
            return int(value)
    return None


def _usage_container(response: Any) -> Any:
    if response is None:
        return None
    for name in ("usage", "usageMetadata", "usage_metadata"):
        if isinstance(response, dict):
            container = response.get(name)
        else:
            container = getattr(response, name, None)
        if container:
            return container
    if isinstance(response, dict):
        nested = response.get("response")
        if nested:
            return _usage_container(nested)
    return None


def extract_token_usage(response: Any) -> TokenUsage | None:
    """
    Read real token usage from a model response.

    Understands OpenAI-style ``usage`` (as returned by litellm) and Gemini
    ``usageMetadata``. When only a total is reported it is split 80/20
    between input and output.
    """
    usage = _usage_container(response)
    if usage is None:
        return None

    tokens_in = _field(usage, "prompt_tokens", "promptTokenCount", "inputTokenCount")
    tokens_out = _field(
        usage, "completion_tokens", "candidatesTokenCount", "outputTokenCount"
    )
    total = _field(usage, "total_tokens", "totalTokenCount")

    if tokens_in is None and tokens_out is None:
        if not total:
            return None
        return TokenUsage(
            tokens_in=math.floor(total * 0.8), tokens_out=math.ceil(total * 0.2)
        )

    if tokens_in is None:
        tokens_in = max(0, (total or 0) - tokens_out)
    if tokens_out is None:
        tokens_out = max(0, (total or 0) - tokens_in)
    return TokenUsage(tokens_in=tokens_in, tokens_out=tokens_out)
