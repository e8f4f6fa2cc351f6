"""Token cost estimation for classification and worker calls."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


DEFAULT_PRICING: dict[str, ModelPricing] = {
    "claude-sonnet-4-20250514": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-haiku-4-5-20251001": ModelPricing(input_per_1m=0.80, output_per_1m=4.0),
}


def estimate_cost_usd(
    *,
    model: str,
    tokens_in: int | None,
    tokens_out: int | None,
) -> float | None:
    """Estimate call cost in USD; ``None`` when the model or usage is unknown."""

    pricing = lookup_pricing(model)
    if pricing is None:
        return None
    if tokens_in is None and tokens_out is None:
        return None
    return ((tokens_in or 0) / 1_000_000) * pricing.input_per_1m + (
        (tokens_out or 0) / 1_000_000
    ) * pricing.output_per_1m


def lookup_pricing(model: str) -> ModelPricing | None:
    mapping = _parse_pricing_mapping(os.getenv("BRAIN_DISPATCH_LLM_PRICING", ""))
    normalized = model.strip()
    direct = mapping.get(normalized)
    if direct is not None:
        return direct
    builtin = DEFAULT_PRICING.get(normalized)
    if builtin is not None:
        return builtin
    return mapping.get("*")


def _parse_pricing_mapping(raw: str) -> dict[str, ModelPricing]:
    """Parse `BRAIN_DISPATCH_LLM_PRICING` mapping.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as model sets a fallback for unknown models
    """

    parsed: dict[str, ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.rsplit(":", 2)]
        if len(parts) != 3:
            continue
        model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        parsed[model] = ModelPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m)
    return parsed
