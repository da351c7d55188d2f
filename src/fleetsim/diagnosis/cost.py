"""Token cost accounting for enrichment calls."""

from __future__ import annotations

import logging
from typing import NamedTuple

_logger = logging.getLogger(__name__)


class TokenRate(NamedTuple):
    """USD per 1,000 tokens."""

    input_per_1k: float
    output_per_1k: float


DEFAULT_MODEL = "gpt-4o-mini"

# Approximate list prices; only used for observability, not billing.
RATE_TABLE: dict[str, TokenRate] = {
    "gpt-4o-mini": TokenRate(0.00015, 0.0006),
    "gpt-4o": TokenRate(0.0025, 0.01),
    "gpt-4.1-mini": TokenRate(0.0004, 0.0016),
    "gpt-4.1-nano": TokenRate(0.0001, 0.0004),
    "gpt-4.1": TokenRate(0.002, 0.008),
    "gpt-3.5-turbo": TokenRate(0.0005, 0.0015),
}


def rate_for(model: str) -> TokenRate:
    """Return the rate row for *model*, falling back to the default model."""
    rate = RATE_TABLE.get(model)
    if rate is None:
        # Dated snapshots ("gpt-4o-mini-2024-07-18") share their family's price.
        for name in sorted(RATE_TABLE, key=len, reverse=True):
            if model.startswith(f"{name}-"):
                return RATE_TABLE[name]
        _logger.debug("No rate for model %s, using %s rates", model, DEFAULT_MODEL)
        return RATE_TABLE[DEFAULT_MODEL]
    return rate


def estimate_cost(input_tokens: int, output_tokens: int, model: str = DEFAULT_MODEL) -> float:
    """USD estimate for one call."""
    rate = rate_for(model)
    return (input_tokens * rate.input_per_1k + output_tokens * rate.output_per_1k) / 1000
