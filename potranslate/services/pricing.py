"""
Model pricing and token estimates used for cost accounting.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

# USD per 1K tokens: (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4.1": (0.002, 0.008),
    "gpt-4.1-mini": (0.0004, 0.0016),
    "gpt-4.1-nano": (0.0001, 0.0004),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-3.5-turbo": (0.0005, 0.0015),
    "o3-mini": (0.0011, 0.0044),
    "gemini-2.0-flash": (0.0001, 0.0004),
    "gemini-1.5-flash": (0.000075, 0.0003),
    "gemini-1.5-pro": (0.00125, 0.005),
    "deepseek-chat": (0.00027, 0.0011),
    "deepseek-reasoner": (0.00055, 0.00219),
    "claude-3-5-haiku": (0.0008, 0.004),
    "claude-3-5-sonnet": (0.003, 0.015),
}

DEFAULT_PRICING: Tuple[float, float] = (0.00015, 0.0006)

CHARS_PER_TOKEN = 4


def get_model_pricing(model: Optional[str]) -> Tuple[float, float]:
    """
    Look up (input, output) USD per 1K tokens for a model.

    Tries the exact name, then the name without a ``provider/`` prefix, then
    the longest known prefix (so ``gpt-4o-mini-2024-07-18`` prices as
    ``gpt-4o-mini``). Unknown models use DEFAULT_PRICING.
    """
    if not model:
        return DEFAULT_PRICING

    candidates = [model]
    if "/" in model:
        candidates.append(model.split("/", 1)[1])

    for name in candidates:
        if name in MODEL_PRICING:
            return MODEL_PRICING[name]

    for name in candidates:
        prefixes = [known for known in MODEL_PRICING if name.startswith(known)]
        if prefixes:
            return MODEL_PRICING[max(prefixes, key=len)]

    return DEFAULT_PRICING


def compute_cost(model: Optional[str], prompt_tokens: int, completion_tokens: int) -> float:
    """Modeled cost in USD for one call."""
    input_price, output_price = get_model_pricing(model)
    cost = (prompt_tokens / 1000.0) * input_price + (completion_tokens / 1000.0) * output_price
    return round(cost, 8)


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token count: four characters per token."""
    if not text:
        return 0
    return max(1, (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN)
