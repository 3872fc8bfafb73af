"""Tests for model pricing lookup and token estimates."""

from __future__ import annotations

import pytest

from potranslate.services.pricing import (
    DEFAULT_PRICING,
    MODEL_PRICING,
    compute_cost,
    estimate_tokens,
    get_model_pricing,
)


class TestGetModelPricing:
    def test_exact_name(self):
        assert get_model_pricing("gpt-4o") == MODEL_PRICING["gpt-4o"]

    def test_provider_prefix_stripped(self):
        assert get_model_pricing("openai/gpt-4o-mini") == MODEL_PRICING["gpt-4o-mini"]

    def test_longest_prefix_wins(self):
        """Verify dated snapshots price as their most specific family."""
        assert get_model_pricing("gpt-4o-mini-2024-07-18") == MODEL_PRICING["gpt-4o-mini"]
        assert get_model_pricing("gpt-4.1-nano-2025-04-14") == MODEL_PRICING["gpt-4.1-nano"]

    def test_unknown_model_uses_default(self):
        assert get_model_pricing("my-local-llama") == DEFAULT_PRICING
        assert get_model_pricing(None) == DEFAULT_PRICING


class TestComputeCost:
    def test_per_thousand_tokens(self):
        # 1000 * 0.00015/1K + 2000 * 0.0006/1K
        assert compute_cost("gpt-4o-mini", 1000, 2000) == pytest.approx(0.00135)

    def test_zero_usage(self):
        assert compute_cost("gpt-4o", 0, 0) == 0.0


class TestEstimateTokens:
    @pytest.mark.parametrize(
        "text,expected",
        [(None, 0), ("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)],
    )
    def test_four_chars_per_token(self, text, expected):
        assert estimate_tokens(text) == expected
