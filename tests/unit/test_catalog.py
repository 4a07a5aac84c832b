"""Unit tests for the AI model catalog and cost estimation."""

from __future__ import annotations

import pytest

from craftmeter.billing.catalog import (
    AI_MODELS,
    FALLBACK_PRICING,
    can_access_model,
    default_model,
    estimate_cost,
    get_model_info,
    models_for_plan,
)
from craftmeter.exceptions import ValidationError


@pytest.mark.unit
class TestModelLookup:
    def test_lookup_by_key(self) -> None:
        info = get_model_info("claude-haiku-4.5")
        assert info is not None
        assert info.id == "anthropic/claude-haiku-4.5"

    def test_lookup_by_full_id(self) -> None:
        info = get_model_info("openai/gpt-5")
        assert info is not None
        assert info.key == "gpt-5"

    def test_unknown_model(self) -> None:
        assert get_model_info("mystery-model") is None

    def test_catalog_has_six_models(self) -> None:
        assert len(AI_MODELS) == 6


@pytest.mark.unit
class TestPlanAccess:
    def test_hobby_gets_lite_models_only(self) -> None:
        keys = {m.key for m in models_for_plan("HOBBY")}
        assert keys == {"claude-haiku-4.5", "gpt-5-mini", "gemini-2.5-flash"}

    def test_pro_gets_everything(self) -> None:
        assert len(models_for_plan("PRO")) == len(AI_MODELS)

    def test_enterprise_inherits_pro_models(self) -> None:
        assert can_access_model("ENTERPRISE", "claude-sonnet-4.5")

    def test_hobby_denied_premium(self) -> None:
        assert not can_access_model("HOBBY", "claude-sonnet-4.5")
        assert not can_access_model("HOBBY", "anthropic/claude-sonnet-4.5")

    def test_unknown_model_denied(self) -> None:
        assert not can_access_model("ENTERPRISE", "mystery-model")

    def test_default_models(self) -> None:
        assert default_model("HOBBY") == "claude-haiku-4.5"
        assert default_model("PRO") == "claude-sonnet-4.5"
        assert default_model(None) == "claude-haiku-4.5"


@pytest.mark.unit
class TestEstimateCost:
    def test_known_model(self) -> None:
        # 1M input at $3 + 0.5M output at $15
        assert estimate_cost("claude-sonnet-4.5", 1_000_000, 500_000) == pytest.approx(10.5)

    def test_unknown_model_uses_fallback(self) -> None:
        cost = estimate_cost("mystery-model", 1_000_000, 1_000_000)
        expected = FALLBACK_PRICING.input_per_million + FALLBACK_PRICING.output_per_million
        assert cost == pytest.approx(expected)

    def test_zero_tokens_cost_nothing(self) -> None:
        assert estimate_cost("gpt-5", 0, 0) == 0.0

    def test_negative_tokens_rejected(self) -> None:
        with pytest.raises(ValidationError):
            estimate_cost("gpt-5", -1, 10)
