"""Tests for token estimation and extraction cost calculations."""
import pytest

from ecocomply.services.cost_calculator import (
    calculate_cost,
    calculate_rule_library_savings,
    check_token_budget,
    estimate_tokens,
)


def test_calculate_cost_gpt4o():
    cost = calculate_cost(1_000_000, 100_000)
    assert cost.input_cost == pytest.approx(2.0)
    assert cost.output_cost == pytest.approx(0.8)
    assert cost.total_cost == pytest.approx(2.8)
    assert cost.total_tokens == 1_100_000


def test_calculate_cost_mini_is_cheaper():
    assert calculate_cost(50_000, 5_000, "gpt-4o-mini").total_cost < calculate_cost(50_000, 5_000).total_cost


def test_calculate_cost_unknown_model():
    with pytest.raises(ValueError):
        calculate_cost(1, 1, "gpt-2")


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    # 16 chars → 4; 3 words → 4 (ceil 3.9); average → 4
    assert estimate_tokens("the operator sha") == 4


def test_check_token_budget():
    assert check_token_budget(100_000).recommendation == "Process normally"
    assert check_token_budget(790_000).fits is True

    two = check_token_budget(1_000_000)
    assert two.fits is False
    assert two.available_tokens == 790_000
    assert two.recommendation == "Split into 2 segments"

    assert check_token_budget(2_000_000).recommendation == "Split into 3 segments"


def test_rule_library_savings():
    assert calculate_rule_library_savings(0) == 0
    assert calculate_rule_library_savings(1) == pytest.approx(0.14)
    assert calculate_rule_library_savings(10, 50_000, "gpt-4o") == pytest.approx(1.4)
