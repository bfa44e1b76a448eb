"""
Token cost estimation for LLM extraction runs.

Prices are USD per one million tokens.  Token counts for text we have not
sent yet are estimated as the average of a character-based (~4 chars per
token) and a word-based (~1.3 tokens per word) heuristic.
"""
from __future__ import annotations

import dataclasses
import math
from typing import Dict


@dataclasses.dataclass(frozen=True)
class ModelPricing:
    input: float
    output: float


MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input=2.00, output=8.00),
    "gpt-4o-mini": ModelPricing(input=0.40, output=1.60),
}

DEFAULT_MAX_TOKENS = 800_000
DEFAULT_SAFETY_BUFFER = 10_000
DEFAULT_TOKENS_PER_SEGMENT = 50_000


@dataclasses.dataclass
class CostCalculation:
    input_cost: float
    output_cost: float
    total_cost: float
    input_tokens: int
    output_tokens: int
    total_tokens: int


@dataclasses.dataclass
class TokenBudgetCheck:
    fits: bool
    available_tokens: int
    document_tokens: int
    recommendation: str


def _pricing(model: str) -> ModelPricing:
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        raise ValueError(f"Unknown model: {model}")
    return pricing


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    model: str = "gpt-4o",
) -> CostCalculation:
    """Cost of a call, each figure rounded to 6 decimal places."""
    pricing = _pricing(model)
    input_cost = (input_tokens / 1_000_000) * pricing.input
    output_cost = (output_tokens / 1_000_000) * pricing.output
    return CostCalculation(
        input_cost=round(input_cost, 6),
        output_cost=round(output_cost, 6),
        total_cost=round(input_cost + output_cost, 6),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    char_based = math.ceil(len(text) / 4)
    word_based = math.ceil(len(text.split()) * 1.3)
    return math.ceil((char_based + word_based) / 2)


def check_token_budget(
    document_tokens: int,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    safety_buffer: int = DEFAULT_SAFETY_BUFFER,
) -> TokenBudgetCheck:
    """Decide whether a document fits one extraction call or must be segmented."""
    available = max_tokens - safety_buffer
    fits = document_tokens <= available

    if fits:
        recommendation = "Process normally"
    elif document_tokens <= available * 2:
        recommendation = "Split into 2 segments"
    else:
        recommendation = f"Split into {math.ceil(document_tokens / available)} segments"

    return TokenBudgetCheck(
        fits=fits,
        available_tokens=available,
        document_tokens=document_tokens,
        recommendation=recommendation,
    )


def calculate_rule_library_savings(
    library_hits: int,
    avg_tokens_per_segment: int = DEFAULT_TOKENS_PER_SEGMENT,
    model: str = "gpt-4o",
) -> float:
    """
    Spend avoided by matching segments against the rule library instead of
    calling the LLM.  Output is assumed to be ~10% of input for a segment.
    """
    pricing = _pricing(model)
    per_segment = (avg_tokens_per_segment / 1_000_000) * (pricing.input + pricing.output * 0.1)
    return library_hits * per_segment
