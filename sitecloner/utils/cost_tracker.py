"""Token and cost accounting for one clone job.

The gateway records every served call against the pipeline step that made
it. Because a step can fall back across providers mid-job, each step keeps a
per-model call count rather than a single model name.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import litellm

logger = logging.getLogger(__name__)

# USD per 1M tokens (input, output), used only when litellm has no price
_FALLBACK_PRICES = {
    "gemini-2.5-pro": (1.25, 10.0),
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-pro": (1.25, 5.0),
    "gpt-4o": (2.50, 10.0),
}


@dataclass
class StepCost:
    """Usage of one pipeline step (architect, coder, qa)."""

    step_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    calls_by_model: dict[str, int] = field(default_factory=dict)

    @property
    def call_count(self) -> int:
        return sum(self.calls_by_model.values())

    @property
    def model(self) -> str:
        """Model that served the most recent call."""
        return next(reversed(self.calls_by_model), "")


@dataclass
class PipelineCosts:
    """Per-job usage, keyed by step."""

    steps: dict[str, StepCost] = field(default_factory=dict)

    def add_usage(
        self,
        step_name: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
    ) -> None:
        step = self.steps.setdefault(step_name, StepCost(step_name))
        step.input_tokens += input_tokens
        step.output_tokens += output_tokens
        step.cost_usd += cost_usd
        # Re-insert so the latest serving model sorts last
        step.calls_by_model[model] = step.calls_by_model.pop(model, 0) + 1

    def total_cost(self) -> float:
        return sum(s.cost_usd for s in self.steps.values())

    def total_tokens(self) -> tuple[int, int]:
        """Return (input_tokens, output_tokens) across all steps."""
        return (
            sum(s.input_tokens for s in self.steps.values()),
            sum(s.output_tokens for s in self.steps.values()),
        )


def fallback_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate cost from the static price table; 0.0 for unknown models."""
    name = model.split("/")[-1].lower()
    for prefix, (input_price, output_price) in _FALLBACK_PRICES.items():
        if name.startswith(prefix):
            return (input_tokens * input_price + output_tokens * output_price) / 1_000_000
    return 0.0


def usage_from_response(response: Any, model: str) -> tuple[int, int, float]:
    """Return (input_tokens, output_tokens, cost_usd) for a litellm response."""
    usage = getattr(response, "usage", None)
    input_tokens = getattr(usage, "prompt_tokens", 0) or 0
    output_tokens = getattr(usage, "completion_tokens", 0) or 0

    try:
        cost = litellm.completion_cost(completion_response=response) or 0.0
    except Exception as e:
        logger.debug("[GATEWAY] No litellm price for %s (%s), using fallback table", model, e)
        cost = fallback_cost(model, input_tokens, output_tokens)
    return input_tokens, output_tokens, cost
