"""Quality validation: render, screenshot, and score against the original page."""

import logging
import math
import re
from typing import Any

from pydantic import ValidationError

from ..errors import StructuredOutputError
from ..preview.renderer import Screenshotter, build_preview_html
from ..prompts import render
from ..utils.parsing import parse_json_object
from .base_agent import BaseAgent
from .gateway import Capability
from .models import GeneratedOutput, Issue, Metrics, Screenshots, ValidationResult

logger = logging.getLogger(__name__)

# Weights in tenths: 0.4 structural, 0.3 visual, 0.2 layout, 0.1 color
WEIGHTS = {
    "structural_similarity": 4,
    "visual_similarity": 3,
    "layout_accuracy": 2,
    "color_accuracy": 1,
}

_METRIC_KEYS = {
    "structural_similarity": ("structuralSimilarity", "structural_similarity", "structural"),
    "visual_similarity": ("visualSimilarity", "visual_similarity", "visual"),
    "layout_accuracy": ("layoutAccuracy", "layout_accuracy", "layout"),
    "color_accuracy": ("colorAccuracy", "color_accuracy", "color"),
}

_INT_RE = re.compile(r"\d+")


def coerce_metric(value: Any, name: str) -> int:
    """Finite numbers pass through; strings yield their first embedded integer; else 0."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return min(max(int(value + 0.5), 0), 100)
    if isinstance(value, str):
        match = _INT_RE.search(value)
        if match:
            return min(int(match.group(0)), 100)
    logger.warning("[QA] Invalid %s value: %r", name, value)
    return 0


def composite_score(metrics: Metrics) -> int:
    """Weighted blend of the four sub-metrics, rounded half up."""
    tenths = sum(getattr(metrics, field) * weight for field, weight in WEIGHTS.items())
    return (tenths + 5) // 10


def parse_metrics(raw: dict) -> Metrics:
    values = {}
    for field, keys in _METRIC_KEYS.items():
        value = next((raw[k] for k in keys if k in raw), None)
        values[field] = coerce_metric(value, keys[0])
    metrics = Metrics(**values)
    if not any(values.values()):
        logger.warning("[QA] All metrics parsed to 0, likely a parsing issue. Raw metrics: %s", raw)
    return metrics


def parse_issues(raw: Any) -> list[Issue]:
    if not isinstance(raw, list):
        return []
    issues = []
    for item in raw:
        try:
            issues.append(Issue.model_validate(item))
        except ValidationError:
            logger.warning("[QA] Dropping malformed issue: %r", item)
    return issues


class QualityValidator(BaseAgent):
    """
    Scores generated output against the original page with a vision model.

    Args:
        gateway: Gateway for vision calls
        screenshotter: Captures both the preview and the original at one viewport
        pass_threshold: Minimum composite score that counts as passing
    """

    step_name = "qa"

    def __init__(
        self,
        gateway,
        screenshotter: Screenshotter,
        pass_threshold: int = 90,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ):
        super().__init__(gateway, temperature=temperature, max_tokens=max_tokens)
        self.screenshotter = screenshotter
        self.pass_threshold = pass_threshold

    async def execute(self, output: GeneratedOutput, original_url: str) -> ValidationResult:
        logger.info("[QA] Rendering generated code...")
        generated = await self.screenshotter.capture_html(build_preview_html(output))
        original = await self.screenshotter.capture_url(original_url)

        logger.info("[QA] Comparing screenshots...")
        text = await self._ask(
            render("qa_rubric"),
            images=[original, generated],
            capability=Capability.VISION,
        )
        data = parse_json_object(text)
        raw_metrics = data.get("metrics")
        if not isinstance(raw_metrics, dict):
            raise StructuredOutputError(
                f"Vision response missing metrics field. Response keys: {', '.join(data) or 'none'}",
                raw=text,
            )

        metrics = parse_metrics(raw_metrics)
        score = composite_score(metrics)
        result = ValidationResult(
            score=score,
            passed=score >= self.pass_threshold,
            metrics=metrics,
            screenshots=Screenshots(original=original, generated=generated),
            issues=parse_issues(data.get("issues")),
            overall_assessment=data.get("overallAssessment") or data.get("overall_assessment"),
        )

        logger.info(
            "[QA] Score %d/100 (%s): structural=%d visual=%d layout=%d color=%d, %d issues",
            result.score,
            "passed" if result.passed else "failed",
            metrics.structural_similarity,
            metrics.visual_similarity,
            metrics.layout_accuracy,
            metrics.color_accuracy,
            len(result.issues),
        )
        return result
