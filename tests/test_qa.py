import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from sitecloner.agents.models import Metrics
from sitecloner.agents.qa import QualityValidator, coerce_metric, composite_score, parse_issues, parse_metrics
from sitecloner.errors import StructuredOutputError
from tests.conftest import make_gateway, make_output


def fake_screenshotter():
    shots = MagicMock()
    shots.capture_html = AsyncMock(return_value="R0VORVJBVEVE")
    shots.capture_url = AsyncMock(return_value="T1JJR0lOQUw=")
    return shots


@pytest.mark.parametrize(
    "value, expected",
    [
        (87, 87),
        (87.5, 88),
        ("85/100", 85),
        ("about 70%", 70),
        ("n/a", 0),
        (None, 0),
        (150, 100),
        (-3, 0),
        (True, 0),
        (float("nan"), 0),
        (float("inf"), 0),
        (float("-inf"), 0),
    ],
)
def test_coerce_metric(value, expected):
    assert coerce_metric(value, "visualSimilarity") == expected


def test_composite_score_weights():
    metrics = Metrics(structural_similarity=95, visual_similarity=90, layout_accuracy=85, color_accuracy=80)
    assert composite_score(metrics) == 90


def test_composite_score_rounds_half_up():
    # 0.4*90 + 0.3*90 + 0.2*89 + 0.1*87 = 89.5
    metrics = Metrics(structural_similarity=90, visual_similarity=90, layout_accuracy=89, color_accuracy=87)
    assert composite_score(metrics) == 90


def test_parse_metrics_accepts_key_variants():
    metrics = parse_metrics({"structural_similarity": 80, "visualSimilarity": "70", "layout": 60.4})
    assert metrics == Metrics(structural_similarity=80, visual_similarity=70, layout_accuracy=60, color_accuracy=0)


def test_parse_metrics_zeroes_non_finite_json_literals():
    raw = json.loads('{"structuralSimilarity": NaN, "visualSimilarity": Infinity, "layoutAccuracy": 80}')
    metrics = parse_metrics(raw)
    assert metrics == Metrics(structural_similarity=0, visual_similarity=0, layout_accuracy=80, color_accuracy=0)


def test_parse_issues_drops_malformed():
    issues = parse_issues(
        [
            {"severity": "HIGH", "category": "colour", "description": "Wrong background", "suggestion": "bg-white"},
            {"severity": "minor"},
            "not an issue",
        ]
    )
    assert len(issues) == 1
    assert issues[0].severity == "minor"
    assert issues[0].category == "component"


@pytest.mark.asyncio
async def test_validator_scores_and_passes():
    reply = {
        "metrics": {"structuralSimilarity": 95, "visualSimilarity": 90, "layoutAccuracy": 85, "colorAccuracy": 80},
        "issues": [{"severity": "minor", "category": "spacing", "description": "Gap", "suggestion": "gap-4"}],
        "overallAssessment": "Close match",
    }
    gateway, provider = make_gateway(lambda model, prompt: json.dumps(reply))
    shots = fake_screenshotter()

    result = await QualityValidator(gateway, shots).execute(make_output(), "https://example.com")

    assert result.score == 90
    assert result.passed
    assert result.overall_assessment == "Close match"
    assert result.screenshots.original == "T1JJR0lOQUw="
    assert provider.calls[0][0] == "vision-a"
    shots.capture_url.assert_awaited_once_with("https://example.com")
    html = shots.capture_html.await_args.args[0]
    assert "<div id=\"root\"></div>" in html


@pytest.mark.asyncio
async def test_validator_below_threshold():
    reply = {"metrics": {"structuralSimilarity": 72, "visualSimilarity": 72, "layoutAccuracy": 72, "colorAccuracy": 72}}
    gateway, _ = make_gateway(lambda model, prompt: json.dumps(reply))

    result = await QualityValidator(gateway, fake_screenshotter()).execute(make_output(), "https://example.com")

    assert result.score == 72
    assert not result.passed
    assert result.issues == []


@pytest.mark.asyncio
async def test_validator_requires_metrics():
    gateway, _ = make_gateway(lambda model, prompt: '{"score": 95}')
    with pytest.raises(StructuredOutputError):
        await QualityValidator(gateway, fake_screenshotter()).execute(make_output(), "https://example.com")
