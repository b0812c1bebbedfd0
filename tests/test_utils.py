import logging

import pytest

from sitecloner.prompts import render
from sitecloner.utils.cost_tracker import PipelineCosts, fallback_cost
from sitecloner.utils.logging import ContextFormatter


def test_render_substitutes_and_keeps_braces():
    text = render("architect_compact", processed=4, transcript="notes")
    assert "(4 chunks processed)" in text
    assert "notes" in text


def test_render_requires_every_placeholder():
    with pytest.raises(KeyError):
        render("architect_compact", processed=4)


def test_qa_rubric_has_no_placeholders():
    assert "structuralSimilarity" in render("qa_rubric")


def test_formatter_fills_missing_context():
    formatter = ContextFormatter("[job=%(job_id)s stage=%(stage)s] %(message)s")
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
    assert formatter.format(record) == "[job=- stage=-] hello"

    record.job_id = "job-1"
    record.stage = "qa"
    assert formatter.format(record) == "[job=job-1 stage=qa] hello"


def test_costs_accumulate_per_step():
    costs = PipelineCosts()
    costs.add_usage("qa", "vision-a", 100, 10, 0.5)
    costs.add_usage("qa", "vision-b", 50, 5, 0.25)

    step = costs.steps["qa"]
    assert step.call_count == 2
    assert step.model == "vision-b"
    assert step.calls_by_model == {"vision-a": 1, "vision-b": 1}
    assert costs.total_tokens() == (150, 15)
    assert costs.total_cost() == pytest.approx(0.75)


def test_fallback_cost_by_model_family():
    assert fallback_cost("gemini/gemini-2.5-pro", 1_000_000, 0) == pytest.approx(1.25)
    assert fallback_cost("gpt-4o", 0, 1_000_000) == pytest.approx(10.0)
    assert fallback_cost("unknown/model", 1000, 1000) == 0.0


def test_unknown_template():
    with pytest.raises(FileNotFoundError):
        render("no_such_prompt")
