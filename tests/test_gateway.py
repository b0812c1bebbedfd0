from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import litellm
import pytest

from sitecloner.agents.gateway import Capability, GatewayConfig, LiteLLMProvider, PromptPayload, classify_error
from sitecloner.errors import CandidatesExhaustedError, ErrorKind, ProviderFatalError
from sitecloner.utils.cost_tracker import PipelineCosts
from tests.conftest import ProviderHTTPError, make_gateway


def test_classify_quota_by_status():
    assert classify_error(ProviderHTTPError("Too many requests", 429)) == ErrorKind.QUOTA


def test_classify_quota_by_message():
    assert classify_error(Exception("RESOURCE_EXHAUSTED: quota exceeded")) == ErrorKind.QUOTA


def test_classify_input_size():
    assert classify_error(ProviderHTTPError("request too large", 413)) == ErrorKind.INPUT_SIZE
    assert (
        classify_error(ProviderHTTPError("400 input token count exceeds the maximum", 400))
        == ErrorKind.INPUT_SIZE
    )


def test_classify_litellm_exceptions():
    rate = litellm.RateLimitError(message="slow down", llm_provider="gemini", model="gemini/x")
    assert classify_error(rate) == ErrorKind.QUOTA


def test_classify_other():
    assert classify_error(ProviderHTTPError("invalid api key", 401)) == ErrorKind.OTHER
    assert classify_error(ValueError("boom")) == ErrorKind.OTHER


@pytest.mark.asyncio
async def test_first_candidate_serves():
    gateway, provider = make_gateway(lambda model, prompt: "ok")
    text = await gateway.call(PromptPayload(user="hi"), Capability.TEXT)
    assert text == "ok"
    assert [m for m, _ in provider.calls] == ["text-a"]


@pytest.mark.asyncio
async def test_quota_falls_through_to_next_candidate():
    def handler(model, prompt):
        if model == "text-a":
            return ProviderHTTPError("rate limit", 429)
        return "from b"

    costs = PipelineCosts()
    gateway, provider = make_gateway(handler, costs=costs)
    text = await gateway.call(PromptPayload(user="hi"), Capability.TEXT, step="architect")

    assert text == "from b"
    assert [m for m, _ in provider.calls] == ["text-a", "text-b"]
    assert costs.steps["architect"].model == "text-b"
    assert costs.steps["architect"].call_count == 1


@pytest.mark.asyncio
async def test_other_error_stops_fallback():
    gateway, provider = make_gateway(lambda model, prompt: ProviderHTTPError("bad request", 401))
    with pytest.raises(ProviderFatalError) as exc_info:
        await gateway.call(PromptPayload(user="hi"), Capability.TEXT)
    assert exc_info.value.model == "text-a"
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_all_candidates_exhausted():
    def handler(model, prompt):
        if model == "text-a":
            return ProviderHTTPError("quota", 429)
        return ProviderHTTPError("too large", 413)

    gateway, _ = make_gateway(handler)
    with pytest.raises(CandidatesExhaustedError) as exc_info:
        await gateway.call(PromptPayload(user="hi"), Capability.TEXT)

    err = exc_info.value
    assert err.kinds == [ErrorKind.QUOTA, ErrorKind.INPUT_SIZE]
    assert err.input_size_limited


@pytest.mark.asyncio
async def test_empty_response_is_fatal():
    gateway, _ = make_gateway(lambda model, prompt: "   ")
    with pytest.raises(ProviderFatalError):
        await gateway.call(PromptPayload(user="hi"), Capability.TEXT)


@pytest.mark.asyncio
async def test_vision_uses_vision_candidates():
    gateway, provider = make_gateway(lambda model, prompt: "seen")
    await gateway.call(PromptPayload(user="compare", images=["aGk="]), Capability.VISION)
    assert provider.calls[0][0] == "vision-a"


def test_payload_messages_with_images():
    messages = PromptPayload(user="compare", system="sys", images=["aGk="]).to_messages()
    assert messages[0] == {"role": "system", "content": "sys"}
    content = messages[1]["content"]
    assert content[0] == {"type": "text", "text": "compare"}
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_config_from_yaml(tmp_path):
    path = tmp_path / "models.yaml"
    path.write_text("text:\n  - a\n  - b\nvision:\n  - c\n")
    config = GatewayConfig.from_yaml(path)
    assert config.for_capability(Capability.TEXT) == ("a", "b")
    assert config.for_capability(Capability.VISION) == ("c",)


@pytest.mark.asyncio
async def test_litellm_provider_reports_usage():
    response = SimpleNamespace(usage=SimpleNamespace(prompt_tokens=1_000_000, completion_tokens=0))
    with patch("sitecloner.agents.gateway.acomplete", AsyncMock(return_value=("hello", response))), patch(
        "litellm.completion_cost", side_effect=ValueError("no price")
    ):
        completion = await LiteLLMProvider(timeout=5).complete("gemini/gemini-2.5-pro", [], 10, 0.0)

    assert completion.text == "hello"
    assert completion.input_tokens == 1_000_000
    assert completion.cost_usd == pytest.approx(1.25)
