import pytest

from sitecloner.agents.gateway import Capability, Completion, GatewayConfig, ModelGateway
from sitecloner.agents.models import ComponentPlan, ComponentSpec, GeneratedOutput, Metrics, ValidationResult
from sitecloner.scout.models import (
    AnimationDescriptor,
    AssetDescriptor,
    ComputedStyleRecord,
    DomNode,
    ExtractionSnapshot,
    LayoutBox,
)
from sitecloner.store.job_store import InMemoryJobStateStore


class ProviderHTTPError(Exception):
    """Provider-style exception carrying an HTTP status code."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def user_text(messages: list[dict]) -> str:
    content = messages[-1]["content"]
    if isinstance(content, list):
        return content[0]["text"]
    return content


class FakeProvider:
    """Provider whose responses come from ``handler(model, prompt)``; exceptions returned are raised."""

    def __init__(self, handler):
        self.handler = handler
        self.calls: list[tuple[str, str]] = []

    async def complete(self, model, messages, max_tokens, temperature):
        prompt = user_text(messages)
        self.calls.append((model, prompt))
        result = self.handler(model, prompt)
        if isinstance(result, BaseException):
            raise result
        return Completion(text=result, model=model, input_tokens=100, output_tokens=20, cost_usd=0.01)


def make_gateway(handler, text=("text-a", "text-b"), vision=("vision-a",), costs=None):
    provider = FakeProvider(handler)
    config = GatewayConfig(candidates={Capability.TEXT: tuple(text), Capability.VISION: tuple(vision)})
    return ModelGateway(config, provider, costs), provider


def make_snapshot(styles: int = 3, layout: int = 2, animations: int = 1, assets: int = 1) -> ExtractionSnapshot:
    dom = DomNode(
        tag="body",
        selector="body",
        children=[
            DomNode(
                tag="section",
                selector=f"section:nth-child({i})",
                children=[DomNode(tag="div", children=[DomNode(tag="span")]) for _ in range(5)],
            )
            for i in range(12)
        ],
    )
    return ExtractionSnapshot(
        url="https://example.com",
        dom=dom,
        computed_styles=[ComputedStyleRecord(selector=f".s{i}", styles={"color": "red"}) for i in range(styles)],
        layout=[LayoutBox(selector=f".l{i}", width=100, height=20) for i in range(layout)],
        animations=[
            AnimationDescriptor(selector=f".a{i}", type="transition", properties={"transition": "all 0.3s"})
            for i in range(animations)
        ],
        assets=[
            AssetDescriptor(
                original_url=f"https://example.com/img/{i}.png",
                local_path=f"/temp/assets/job-1/img-{i:03d}-abc.png",
            )
            for i in range(assets)
        ],
    )


def make_plan() -> ComponentPlan:
    return ComponentPlan(components=[ComponentSpec(name="Hero", type="layout")])


def make_output(extra: dict = None) -> GeneratedOutput:
    files = {"App.tsx": "export default function App() { return <div>Hello</div>; }"}
    files.update(extra or {})
    return GeneratedOutput(files=files)


def make_result(score: int, passed: bool = None, issues=None) -> ValidationResult:
    return ValidationResult(
        score=score,
        passed=score >= 90 if passed is None else passed,
        metrics=Metrics(
            structural_similarity=score,
            visual_similarity=score,
            layout_accuracy=score,
            color_accuracy=score,
        ),
        issues=issues or [],
    )


@pytest.fixture
def snapshot():
    return make_snapshot()


@pytest.fixture
def store():
    return InMemoryJobStateStore()
