"""Model gateway: ordered multi-provider fallback with error classification.

Every model call in the pipeline goes through ``ModelGateway.call``. Each
capability (plain text, or paired-image comparison) maps to a fixed, ordered
list of candidate models. Quota and input-size failures fall through to the
next candidate; anything else aborts the call. Candidate order never changes
at runtime.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

import litellm
import yaml

from ..errors import CandidatesExhaustedError, ErrorKind, ProviderFatalError
from ..utils.cost_tracker import PipelineCosts, usage_from_response
from ..utils.llm_client import acomplete, image_part

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("429", "quota", "rate limit", "ratelimit", "resource_exhausted", "resource exhausted")
_SIZE_MARKERS = ("token", "exceeds", "context length", "context window", "too large", "1048576")


class Capability(str, Enum):
    TEXT = "text"
    VISION = "vision"


@dataclass
class PromptPayload:
    """A single request: optional system prompt, user prompt and attached images."""

    user: str
    system: Optional[str] = None
    images: list[str] = field(default_factory=list)  # base64 PNG
    max_tokens: int = 8192
    temperature: float = 0.3

    def to_messages(self) -> list[dict]:
        messages = []
        if self.system:
            messages.append({"role": "system", "content": self.system})
        if self.images:
            content = [{"type": "text", "text": self.user}]
            content.extend(image_part(img) for img in self.images)
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": self.user})
        return messages


@dataclass
class Completion:
    """Text returned by a provider plus its usage."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


class ModelProvider(Protocol):
    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
        temperature: float,
    ) -> Completion: ...


class LiteLLMProvider:
    """Provider backed by LiteLLM, which routes by model id prefix."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        text, response = await acomplete(model, messages, max_tokens, temperature, timeout=self.timeout)
        input_tokens, output_tokens, cost = usage_from_response(response, model)
        return Completion(
            text=text,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Ordered model candidates per capability."""

    candidates: dict[Capability, tuple[str, ...]]

    def for_capability(self, capability: Capability) -> tuple[str, ...]:
        return self.candidates.get(capability, ())

    @classmethod
    def from_yaml(cls, path: Path) -> "GatewayConfig":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(
            candidates={
                cap: tuple(data.get(cap.value) or ())
                for cap in Capability
            }
        )

    @classmethod
    def from_settings(cls, settings) -> "GatewayConfig":
        """Build from settings; a models.yaml file overrides the inline lists."""
        models_file = getattr(settings, "models_file", None)
        if models_file and Path(models_file).exists():
            config = cls.from_yaml(Path(models_file))
            if all(config.candidates.values()):
                return config
            logger.warning("[GATEWAY] %s is missing a capability, using settings lists", models_file)
        return cls(
            candidates={
                Capability.TEXT: tuple(settings.text_models),
                Capability.VISION: tuple(settings.vision_models),
            }
        )


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a provider exception to QUOTA, INPUT_SIZE or OTHER."""
    if isinstance(exc, litellm.RateLimitError):
        return ErrorKind.QUOTA
    if isinstance(exc, litellm.ContextWindowExceededError):
        return ErrorKind.INPUT_SIZE

    status = getattr(exc, "status_code", None)
    message = str(exc).lower()

    if status == 429 or any(marker in message for marker in _QUOTA_MARKERS):
        return ErrorKind.QUOTA
    if status == 413:
        return ErrorKind.INPUT_SIZE
    if (status == 400 or "400" in message) and any(marker in message for marker in _SIZE_MARKERS):
        return ErrorKind.INPUT_SIZE
    return ErrorKind.OTHER


class ModelGateway:
    """
    Calls models for a capability, falling back through the candidate list.

    Args:
        config: Ordered candidates per capability
        provider: Provider that performs the actual call (default: LiteLLM)
        costs: Optional per-job cost accumulator
    """

    def __init__(
        self,
        config: GatewayConfig,
        provider: Optional[ModelProvider] = None,
        costs: Optional[PipelineCosts] = None,
    ):
        self.config = config
        self.provider = provider or LiteLLMProvider()
        self.costs = costs

    def with_costs(self, costs: PipelineCosts) -> "ModelGateway":
        """Return a gateway sharing this config and provider that records into ``costs``."""
        return ModelGateway(self.config, self.provider, costs)

    async def call(
        self,
        payload: PromptPayload,
        capability: Capability,
        step: Optional[str] = None,
    ) -> str:
        """Run ``payload`` against the first candidate that accepts it.

        Raises:
            ProviderFatalError: A candidate failed with a non-recoverable error.
            CandidatesExhaustedError: Every candidate hit a quota or size limit.
        """
        step = step or capability.value
        messages = payload.to_messages()
        failures: list[tuple[str, ErrorKind, str]] = []

        for model in self.config.for_capability(capability):
            try:
                completion = await self.provider.complete(
                    model=model,
                    messages=messages,
                    max_tokens=payload.max_tokens,
                    temperature=payload.temperature,
                )
            except Exception as e:
                kind = classify_error(e)
                if not kind.recoverable:
                    logger.error("[GATEWAY] %s: %s failed: %s", step, model, e)
                    raise ProviderFatalError(model, e) from e
                logger.warning("[GATEWAY] %s: %s hit %s limit, trying next candidate", step, model, kind.value)
                failures.append((model, kind, str(e)))
                continue

            if not completion.text.strip():
                logger.error("[GATEWAY] %s: %s returned an empty response", step, model)
                raise ProviderFatalError(model, ValueError("empty response"))

            if self.costs is not None:
                self.costs.add_usage(
                    step,
                    completion.model,
                    completion.input_tokens,
                    completion.output_tokens,
                    completion.cost_usd,
                )
            logger.info("[GATEWAY] %s served by %s", step, completion.model)
            return completion.text

        raise CandidatesExhaustedError(capability.value, failures)
