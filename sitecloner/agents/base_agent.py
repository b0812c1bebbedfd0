"""Base agent class for model-backed pipeline stages.

All agents route their calls through a shared ModelGateway so that
candidate fallback, error classification and cost tracking behave the
same in every stage.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .gateway import Capability, ModelGateway, PromptPayload


class BaseAgent(ABC):
    """
    Base class for all pipeline agents.

    All subclasses should implement the execute() method.
    """

    step_name = "agent"

    def __init__(
        self,
        gateway: ModelGateway,
        temperature: float = 0.3,
        max_tokens: int = 8192,
    ):
        """
        Initialize the base agent.

        Args:
            gateway: Gateway used for every model call
            temperature: Sampling temperature
            max_tokens: Maximum tokens for response
        """
        self.gateway = gateway
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def _ask(
        self,
        prompt: str,
        system: Optional[str] = None,
        images: Optional[list[str]] = None,
        capability: Capability = Capability.TEXT,
    ) -> str:
        """Send one prompt through the gateway and return the response text."""
        payload = PromptPayload(
            user=prompt,
            system=system,
            images=images or [],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return await self.gateway.call(payload, capability, step=self.step_name)

    @abstractmethod
    async def execute(self, *args: Any, **kwargs: Any) -> Any:
        """
        Execute the agent's primary function.

        Must be implemented by all subclasses.
        """
        pass
