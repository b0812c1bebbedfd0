"""Exception hierarchy shared by every pipeline stage."""

from enum import Enum
from typing import Optional


class CloneError(Exception):
    """Base class for all sitecloner errors."""


class InvalidUrlError(CloneError, ValueError):
    """Submitted URL is not a well-formed http(s) URL."""


class ErrorKind(str, Enum):
    """Classification of a provider failure."""

    QUOTA = "quota"
    INPUT_SIZE = "input_size"
    OTHER = "other"

    @property
    def recoverable(self) -> bool:
        return self is not ErrorKind.OTHER


class ProviderError(CloneError):
    """Base class for model provider failures surfaced by the gateway."""


class ProviderFatalError(ProviderError):
    """A provider raised an error that must not fall through to the next candidate."""

    def __init__(self, model: str, cause: BaseException):
        super().__init__(f"{model} failed: {cause}")
        self.model = model
        self.cause = cause


class CandidatesExhaustedError(ProviderError):
    """Every candidate for a capability failed with a recoverable error."""

    def __init__(self, capability: str, failures: list[tuple[str, ErrorKind, str]]):
        tried = ", ".join(f"{model} ({kind.value})" for model, kind, _ in failures)
        super().__init__(f"All {capability} candidates exhausted: {tried or 'none configured'}")
        self.capability = capability
        self.failures = failures

    @property
    def kinds(self) -> list[ErrorKind]:
        return [kind for _, kind, _ in self.failures]

    @property
    def input_size_limited(self) -> bool:
        """True when at least one candidate rejected the request for its size."""
        return ErrorKind.INPUT_SIZE in self.kinds


class StructuredOutputError(CloneError):
    """Model response could not be parsed into the expected structure."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class StageContractError(CloneError):
    """A stage produced output that violates its contract."""


class InfrastructureError(CloneError):
    """Browser, renderer or store failure."""


class IllegalTransitionError(CloneError):
    """A state transition was attempted that the job lifecycle forbids."""
