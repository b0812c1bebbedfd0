"""Strict structured-output parsing for model responses."""

import json
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import StructuredOutputError

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n(.*)\n\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove one markdown code fence wrapping the whole response, if present."""
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def parse_json_object(text: str) -> dict:
    """Parse a model response that must be a single JSON object.

    Raises:
        StructuredOutputError: On empty text, invalid JSON or a non-object payload.
    """
    if not text or not text.strip():
        raise StructuredOutputError("Model returned an empty response", raw=text)
    body = strip_code_fence(text)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise StructuredOutputError(f"Response is not valid JSON: {e}", raw=text) from e
    if not isinstance(data, dict):
        raise StructuredOutputError(
            f"Expected a JSON object, got {type(data).__name__}", raw=text
        )
    return data


def parse_model(text: str, model: type[ModelT]) -> ModelT:
    """Parse and validate a model response against a pydantic schema."""
    data = parse_json_object(text)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Response does not match {model.__name__}: {e.error_count()} validation error(s)",
            raw=text,
        ) from e
