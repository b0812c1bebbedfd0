"""Thin async wrapper over LiteLLM.

LiteLLM routes on the model id prefix (``gemini/…``, ``gpt-…``, ``claude-…``)
and reads provider keys from the environment. Messages use the OpenAI chat
format; screenshots travel as base64 data URLs inside ``image_url`` parts.
"""

import logging
from typing import Any, Optional

import litellm

litellm.set_verbose = False
logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def image_part(png_base64: str) -> dict:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/png;base64,{png_base64}"},
    }


async def acomplete(
    model: str,
    messages: list[dict],
    max_tokens: int,
    temperature: float,
    timeout: Optional[float] = None,
) -> tuple[str, Any]:
    """Run one chat completion and return ``(text, raw_response)``.

    Provider exceptions propagate unchanged so the gateway can classify them.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if timeout:
        kwargs["timeout"] = timeout

    response = await litellm.acompletion(**kwargs)
    return response.choices[0].message.content or "", response
