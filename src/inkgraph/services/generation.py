"""Generation service contract and the Mirascope-backed adapter.

The orchestration engine never calls a model directly. Agents call a
``GenerationService``; failures surface as ``RateLimited``,
``ContentFiltered`` or ``Unavailable`` so the FailureClassifier can react.

Example:
    ```python
    service = openai_generation("gpt-4o-mini")
    text = await service.generate(build_messages(
        system="You are a news writer.",
        user="Write a headline about ...",
    ))
    ```
"""

from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union, runtime_checkable

import openai as openai_sdk
from mirascope.core import BaseMessageParam, openai

from inkgraph.core.errors import ContentFiltered, RateLimited, Unavailable
from inkgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.SERVICES)

Prompt = Union[str, List[BaseMessageParam]]


@runtime_checkable
class GenerationService(Protocol):
    async def generate(self, prompt: Prompt) -> str: ...


def build_messages(system: str, user: str) -> List[BaseMessageParam]:
    """Compose a system + user prompt."""
    messages = []
    if system:
        messages.append(BaseMessageParam(role="system", content=system))
    messages.append(BaseMessageParam(role="user", content=user))
    return messages


def estimate_tokens(text: str) -> int:
    """Rough token count used for budget accounting when the provider reports none."""
    return max(1, len(text) // 4) if text else 0


class MirascopeGeneration:
    """Generation service over a Mirascope call.

    Args:
        call: Coroutine taking a message list and returning a Mirascope call
            response (or plain text)
    """

    def __init__(self, call: Callable[[List[BaseMessageParam]], Awaitable[Any]]):
        self._call = call

    async def generate(self, prompt: Prompt) -> str:
        messages = prompt if isinstance(prompt, list) else [BaseMessageParam(role="user", content=prompt)]
        try:
            response = await self._call(messages)
        except openai_sdk.RateLimitError as e:
            raise RateLimited(str(e)) from e
        except (openai_sdk.APITimeoutError, openai_sdk.APIConnectionError, openai_sdk.InternalServerError) as e:
            raise Unavailable(str(e)) from e
        except openai_sdk.BadRequestError as e:
            if "content_filter" in str(e) or "content_policy" in str(e):
                raise ContentFiltered(str(e)) from e
            raise

        finish_reasons: Optional[List[str]] = getattr(response, "finish_reasons", None)
        if finish_reasons and "content_filter" in finish_reasons:
            raise ContentFiltered("generation stopped by content filter")

        text = getattr(response, "content", response)
        logger.debug(f"Generated {len(text or '')} characters")
        return text or ""


def openai_generation(model: str = "gpt-4o-mini", **call_params: Any) -> MirascopeGeneration:
    """Build a generation service on Mirascope's OpenAI provider."""

    @openai.call(model, call_params=call_params or None)
    async def _call(messages: List[BaseMessageParam]) -> List[BaseMessageParam]:
        return messages

    return MirascopeGeneration(_call)
