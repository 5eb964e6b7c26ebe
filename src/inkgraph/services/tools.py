"""Tool registry.

Tools are registered by name, either as Mirascope ``BaseTool`` classes
(instantiated with the call parameters, then ``call()``-ed) or as plain
coroutine functions taking keyword parameters. Every failure surfaces as a
typed ``ToolError``:

- timeout: the call did not finish within the registry timeout
- unreachable: the tool is unknown or its backend could not be reached
- invalid_response: bad parameters or a response of the wrong shape
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from mirascope.core import BaseTool
from pydantic import ValidationError

from inkgraph.core.errors import ToolError, ToolErrorKind
from inkgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.SERVICES)

ToolImpl = Union[Type[BaseTool], Callable[..., Awaitable[Any]]]


class ToolRegistry:
    """Named tools with a per-call timeout."""

    def __init__(self, timeout: Optional[float] = 30.0):
        self.timeout = timeout
        self._tools: Dict[str, ToolImpl] = {}

    def register(self, name: str, tool: ToolImpl) -> None:
        self._tools[name] = tool
        logger.info(f"Registered tool: {name}")

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def _call(self, name: str, tool: ToolImpl, params: Dict[str, Any]) -> Any:
        if inspect.isclass(tool) and issubclass(tool, BaseTool):
            try:
                instance = tool(**params)
            except ValidationError as e:
                raise ToolError(name, ToolErrorKind.INVALID_RESPONSE, f"bad parameters: {e}") from e
            result = instance.call()
            return await result if inspect.isawaitable(result) else result
        return await tool(**params)

    async def invoke(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke tool ``name`` with ``params``."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolError(name, ToolErrorKind.UNREACHABLE, "no such tool registered")

        logger.info(f"[Calling Tool '{name}' with args {params or {}}]")
        try:
            result = await asyncio.wait_for(self._call(name, tool, params or {}), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolError(name, ToolErrorKind.TIMEOUT, f"no answer within {self.timeout}s") from e
        except (ConnectionError, OSError) as e:
            raise ToolError(name, ToolErrorKind.UNREACHABLE, str(e)) from e

        logger.debug(f"Tool result: {result}")
        return result

    async def invoke_json(self, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke a tool that must answer with a mapping."""
        result = await self.invoke(name, params)
        if not isinstance(result, dict):
            raise ToolError(name, ToolErrorKind.INVALID_RESPONSE, f"expected a mapping, got {type(result).__name__}")
        return result
