"""Tests for the Mirascope generation adapter's error mapping."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from inkgraph.core.errors import ContentFiltered, RateLimited, Unavailable
from inkgraph.services.generation import MirascopeGeneration, build_messages, estimate_tokens

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def raising(error):
    async def call(messages):
        raise error
    return call


class TestMirascopeGeneration:
    async def test_returns_content(self):
        seen = []

        async def call(messages):
            seen.append(messages)
            return SimpleNamespace(content="Council Approves Budget", finish_reasons=["stop"])

        text = await MirascopeGeneration(call).generate(build_messages("system", "user"))
        assert text == "Council Approves Budget"
        assert [m.role for m in seen[0]] == ["system", "user"]

    async def test_plain_prompt(self):
        async def call(messages):
            return SimpleNamespace(content=messages[0].content, finish_reasons=None)

        assert await MirascopeGeneration(call).generate("hello") == "hello"

    async def test_rate_limit(self):
        error = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=REQUEST), body=None,
        )
        with pytest.raises(RateLimited):
            await MirascopeGeneration(raising(error)).generate("x")

    async def test_connection_error(self):
        with pytest.raises(Unavailable):
            await MirascopeGeneration(raising(openai.APIConnectionError(request=REQUEST))).generate("x")

    async def test_content_filter_finish_reason(self):
        async def call(messages):
            return SimpleNamespace(content="", finish_reasons=["content_filter"])

        with pytest.raises(ContentFiltered):
            await MirascopeGeneration(call).generate("x")


def test_build_messages_without_system():
    messages = build_messages("", "just the user")
    assert len(messages) == 1
    assert messages[0].role == "user"


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("a" * 400) == 100
