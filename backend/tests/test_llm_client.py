"""
Tests for the LLM client: provider message conversion, retry classification
and tool-call streaming against a mocked OpenAI SDK.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from errors import ExternalServiceError, LLMError
from services.llm_client import LLMClient, is_retryable_error, to_provider_messages


def _chunk(content=None, tool_calls=None, usage=None):
    choices = []
    if content is not None or tool_calls is not None:
        choices = [SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))]
    return SimpleNamespace(choices=choices, usage=usage)


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class _Stream:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for chunk in self._chunks:
            yield chunk


def _client_with(create):
    client = LLMClient("https://llm.example.com")
    client._openai = MagicMock()
    client._openai.chat.completions.create = create
    return client


async def _collect(agen):
    return [event async for event in agen]


class TestToProviderMessages:
    def test_flattens_text_and_file_parts(self):
        messages = [
            {"role": "user", "parts": [
                {"type": "text", "text": "Summarize"},
                {"type": "file", "attachmentId": "a", "text": "\n\n[File Content: a.pdf]:\nbody"},
            ]},
        ]
        assert to_provider_messages(messages) == [
            {"role": "user", "content": "Summarize\n\n[File Content: a.pdf]:\nbody"},
        ]

    def test_system_first_and_images_dropped(self):
        messages = [
            {"role": "user", "parts": [{"type": "text", "text": "look"}, {"type": "image", "image": "data:x"}]},
            {"role": "system", "parts": [{"type": "text", "text": "sys"}]},
        ]
        assert to_provider_messages(messages) == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "look"},
        ]

    def test_empty_assistant_skipped_but_every_user_message_kept(self):
        messages = [
            {"role": "assistant", "parts": [{"type": "text", "text": ""}]},
            {"role": "user", "parts": [{"type": "image", "image": "data:x"}]},
            {"role": "user", "parts": [{"type": "file", "attachmentId": "pending"}]},
        ]
        assert to_provider_messages(messages) == [
            {"role": "user", "content": ""},
            {"role": "user", "content": ""},
        ]

    def test_tool_results_rendered_into_assistant_text(self):
        messages = [{
            "role": "assistant",
            "parts": [
                {
                    "type": "tool-web_search",
                    "toolName": "web_search",
                    "state": "output-available",
                    "input": {"query": "weather"},
                    "output": {"success": True, "summary": "Sunny", "results": []},
                },
                {"type": "text", "text": "It is sunny."},
            ],
        }]
        content = to_provider_messages(messages)[0]["content"]
        assert '[web_search results for "weather"]' in content
        assert content.endswith("It is sunny.")

    def test_legacy_content_passthrough(self):
        assert to_provider_messages([{"role": "user", "content": "plain"}]) == [{"role": "user", "content": "plain"}]


class TestRetryClassification:
    def test_permanent_errors_not_retried(self):
        assert not is_retryable_error(Exception("Model not found: foo"))

    def test_transient_errors_retried(self):
        assert is_retryable_error(Exception("Rate limit reached"))
        assert is_retryable_error(Exception("server overloaded"))

    def test_unknown_errors_not_retried(self):
        assert not is_retryable_error(Exception("bad request"))


class TestGenerateCompletion:
    def test_returns_message_content(self):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="SIMPLE"))])
        create = AsyncMock(return_value=response)
        client = _client_with(create)

        result = asyncio.run(client.generate_completion([{"role": "user", "content": "q"}], model="m"))

        assert result == "SIMPLE"
        assert create.await_args.kwargs["model"] == "m"

    def test_converts_parts_messages(self):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="t"))])
        create = AsyncMock(return_value=response)
        client = _client_with(create)

        asyncio.run(client.generate_completion([{"role": "user", "parts": [{"type": "text", "text": "q"}]}], model="m"))

        assert create.await_args.kwargs["messages"] == [{"role": "user", "content": "q"}]

    def test_no_choices_is_llm_error(self):
        client = _client_with(AsyncMock(return_value=SimpleNamespace(choices=[])))
        with pytest.raises(LLMError):
            asyncio.run(client.generate_completion([{"role": "user", "content": "q"}], model="m"))


class TestStreamCompletion:
    def test_text_deltas_and_usage(self):
        stream = _Stream([_chunk("Hel"), _chunk("lo"), _chunk(usage=SimpleNamespace(total_tokens=12))])
        create = AsyncMock(return_value=stream)
        client = _client_with(create)

        events = asyncio.run(_collect(client.stream_completion([{"role": "user", "content": "hi"}], model="m")))

        assert events == [
            {"type": "text", "content": "Hel"},
            {"type": "text", "content": "lo"},
            {"type": "finish", "usage": {"totalTokens": 12}},
        ]
        kwargs = create.await_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert "tools" not in kwargs

    def test_tool_call_round_trip(self):
        first = _Stream([
            _chunk(tool_calls=[_tool_delta(0, id="call_1", name="web_search", arguments='{"que')]),
            _chunk(tool_calls=[_tool_delta(0, arguments='ry": "news"}')]),
        ])
        second = _Stream([_chunk("Here is the news.")])
        create = AsyncMock(side_effect=[first, second])
        client = _client_with(create)
        executor = AsyncMock(return_value={"success": True, "summary": "s", "results": []})
        tools = [{"type": "function", "function": {"name": "web_search"}}]

        events = asyncio.run(_collect(client.stream_completion(
            [{"role": "user", "content": "news?"}],
            model="m",
            tools=tools,
            tool_executor=executor,
            max_steps=3,
        )))

        executor.assert_awaited_once_with("web_search", {"query": "news"})
        tool_event = events[0]
        assert tool_event["type"] == "tool"
        assert tool_event["part"]["type"] == "tool-web_search"
        assert tool_event["part"]["toolCallId"] == "call_1"
        assert tool_event["part"]["state"] == "output-available"
        assert events[1] == {"type": "text", "content": "Here is the news."}
        assert events[-1] == {"type": "finish", "usage": None}

        second_messages = create.await_args_list[1].kwargs["messages"]
        assert second_messages[-2]["tool_calls"][0]["function"]["name"] == "web_search"
        assert second_messages[-1]["role"] == "tool"
        assert second_messages[-1]["tool_call_id"] == "call_1"

    def test_raising_executor_reported_to_model(self):
        first = _Stream([_chunk(tool_calls=[_tool_delta(0, id="call_1", name="web_search", arguments='{"query": "x"}')])])
        second = _Stream([_chunk("Search is down, sorry.")])
        create = AsyncMock(side_effect=[first, second])
        client = _client_with(create)
        executor = AsyncMock(side_effect=ExternalServiceError("Search service unavailable", service="searxng"))

        events = asyncio.run(_collect(client.stream_completion(
            [{"role": "user", "content": "news?"}],
            model="m",
            tools=[{"type": "function", "function": {"name": "web_search"}}],
            tool_executor=executor,
            max_steps=3,
        )))

        output = events[0]["part"]["output"]
        assert output["success"] is False
        assert output["error"]["tool"] == "web_search"
        tool_message = create.await_args_list[1].kwargs["messages"][-1]
        assert tool_message["content"].startswith("[web_search] Error: Search service unavailable")
        assert events[-2] == {"type": "text", "content": "Search is down, sorry."}

    def test_last_step_has_no_tools(self):
        calls = [
            _Stream([_chunk(tool_calls=[_tool_delta(0, id="c", name="web_search", arguments="{}")])]),
            _Stream([_chunk("done")]),
        ]
        create = AsyncMock(side_effect=calls)
        client = _client_with(create)
        executor = AsyncMock(return_value={"success": False})

        asyncio.run(_collect(client.stream_completion(
            [{"role": "user", "content": "q"}],
            model="m",
            tools=[{"type": "function", "function": {"name": "web_search"}}],
            tool_executor=executor,
            max_steps=2,
        )))

        assert "tools" in create.await_args_list[0].kwargs
        assert "tools" not in create.await_args_list[1].kwargs
