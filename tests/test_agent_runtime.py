import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from aide.agent_runtime import (
    EMPTY_REPLY,
    FALLBACK_REPLY,
    AgentRuntime,
    AgentState,
    route,
    sanitize_history,
    should_continue,
)
from aide.commands import CommandDispatcher
from aide.db import Database
from aide.errors import ModelUnavailable, ToolLoopExceeded
from aide.models import ChatMessage, InboundMessage, LLMResponse, Role, ToolCall
from aide.prompts import SUMMARY_PROMPT
from aide.tools.base import Tool
from aide.tools.registry import ToolRegistry


class EchoTool(Tool):
    name = "echo"
    description = "Echo text back."
    parameters_schema = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
        "additionalProperties": False,
    }

    async def run(self, context, **kwargs):  # noqa: ANN001, ANN201
        return {"echo": kwargs["text"], "owner": context.owner_id}


class SleepyTool(Tool):
    name = "sleepy"
    description = "Answers after a delay."
    parameters_schema = {
        "type": "object",
        "properties": {"delay": {"type": "number"}, "label": {"type": "string"}},
        "required": ["delay", "label"],
        "additionalProperties": False,
    }

    async def run(self, context, **kwargs):  # noqa: ANN001, ANN201
        await asyncio.sleep(kwargs["delay"])
        return kwargs["label"]


class FakeProvider:
    async def generate(self, messages, tools=None):  # noqa: ANN001, ANN201
        return LLMResponse(content="hello")


def _db(tmp_path) -> Database:  # noqa: ANN001
    db = Database(tmp_path / "aide.db")
    db.initialize()
    return db


def _msg(text: str, thread_id: str = "chat-1") -> InboundMessage:
    return InboundMessage(
        thread_id=thread_id,
        owner_id="user-1",
        chat_id=thread_id,
        text=text,
        timestamp=datetime.now(timezone.utc),
    )


def _runtime(db: Database, llm: object, *tools: Tool, **kwargs: object) -> AgentRuntime:
    registry = ToolRegistry(db, timeout_seconds=5)
    for tool in tools:
        registry.register(tool)
    return AgentRuntime(db=db, llm=llm, tool_registry=registry, request_timeout_seconds=5, **kwargs)


def _tool_call(call_id: str, name: str, **arguments: object) -> LLMResponse:
    return LLMResponse(content="", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


@pytest.mark.asyncio
async def test_agent_runtime_returns_reply(tmp_path):
    db = _db(tmp_path)
    runtime = _runtime(db, FakeProvider())

    reply = await runtime.handle_message(_msg("hi"))

    assert reply == "hello"
    history = db.get_messages("chat-1")
    assert [m.role for m in history] == [Role.USER, Role.ASSISTANT]
    assert history[0].content == "hi"


@pytest.mark.asyncio
async def test_tool_call_round_trip(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[_tool_call("c1", "echo", text="ping"), LLMResponse(content="pong")]
    )
    runtime = _runtime(db, llm, EchoTool())

    reply = await runtime.handle_message(_msg("echo ping"))

    assert reply == "pong"
    history = db.get_messages("chat-1")
    assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert history[1].tool_calls[0].id == "c1"
    assert history[2].tool_call_id == "c1"
    assert history[2].content.startswith("[TOOL DATA")
    assert '"echo": "ping"' in history[2].content
    assert '"owner": "user-1"' in history[2].content
    # Second model call sees the tool result.
    second_prompt = llm.generate.call_args_list[1].args[0]
    assert second_prompt[-1].role is Role.TOOL


@pytest.mark.asyncio
async def test_invalid_tool_arguments_become_tool_result(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=[_tool_call("c1", "echo"), LLMResponse(content="sorry")])
    runtime = _runtime(db, llm, EchoTool())

    reply = await runtime.handle_message(_msg("echo"))

    assert reply == "sorry"
    tool_message = db.get_messages("chat-1")[2]
    assert tool_message.role is Role.TOOL
    assert tool_message.content.startswith("Error: Invalid input for tool")
    assert "text" in tool_message.content


@pytest.mark.asyncio
async def test_unknown_tool_becomes_tool_result(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=[_tool_call("c1", "nope"), LLMResponse(content="ok")])
    runtime = _runtime(db, llm)

    assert await runtime.handle_message(_msg("do it")) == "ok"
    assert db.get_messages("chat-1")[2].content == "Error: Unknown tool: nope"


@pytest.mark.asyncio
async def test_tool_loop_is_bounded(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=_tool_call("c1", "echo", text="again"))
    runtime = _runtime(db, llm, EchoTool(), max_tool_rounds=2)

    with pytest.raises(ToolLoopExceeded) as excinfo:
        await runtime.run_turn("chat-1", "user-1", "loop forever")

    assert excinfo.value.max_rounds == 2
    assert llm.generate.await_count == 3
    roles = [m.role for m in db.get_messages("chat-1")]
    assert roles.count(Role.TOOL) == 2


@pytest.mark.asyncio
async def test_tool_loop_exceeded_returns_fallback(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=_tool_call("c1", "echo", text="again"))
    runtime = _runtime(db, llm, EchoTool(), max_tool_rounds=1)

    reply = await runtime.handle_message(_msg("loop forever"))

    assert reply == FALLBACK_REPLY
    last = db.get_messages("chat-1")[-1]
    assert last.role is Role.ASSISTANT
    assert last.content == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_model_unavailable_returns_fallback(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=ModelUnavailable("OpenRouter returned HTTP 503"))
    runtime = _runtime(db, llm)

    reply = await runtime.handle_message(_msg("hi"))

    assert reply == FALLBACK_REPLY
    assert [m.role for m in db.get_messages("chat-1")] == [Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_model_timeout_raises_model_unavailable(tmp_path):
    db = _db(tmp_path)

    class SlowProvider:
        async def generate(self, messages, tools=None):  # noqa: ANN001, ANN201
            await asyncio.sleep(1)
            return LLMResponse(content="late")

    registry = ToolRegistry(db)
    runtime = AgentRuntime(db=db, llm=SlowProvider(), tool_registry=registry, request_timeout_seconds=0.01)

    with pytest.raises(ModelUnavailable):
        await runtime.run_turn("chat-1", "user-1", "hi")


@pytest.mark.asyncio
async def test_tool_results_keep_request_order(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(
                content="",
                tool_calls=[
                    ToolCall(id="slow", name="sleepy", arguments={"delay": 0.05, "label": "first"}),
                    ToolCall(id="fast", name="sleepy", arguments={"delay": 0, "label": "second"}),
                ],
            ),
            LLMResponse(content="both done"),
        ]
    )
    runtime = _runtime(db, llm, SleepyTool())

    await runtime.handle_message(_msg("run both"))

    tool_messages = [m for m in db.get_messages("chat-1") if m.role is Role.TOOL]
    assert [m.tool_call_id for m in tool_messages] == ["slow", "fast"]
    assert tool_messages[0].content.endswith("first")


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_thread_do_not_interleave(tmp_path):
    db = _db(tmp_path)

    class YieldingProvider:
        async def generate(self, messages, tools=None):  # noqa: ANN001, ANN201
            await asyncio.sleep(0.01)
            return LLMResponse(content=f"re: {messages[-1].text}")

    runtime = _runtime(db, YieldingProvider())

    replies = await asyncio.gather(
        runtime.handle_message(_msg("one")), runtime.handle_message(_msg("two"))
    )

    assert replies == ["re: one", "re: two"]
    history = db.get_messages("chat-1")
    assert [(m.role, m.text) for m in history] == [
        (Role.USER, "one"),
        (Role.ASSISTANT, "re: one"),
        (Role.USER, "two"),
        (Role.ASSISTANT, "re: two"),
    ]


@pytest.mark.asyncio
async def test_threads_are_isolated(tmp_path):
    db = _db(tmp_path)
    runtime = _runtime(db, FakeProvider())

    await runtime.handle_message(_msg("hi", thread_id="chat-1"))
    await runtime.handle_message(_msg("hey", thread_id="chat-2"))

    assert [m.text for m in db.get_messages("chat-1")] == ["hi", "hello"]
    assert [m.text for m in db.get_messages("chat-2")] == ["hey", "hello"]


@pytest.mark.asyncio
async def test_empty_reply_falls_back_to_done(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="   "))
    runtime = _runtime(db, llm)

    assert await runtime.handle_message(_msg("hi")) == EMPTY_REPLY


@pytest.mark.asyncio
async def test_command_bypasses_llm_and_is_not_recorded(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="should not be used"))
    runtime = _runtime(db, llm, command_dispatcher=CommandDispatcher(db))

    reply = await runtime.handle_message(_msg("/schedules"))

    assert "no scheduled tasks" in reply
    llm.generate.assert_not_called()
    assert db.get_messages("chat-1") == []


@pytest.mark.asyncio
async def test_unknown_command_falls_through_to_llm(tmp_path):
    db = _db(tmp_path)
    runtime = _runtime(db, FakeProvider(), command_dispatcher=CommandDispatcher(db))

    assert await runtime.handle_message(_msg("/weather Berlin")) == "hello"


@pytest.mark.asyncio
async def test_reset_starts_a_fresh_context(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="hello"))
    runtime = _runtime(db, llm, command_dispatcher=CommandDispatcher(db))

    await runtime.handle_message(_msg("my name is Ada"))
    await runtime.handle_message(_msg("/reset"))
    await runtime.handle_message(_msg("what is my name?"))

    prompt = llm.generate.call_args.args[0]
    assert [m.role for m in prompt] == [Role.SYSTEM, Role.USER]
    assert prompt[1].text == "what is my name?"
    # The log itself is untouched.
    assert len(db.get_messages("chat-1")) == 4


@pytest.mark.asyncio
async def test_older_messages_are_summarized(tmp_path):
    db = _db(tmp_path)
    db.ensure_thread("chat-1", "user-1")
    db.append_messages(
        "chat-1",
        [
            ChatMessage(role=Role.USER if i % 2 == 0 else Role.ASSISTANT, content=f"m{i}")
            for i in range(6)
        ],
    )

    async def generate(messages, tools=None):  # noqa: ANN001, ANN202
        if messages[0].content == SUMMARY_PROMPT:
            return LLMResponse(content="User said m0..m5.")
        return LLMResponse(content="reply")

    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=generate)
    runtime = _runtime(db, llm, memory_window_messages=4)

    assert await runtime.handle_message(_msg("m6")) == "reply"

    thread = db.get_thread("chat-1")
    assert thread["summary"] == "User said m0..m5."
    agent_prompt = llm.generate.call_args.args[0]
    assert "User said m0..m5." in agent_prompt[0].content
    assert [m.text for m in agent_prompt[1:]] == ["m6"]


@pytest.mark.asyncio
async def test_summary_failure_does_not_fail_turn(tmp_path):
    db = _db(tmp_path)
    db.ensure_thread("chat-1", "user-1")
    db.append_messages(
        "chat-1",
        [ChatMessage(role=Role.USER if i % 2 == 0 else Role.ASSISTANT, content=f"m{i}") for i in range(6)],
    )

    async def generate(messages, tools=None):  # noqa: ANN001, ANN202
        if messages[0].content == SUMMARY_PROMPT:
            raise ModelUnavailable("summary backend down")
        return LLMResponse(content="reply")

    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=generate)
    runtime = _runtime(db, llm, memory_window_messages=4)

    assert await runtime.handle_message(_msg("m6")) == "reply"
    assert db.get_thread("chat-1")["summary"] == ""


def test_route_is_tools_iff_tool_calls_present():
    with_calls = ChatMessage(role=Role.ASSISTANT, tool_calls=[ToolCall(id="c1", name="echo")])
    without_calls = ChatMessage(role=Role.ASSISTANT, content="done")

    assert route(with_calls) is AgentState.TOOLS
    assert route(without_calls) is AgentState.DONE
    assert should_continue(with_calls) is True
    assert should_continue(without_calls) is False


def test_sanitize_history_drops_unmatched_calls_and_results():
    messages = [
        ChatMessage(role=Role.USER, content="hi", id=1),
        ChatMessage(
            role=Role.ASSISTANT,
            tool_calls=[ToolCall(id="c1", name="echo"), ToolCall(id="c2", name="echo")],
            id=2,
        ),
        ChatMessage(role=Role.TOOL, content="r1", tool_call_id="c1", id=3),
        ChatMessage(role=Role.TOOL, content="orphan", tool_call_id="c9", id=4),
        ChatMessage(role=Role.ASSISTANT, tool_calls=[ToolCall(id="c3", name="echo")], id=5),
    ]

    cleaned = sanitize_history(messages)

    assert [m.id for m in cleaned] == [1, 2, 3]
    assert [call.id for call in cleaned[1].tool_calls] == ["c1"]


@pytest.mark.asyncio
async def test_malformed_tool_arguments_are_reported_to_the_model(tmp_path):
    db = _db(tmp_path)
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(content="", tool_calls=[ToolCall(id="c1", name="echo", arguments='{"text": "hi"')]),
            LLMResponse(content="sorry, retrying later"),
        ]
    )
    runtime = _runtime(db, llm, EchoTool())

    reply = await runtime.handle_message(_msg("echo hi"))

    assert reply == "sorry, retrying later"
    tool_message = [m for m in db.get_messages("chat-1") if m.role is Role.TOOL][0]
    assert tool_message.content.startswith("Error: arguments are not valid JSON")
    stored_call = [m for m in db.get_messages("chat-1") if m.tool_calls][0].tool_calls[0]
    assert stored_call.arguments == '{"text": "hi"'
