# Test suite for the agent execution loop

import pytest

from taor.agent.cancellation import CancellationToken
from taor.agent.context.compaction import COMPACT_MESSAGE
from taor.agent.context.history import History
from taor.agent.context.message import Message, TextPart, ToolUsePart
from taor.agent.loop import (
    DENIED_MESSAGE,
    SKIPPED_MESSAGE,
    run_loop,
)
from taor.agent.structs import ApprovalResult, LoopErrorType, TurnInfo
from taor.exceptions import CompactionError, ProviderConnectionError, ProviderError
from taor.providers.base import Finish, ModelInfo, ReasoningDelta, ReasoningEnd, StreamError, TextDelta
from taor.tools.base import ExecutionStatus, ToolResult
from taor.tools.registry import ToolRegistry

from conftest import ScriptedProvider, finish, make_chain, text_turn, tool_turn, user

FAST = {"retry_base_delay": 0.001, "retry_poll_interval": 0.001}


class TestPlainTurns:
    """A model that answers without tools"""

    @pytest.mark.asyncio
    async def test_single_text_turn(self):
        provider = ScriptedProvider([text_turn("Hello there")])

        result = await run_loop("hi", provider, ToolRegistry())

        assert result.success
        assert result.data["text"] == "Hello there"
        assert result.metadata["turns_count"] == 1
        assert result.metadata["tool_calls_count"] == 0
        assert result.metadata["duration"] >= 0

        messages = result.history.messages
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].parent_id == messages[0].id
        assert messages[1].id == provider.requests[0].request_id
        assert messages[1].model == "test/scripted"
        assert messages[1].usage == {"input_tokens": 10, "output_tokens": 5}

    @pytest.mark.asyncio
    async def test_continues_a_history_in_place(self):
        seen = []
        history = History(make_chain(user("hi")), on_message=seen.append)
        provider = ScriptedProvider([text_turn("ok")])

        result = await run_loop(history, provider, ToolRegistry(), on_message=lambda m: None)

        assert result.history is history
        assert [m.role for m in history.messages] == ["user", "assistant"]
        # The history keeps its own observer.
        assert [m.role for m in seen] == ["assistant"]

    @pytest.mark.asyncio
    async def test_prompt_starts_with_system_and_contexts(self):
        provider = ScriptedProvider([text_turn("ok")])

        await run_loop(
            "hi",
            provider,
            ToolRegistry(),
            system_prompt="be brief",
            llms_contexts=["project rules"],
        )

        prompt = provider.requests[0].prompt
        assert prompt[0] == {"role": "system", "content": "be brief"}
        assert prompt[1] == {"role": "system", "content": "project rules"}
        assert prompt[2] == {"role": "user", "content": [{"type": "text", "text": "hi"}]}

    @pytest.mark.asyncio
    async def test_usage_accumulates_across_turns(self, registry):
        provider = ScriptedProvider(
            [tool_turn(("c1", "echo", '{"text": "a"}')), text_turn("done", prompt_tokens=20)]
        )

        result = await run_loop("go", provider, registry)

        assert result.usage.prompt_tokens == 30
        assert result.usage.completion_tokens == 10
        assert result.usage.total_tokens == 40

    @pytest.mark.asyncio
    async def test_callbacks_receive_text_reasoning_and_turn(self):
        provider = ScriptedProvider(
            [
                [
                    ReasoningDelta("  thinking hard  "),
                    ReasoningEnd({"signature": "abc"}),
                    TextDelta("Hel"),
                    TextDelta("lo"),
                    finish(),
                ]
            ]
        )
        deltas, texts, reasoning, turns = [], [], [], []

        result = await run_loop(
            "hi",
            provider,
            ToolRegistry(),
            on_text_delta=deltas.append,
            on_text=texts.append,
            on_reasoning=reasoning.append,
            on_turn=turns.append,
        )

        assert deltas == ["Hel", "lo"]
        assert texts == ["Hello"]
        assert reasoning == ["thinking hard"]
        assert len(turns) == 1
        assert isinstance(turns[0], TurnInfo)
        assert turns[0].usage.prompt_tokens == 10

        assistant = result.history.messages[-1]
        assert assistant.content[0].text == "thinking hard"
        assert assistant.content[0].provider_metadata == {"signature": "abc"}
        assert assistant.content[1].text == "Hello"

    @pytest.mark.asyncio
    async def test_thinking_options_sent_only_on_first_request(self, registry):
        model = ModelInfo("test", "scripted", variants={"high": {"effort": "high"}})
        provider = ScriptedProvider(
            [tool_turn(("c1", "echo", '{"text": "a"}')), text_turn("done")], model=model
        )

        await run_loop("go", provider, registry, thinking="high", temperature=0.2)

        assert provider.requests[0].provider_options == {"test": {"effort": "high"}}
        assert provider.requests[1].provider_options is None
        assert provider.requests[0].temperature == 0.2

    @pytest.mark.asyncio
    async def test_mentions_are_expanded_into_first_prompt(self, tmp_path):
        (tmp_path / "notes.txt").write_text("line one\nline two\n")
        provider = ScriptedProvider([text_turn("seen")])

        result = await run_loop("read @notes.txt", provider, ToolRegistry(), cwd=str(tmp_path))

        sent = provider.requests[0].prompt[-1]["content"][0]["text"]
        assert sent.startswith("read @notes.txt\n\n")
        assert '<file path="notes.txt">' in sent
        assert "line two" in sent
        # History keeps the original text.
        assert result.history.messages[0].content == "read @notes.txt"


class TestToolBatches:
    """Tool calls, approval and the turn budget"""

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, registry, echo_tool):
        provider = ScriptedProvider(
            [tool_turn(("c1", "echo", '{"text": "ping"}')), text_turn("pong received")]
        )
        seen_results = []

        result = await run_loop(
            "go",
            provider,
            registry,
            on_tool_result=lambda use, res, approved: seen_results.append((use.name, approved)),
        )

        assert result.success
        assert result.data["text"] == "pong received"
        assert result.metadata["tool_calls_count"] == 1
        assert result.metadata["turns_count"] == 1
        assert echo_tool.calls == [{"text": "ping"}]
        assert seen_results == [("echo", True)]

        roles = [m.role for m in result.history.messages]
        assert roles == ["user", "assistant", "tool", "assistant"]

        tool_use = result.history.messages[1].content[0]
        assert isinstance(tool_use, ToolUsePart)
        assert tool_use.display_name == "Echo"
        assert tool_use.description == "echo ping"

        tool_result = result.history.messages[2].content[0]
        assert tool_result.tool_call_id == "c1"
        assert tool_result.result.llm_content == "ping"

        second_prompt = provider.requests[1].prompt
        assert second_prompt[-1]["role"] == "tool"
        assert second_prompt[-1]["content"][0]["output"] == {"type": "text", "value": "ping"}

    @pytest.mark.asyncio
    async def test_unknown_tool_and_bad_input_become_error_results(self, registry):
        provider = ScriptedProvider(
            [
                tool_turn(("c1", "missing", "{}"), ("c2", "echo", "{not json")),
                text_turn("recovered"),
            ]
        )

        result = await run_loop("go", provider, registry)

        assert result.success
        parts = result.history.messages[2].content
        assert parts[0].result.status == ExecutionStatus.NOT_FOUND
        assert parts[1].result.status == ExecutionStatus.INVALID_PARAMS
        assert parts[1].input == {}

    @pytest.mark.asyncio
    async def test_denial_without_reason_skips_rest_and_stops(self, registry, echo_tool):
        provider = ScriptedProvider(
            [
                tool_turn(
                    ("c1", "echo", '{"text": "one"}'),
                    ("c2", "write", '{"path": "a.txt"}'),
                    ("c3", "echo", '{"text": "three"}'),
                )
            ]
        )

        result = await run_loop(
            "go", provider, registry, on_tool_approve=lambda use: use.call_id != "c2"
        )

        assert not result.success
        assert result.error.type == LoopErrorType.TOOL_DENIED
        assert result.error.message == DENIED_MESSAGE
        assert result.error.details["tool_use"].call_id == "c2"
        assert echo_tool.calls == [{"text": "one"}]
        assert len(provider.requests) == 1

        tool_message = result.history.messages[-1]
        assert tool_message.role == "tool"
        statuses = [p.result.status for p in tool_message.content]
        assert statuses == [
            ExecutionStatus.SUCCESS,
            ExecutionStatus.DENIED,
            ExecutionStatus.SKIPPED,
        ]
        assert tool_message.content[2].result.llm_content == SKIPPED_MESSAGE

    @pytest.mark.asyncio
    async def test_denial_with_reason_continues(self, registry, write_tool):
        provider = ScriptedProvider(
            [tool_turn(("c1", "write", '{"path": "a.txt"}')), text_turn("understood")]
        )

        result = await run_loop(
            "go",
            provider,
            registry,
            on_tool_approve=lambda use: ApprovalResult(False, deny_reason="not that file"),
        )

        assert result.success
        assert result.data["text"] == "understood"
        assert write_tool.calls == []
        # Nothing executed, so the tool round counted against the budget.
        assert result.metadata["turns_count"] == 2

        denied = result.history.messages[2].content[0].result
        assert denied.status == ExecutionStatus.DENIED
        assert denied.llm_content == "Tool use rejected with user message: not that file"

    @pytest.mark.asyncio
    async def test_approval_may_rewrite_params(self, registry, echo_tool):
        provider = ScriptedProvider(
            [tool_turn(("c1", "echo", '{"text": "draft"}')), text_turn("ok")]
        )

        async def approve(use):
            return ApprovalResult(True, params={"text": "edited"})

        await run_loop("go", provider, registry, on_tool_approve=approve)

        assert echo_tool.calls == [{"text": "edited"}]

    @pytest.mark.asyncio
    async def test_on_tool_result_may_replace_result(self, registry):
        provider = ScriptedProvider(
            [tool_turn(("c1", "echo", '{"text": "secret"}')), text_turn("ok")]
        )

        result = await run_loop(
            "go",
            provider,
            registry,
            on_tool_result=lambda use, res, approved: ToolResult.success_result("[redacted]"),
        )

        assert result.history.messages[2].content[0].result.llm_content == "[redacted]"

    @pytest.mark.asyncio
    async def test_max_turns_exceeded(self, registry):
        provider = ScriptedProvider(
            [tool_turn(("c%d" % i, "write", '{"path": "x"}')) for i in range(3)]
        )

        result = await run_loop(
            "go",
            provider,
            registry,
            max_turns=2,
            on_tool_approve=lambda use: ApprovalResult(False, deny_reason="no"),
        )

        assert not result.success
        assert result.error.type == LoopErrorType.MAX_TURNS_EXCEEDED
        assert result.error.message == "Maximum turns (2) exceeded"
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_tool_rounds_do_not_use_turn_budget(self, registry):
        provider = ScriptedProvider(
            [tool_turn(("c%d" % i, "echo", '{"text": "x"}')) for i in range(3)]
            + [text_turn("finally")]
        )

        result = await run_loop("go", provider, registry, max_turns=1)

        assert result.success
        assert result.metadata["tool_calls_count"] == 3
        assert result.metadata["turns_count"] == 1


class TestStreamRetry:
    """Retry, backoff and in-band stream errors"""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        provider = ScriptedProvider(
            [
                ProviderConnectionError("connection reset"),
                ProviderConnectionError("connection reset"),
                text_turn("finally"),
            ]
        )
        reports = []

        result = await run_loop(
            "hi", provider, ToolRegistry(), error_retry_turns=3,
            on_stream_result=reports.append, **FAST
        )

        assert result.success
        assert result.data["text"] == "finally"
        assert [r.retries_attempted for r in reports] == [0, 1, 2]
        assert reports[0].error["is_retryable"] is True
        assert reports[0].error["max_retries"] == 3
        assert reports[-1].error is None
        assert reports[-1].status_code == 200
        # Same request id across attempts of one turn.
        assert len({r.request_id for r in reports}) == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        provider = ScriptedProvider([ProviderConnectionError("down")] * 3)

        result = await run_loop("hi", provider, ToolRegistry(), error_retry_turns=2, **FAST)

        assert not result.success
        assert result.error.type == LoopErrorType.API_ERROR
        assert result.error.message == "down"
        assert result.error.details["retries_attempted"] == 2
        assert len(provider.requests) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self):
        provider = ScriptedProvider(
            [
                ProviderError(
                    "bad request",
                    status_code=400,
                    response_body='{"error": {"message": "prompt too long", "metadata": {"raw": 1}}}',
                    url="https://api.example.test/v1",
                )
            ]
        )

        result = await run_loop("hi", provider, ToolRegistry(), **FAST)

        assert result.error.type == LoopErrorType.API_ERROR
        assert result.error.message == "prompt too long"
        assert result.error.details["status_code"] == 400
        assert result.error.details["url"] == "https://api.example.test/v1"
        assert result.error.details["metadata"] == {"raw": 1}
        assert result.error.details["retries_attempted"] == 0
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_empty_response_is_retried(self):
        provider = ScriptedProvider([[Finish(usage={})], text_turn("second try")])

        result = await run_loop("hi", provider, ToolRegistry(), **FAST)

        assert result.success
        assert result.data["text"] == "second try"
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_in_band_stream_error_is_not_retried(self):
        provider = ScriptedProvider(
            [[TextDelta("partial"), StreamError({"message": "overloaded"}, status_code=529)]]
        )

        result = await run_loop("hi", provider, ToolRegistry(), **FAST)

        assert result.error.type == LoopErrorType.API_ERROR
        assert result.error.message == "overloaded"
        assert result.error.details["status_code"] == 529
        assert len(provider.requests) == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_canceled_before_start(self):
        token = CancellationToken()
        token.cancel()
        provider = ScriptedProvider([])

        result = await run_loop("hi", provider, ToolRegistry(), cancellation=token)

        assert result.error.type == LoopErrorType.CANCELED
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        token = CancellationToken()
        provider = ScriptedProvider([ProviderConnectionError("down"), text_turn("never")])

        def on_stream_result(report):
            if report.error:
                token.cancel("user pressed escape")

        result = await run_loop(
            "hi",
            provider,
            ToolRegistry(),
            cancellation=token,
            retry_base_delay=10.0,
            retry_poll_interval=0.01,
            on_stream_result=on_stream_result,
        )

        assert result.error.type == LoopErrorType.CANCELED
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_cancel_from_tool_callback_stops_batch(self, registry, echo_tool):
        token = CancellationToken()
        provider = ScriptedProvider(
            [tool_turn(("c1", "echo", '{"text": "a"}'), ("c2", "echo", '{"text": "b"}'))]
        )

        def on_tool_result(use, res, approved):
            token.cancel()

        result = await run_loop(
            "go", provider, registry, cancellation=token, on_tool_result=on_tool_result
        )

        assert result.error.type == LoopErrorType.CANCELED
        assert echo_tool.calls == [{"text": "a"}]
        # c1 finished before the cancel was seen, so its result is kept.
        assert [p.tool_call_id for p in result.history.last.tool_results()] == ["c1"]
        incomplete = result.history.find_incomplete_tool_uses()
        assert incomplete is not None
        assert [p.id for p in incomplete[1]] == ["c2"]


class TestAutoCompaction:
    def _overflowing_log(self):
        messages = make_chain(user("start"), ("assistant", "long answer"), user("next"))
        messages[1].usage = {"input_tokens": 90_000, "output_tokens": 1_000}
        return messages

    @pytest.mark.asyncio
    async def test_compacts_before_calling_model(self):
        provider = ScriptedProvider([text_turn("continuing")])
        calls = []
        compressed = []

        async def summarize(messages, provider, system_prompt, user_prompt):
            calls.append((messages, system_prompt, user_prompt))
            return "summary text"

        result = await run_loop(
            self._overflowing_log(),
            provider,
            ToolRegistry(),
            auto_compact=True,
            summarize=summarize,
            on_compress=compressed.append,
        )

        assert result.success
        assert len(calls) == 1
        assert "<context_summary>" in calls[0][1]
        assert compressed[0].compressed is True

        first = result.history.messages[0]
        assert first.parent_id is None
        assert first.ui_content == COMPACT_MESSAGE
        assert provider.requests[0].prompt[1]["content"] == [
            {"type": "text", "text": "summary text"}
        ]

    @pytest.mark.asyncio
    async def test_compaction_failure_propagates(self):
        provider = ScriptedProvider([text_turn("unused")])

        async def summarize(messages, provider, system_prompt, user_prompt):
            raise RuntimeError("model offline")

        with pytest.raises(CompactionError, match="History compaction failed"):
            await run_loop(
                self._overflowing_log(),
                provider,
                ToolRegistry(),
                auto_compact=True,
                summarize=summarize,
            )
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_default_summarizer_uses_nested_query(self):
        provider = ScriptedProvider([text_turn("nested summary"), text_turn("continuing")])

        result = await run_loop(
            self._overflowing_log(), provider, ToolRegistry(), auto_compact=True
        )

        assert result.success
        assert result.history.messages[0].content[0].text == "nested summary"
        # The nested query runs without tools.
        assert provider.requests[0].tools == []
