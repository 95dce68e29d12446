"""
The agent execution loop.

One call to run_loop drives a conversation until the model stops calling
tools, a limit or cancellation fires, or an unrecoverable error occurs.
Failures come back as LoopResult values; only compaction failures raise.
"""

import inspect
import json
import logging
import time
import traceback
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from taor.exceptions import CanceledError, EmptyResponseError, ProviderError
from taor.providers.base import (
    BaseProvider,
    Finish,
    ReasoningDelta,
    ReasoningEnd,
    StreamError,
    StreamRequest,
    TextDelta,
    ToolCall,
)
from taor.tools.base import ToolResult
from taor.tools.registry import ToolRegistry
from taor.utils.json_parser import safe_parse_json
from .cancellation import CancellationToken
from .context.compaction import Summarizer
from .context.compression import CompressionConfig
from .context.history import CompressResult, History
from .context.message import (
    Message,
    ReasoningPart,
    TextPart,
    ToolUsePart,
    create_tool_result_part,
)
from .context.usage import Usage
from .mentions import expand_prompt_mentions
from .retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_POLL_INTERVAL,
    backoff_delay,
    is_retryable_error,
    stream_retrying,
)
from .structs import (
    ApprovalResult,
    LoopErrorType,
    LoopResult,
    StreamResult,
    ToolUse,
    TurnInfo,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 50
DEFAULT_ERROR_RETRY_TURNS = 10

DENIED_MESSAGE = "Error: Tool execution was denied by user."
DENIED_WITH_REASON_MESSAGE = "Tool use rejected with user message: {reason}"
SKIPPED_MESSAGE = "Error: Tool execution was skipped due to previous tool denial."
CANCELED_MESSAGE = "Operation was canceled"

Callback = Callable[..., Union[Any, Awaitable[Any]]]


async def _call(callback: Optional[Callback], *args) -> Any:
    """Invoke an optional sync-or-async callback."""
    if callback is None:
        return None
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class _TurnState:
    """What one stream attempt has produced so far."""

    def __init__(self):
        self.text = ""
        self.reasoning = ""
        self.reasoning_metadata: Optional[Dict[str, Any]] = None
        self.tool_calls: List[ToolCall] = []
        self.usage = Usage.empty()
        self.finished = False


def _stream_error_message(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(error)
    if isinstance(error, dict):
        if error.get("message"):
            return error["message"]
        details = (error.get("value") or {}).get("details")
        if isinstance(details, str):
            try:
                message = (json.loads(details).get("error") or {}).get("message")
            except (ValueError, AttributeError):
                message = None
            if message:
                return message
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return str(error)


def _api_error(
    error: BaseException, retries_attempted: int, history: Any = None, usage: Any = None
) -> LoopResult:
    """Failure result that keeps the provider's structured detail."""
    parsed_body: Dict[str, Any] = {}
    response_body = getattr(error, "response_body", None)
    if isinstance(response_body, str):
        try:
            parsed = json.loads(response_body)
            if isinstance(parsed, dict):
                parsed_body = parsed
        except ValueError:
            pass

    body_error = parsed_body.get("error") if isinstance(parsed_body.get("error"), dict) else {}
    data = getattr(error, "data", None)
    data_error = data.get("error") if isinstance(data, dict) and isinstance(data.get("error"), dict) else {}

    message = body_error.get("message") or str(error) or "Unknown streaming error"
    details: Dict[str, Any] = {
        "code": data_error.get("code"),
        "status": data_error.get("status"),
        "status_code": getattr(error, "status_code", None),
        "url": getattr(error, "url", None),
        "error": error,
        "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        "retries_attempted": retries_attempted,
        "history": history,
        "usage": usage,
    }
    if body_error.get("metadata"):
        details["metadata"] = body_error["metadata"]
    return LoopResult.fail(LoopErrorType.API_ERROR, message, **details)


def _to_approval(value: Any) -> ApprovalResult:
    if isinstance(value, ApprovalResult):
        return value
    if isinstance(value, dict):
        return ApprovalResult(
            approved=bool(value.get("approved")),
            params=value.get("params"),
            deny_reason=value.get("deny_reason"),
        )
    return ApprovalResult(approved=bool(value))


async def run_loop(
    input: Union[str, List[Message], History],
    provider: BaseProvider,
    tools: ToolRegistry,
    cwd: str = "",
    system_prompt: str = "",
    max_turns: int = DEFAULT_MAX_TURNS,
    error_retry_turns: int = DEFAULT_ERROR_RETRY_TURNS,
    retry_base_delay: float = DEFAULT_BASE_DELAY,
    retry_poll_interval: float = DEFAULT_POLL_INTERVAL,
    cancellation: Optional[CancellationToken] = None,
    llms_contexts: Optional[List[str]] = None,
    auto_compact: bool = False,
    compression_config: Optional[CompressionConfig] = None,
    summarize: Optional[Summarizer] = None,
    language: Optional[str] = None,
    thinking: Optional[str] = None,
    temperature: Optional[float] = None,
    response_format: Optional[Dict[str, Any]] = None,
    on_text_delta: Optional[Callback] = None,
    on_text: Optional[Callback] = None,
    on_reasoning: Optional[Callback] = None,
    on_stream_result: Optional[Callback] = None,
    on_chunk: Optional[Callback] = None,
    on_tool_use: Optional[Callback] = None,
    on_tool_result: Optional[Callback] = None,
    on_tool_approve: Optional[Callback] = None,
    on_turn: Optional[Callback] = None,
    on_compress: Optional[Callback] = None,
    on_message: Optional[Callback] = None,
) -> LoopResult:
    """
    Run the think-act loop.

    Args:
        input: A user prompt, an existing message log to continue, or a
            History to append to in place (its own observer is kept).
        provider: Opens streaming completions; its ModelInfo bounds compression.
        tools: Tools the model may call.
        cwd: Base directory for `@path` mentions and tool descriptions.
        thinking: Reasoning-effort name looked up in the model's variants;
            only sent with the first request of the run.
        on_tool_approve: Returns a bool or an ApprovalResult for each call.
            Without it every call is approved.
        on_tool_result: May replace a result; receives (tool_use, result, approved).

    Raises:
        CompactionError: History overflowed and could not be summarized.
    """
    start = time.monotonic()
    token = cancellation or CancellationToken()
    turns_count = 0
    tool_calls_count = 0
    final_text = ""
    total_usage = Usage.empty()

    if auto_compact and summarize is None:
        # Imported here: query builds on run_loop.
        from .query import summarize_history

        summarize = summarize_history

    if isinstance(input, History):
        history = input
        if compression_config is not None:
            history.compression_config = compression_config
        if summarize is not None and history.summarize is None:
            history.summarize = summarize
    else:
        if isinstance(input, str):
            messages = [Message(role="user", content=input, parent_id=None)]
        else:
            messages = list(input)
        history = History(
            messages=messages,
            on_message=on_message,
            compression_config=compression_config,
            summarize=summarize,
        )
    model = provider.model

    def canceled() -> LoopResult:
        return LoopResult.fail(
            LoopErrorType.CANCELED,
            CANCELED_MESSAGE,
            turns_count=turns_count,
            history=history,
            usage=total_usage,
        )

    should_expand_mentions = True
    should_send_thinking = True

    while True:
        if token.canceled:
            return canceled()

        turn_start = datetime.now()
        turns_count += 1
        if turns_count > max_turns:
            return LoopResult.fail(
                LoopErrorType.MAX_TURNS_EXCEEDED,
                f"Maximum turns ({max_turns}) exceeded",
                turns_count=turns_count,
                history=history,
                usage=total_usage,
            )

        if auto_compact:
            compressed: CompressResult = await history.compress(provider, language)
            if compressed.compressed or compressed.pruned:
                logger.debug("History compressed: %s", compressed)
                await _call(on_compress, compressed)

        # --- Prompt assembly ---
        prompt: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt or ""}]
        prompt.extend({"role": "system", "content": ctx} for ctx in llms_contexts or [])
        prompt.extend(history.to_provider_messages())
        if should_expand_mentions:
            prompt = expand_prompt_mentions(prompt, cwd)
            should_expand_mentions = False

        request_id = str(uuid.uuid4())
        provider_tools = tools.to_provider_tools()

        provider_options = None
        if should_send_thinking and thinking:
            provider_options = {model.provider_id: model.variants.get(thinking)}
            should_send_thinking = False

        # --- Stream with retry ---
        state = _TurnState()
        retry_count = 0

        async def report_failure(error: BaseException, attempt_retry: int) -> None:
            await _call(
                on_stream_result,
                StreamResult(
                    request_id=request_id,
                    prompt=prompt,
                    model=model.full_id,
                    tools=provider_tools,
                    response_headers=getattr(error, "response_headers", None),
                    status_code=getattr(error, "status_code", None),
                    retries_attempted=attempt_retry,
                    error={
                        "data": getattr(error, "data", None) or str(error),
                        "is_retryable": is_retryable_error(error),
                        "retry_attempt": attempt_retry,
                        "max_retries": error_retry_turns,
                        "retry_delay": backoff_delay(attempt_retry + 1, retry_base_delay),
                        "retry_start_time": time.time(),
                    },
                ),
            )

        try:
            retrying = stream_retrying(
                token, error_retry_turns, retry_base_delay, retry_poll_interval
            )
            async for attempt in retrying:
                with attempt:
                    retry_count = attempt.retry_state.attempt_number - 1
                    token.raise_if_canceled()
                    state = _TurnState()
                    try:
                        await _consume_stream(
                            provider,
                            StreamRequest(
                                request_id=request_id,
                                prompt=prompt,
                                tools=provider_tools,
                                cancellation=token,
                                response_format=response_format,
                                provider_options=provider_options,
                                temperature=temperature,
                            ),
                            state,
                            token,
                            retry_count,
                            on_text_delta=on_text_delta,
                            on_chunk=on_chunk,
                            on_stream_result=on_stream_result,
                        )
                    except CanceledError:
                        raise
                    except Exception as e:
                        logger.warning(
                            "Stream attempt %d failed: %s", retry_count + 1, e
                        )
                        await report_failure(e, retry_count)
                        raise
                    total_usage.add(state.usage)
        except CanceledError:
            return canceled()
        except Exception as e:  # pylint: disable=broad-exception-caught
            return _api_error(e, retry_count, history, total_usage)

        if token.canceled:
            return canceled()

        # --- Commit the assistant turn ---
        text = state.text
        await _call(on_text, text)

        reasoning = state.reasoning.strip()
        if reasoning:
            await _call(on_reasoning, reasoning)

        last_usage = state.usage
        await _call(on_turn, TurnInfo(last_usage, turn_start, datetime.now()))

        assistant_content: List[Any] = []
        if reasoning:
            assistant_content.append(ReasoningPart(reasoning, state.reasoning_metadata))
        if text:
            final_text = text
            assistant_content.append(TextPart(text))

        parsed_inputs: Dict[str, Dict[str, Any]] = {}
        for tool_call in state.tool_calls:
            tool = tools.get(tool_call.tool_name)
            tool_input = safe_parse_json(tool_call.input)
            parsed_inputs[tool_call.tool_call_id] = tool_input
            assistant_content.append(
                ToolUsePart(
                    id=tool_call.tool_call_id,
                    name=tool_call.tool_name,
                    input=tool_input,
                    display_name=tool.display_name if tool else None,
                    description=tool.get_description(tool_input, cwd) if tool else None,
                    provider_metadata=tool_call.provider_metadata,
                )
            )

        usage_record = {
            "input_tokens": last_usage.prompt_tokens,
            "output_tokens": last_usage.completion_tokens,
        }
        if last_usage.cache_read_tokens:
            usage_record["cache_read_input_tokens"] = last_usage.cache_read_tokens
        await history.add_message(
            Message(
                role="assistant",
                content=assistant_content,
                text=text,
                model=model.full_id,
                usage=usage_record,
            ),
            message_id=request_id,
        )

        if not state.tool_calls:
            break

        # --- Tool batch ---
        tool_results: List[tuple] = []
        executed_any = False

        async def skip_remaining() -> None:
            done = {call_id for call_id, _, _, _ in tool_results}
            for remaining in state.tool_calls:
                if remaining.tool_call_id in done:
                    continue
                params = parsed_inputs[remaining.tool_call_id]
                remaining_use = ToolUse(remaining.tool_name, params, remaining.tool_call_id)
                result = ToolResult.skipped(SKIPPED_MESSAGE)
                result = await _call(on_tool_result, remaining_use, result, False) or result
                tool_results.append((remaining.tool_call_id, remaining.tool_name, params, result))

        async def commit_tool_results() -> None:
            if not tool_results:
                return
            await history.add_message(
                Message(
                    role="tool",
                    content=[
                        create_tool_result_part(call_id, name, params, result)
                        for call_id, name, params, result in tool_results
                    ],
                )
            )

        for tool_call in state.tool_calls:
            if token.canceled:
                # Finished results are kept; the caller answers the rest.
                await commit_tool_results()
                return canceled()

            tool_use = ToolUse(
                name=tool_call.tool_name,
                params=dict(parsed_inputs[tool_call.tool_call_id]),
                call_id=tool_call.tool_call_id,
            )
            tool_use = await _call(on_tool_use, tool_use) or tool_use

            approval = ApprovalResult(approved=True)
            if on_tool_approve is not None:
                approval = _to_approval(await _call(on_tool_approve, tool_use))

            if approval.approved:
                tool_calls_count += 1
                executed_any = True
                if approval.params:
                    tool_use.params = {**tool_use.params, **approval.params}
                result = await tools.invoke(
                    tool_use.name, json.dumps(tool_use.params), tool_use.call_id
                )
                result = await _call(on_tool_result, tool_use, result, True) or result
                tool_results.append((tool_use.call_id, tool_use.name, tool_use.params, result))
                continue

            if approval.deny_reason:
                message = DENIED_WITH_REASON_MESSAGE.format(reason=approval.deny_reason)
            else:
                message = DENIED_MESSAGE
            result = ToolResult.denied(message)
            result = await _call(on_tool_result, tool_use, result, False) or result
            tool_results.append((tool_use.call_id, tool_use.name, tool_use.params, result))
            await skip_remaining()

            if not approval.deny_reason:
                await commit_tool_results()
                return LoopResult.fail(
                    LoopErrorType.TOOL_DENIED,
                    message,
                    tool_use=tool_use,
                    history=history,
                    usage=total_usage,
                )
            # The model sees the reason on its next turn.
            break

        await commit_tool_results()
        if token.canceled:
            return canceled()

        # Tool rounds do not use up the turn budget.
        if executed_any:
            turns_count -= 1

    return LoopResult.ok(
        data={"text": final_text, "history": history, "usage": total_usage},
        metadata={
            "turns_count": turns_count,
            "tool_calls_count": tool_calls_count,
            "duration": time.monotonic() - start,
        },
    )


async def _consume_stream(
    provider: BaseProvider,
    request: StreamRequest,
    state: _TurnState,
    token: CancellationToken,
    retry_count: int,
    on_text_delta: Optional[Callback] = None,
    on_chunk: Optional[Callback] = None,
    on_stream_result: Optional[Callback] = None,
) -> None:
    """
    Open one stream and fold its events into `state`.

    Raises:
        CanceledError: The token was set mid-stream.
        EmptyResponseError: The stream finished with no text and no tool calls.
        ProviderError: The stream reported an in-band error.
    """
    response = await provider.create_stream(request)
    await _call(
        on_stream_result,
        StreamResult(
            request_id=request.request_id,
            prompt=request.prompt,
            model=provider.model.full_id,
            tools=request.tools,
            request_body=response.request_body,
            response_headers=response.response_headers,
            status_code=response.status_code,
            retries_attempted=retry_count,
        ),
    )

    async for event in response.events:
        token.raise_if_canceled()
        await _call(on_chunk, event, request.request_id)

        if isinstance(event, TextDelta):
            state.text += event.delta
            await _call(on_text_delta, event.delta)
        elif isinstance(event, ReasoningDelta):
            state.reasoning += event.delta
        elif isinstance(event, ReasoningEnd):
            if event.provider_metadata:
                state.reasoning_metadata = event.provider_metadata
        elif isinstance(event, ToolCall):
            state.tool_calls.append(event)
        elif isinstance(event, Finish):
            state.usage = Usage.from_event_usage(event.usage)
            state.finished = True
            if not state.tool_calls and not state.text.strip():
                raise EmptyResponseError()
        elif isinstance(event, StreamError):
            raise ProviderError(
                _stream_error_message(event.error),
                retryable=False,
                status_code=event.status_code,
                data=event.error,
            )

    if not state.finished and not state.tool_calls and not state.text.strip():
        raise EmptyResponseError()
