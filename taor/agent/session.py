"""
Agent Session
=============
Serves one conversation over a MessageBus.

The peer drives the session with `session.send` / `session.cancel` requests
and observes it through the loop's topics, published as bus events.
"""

import inspect
import logging
from typing import Any, Optional, Tuple

from taor.config.settings import Settings
from taor.exceptions import AgentError
from taor.protocol.bus import MessageBus
from taor.protocol.events import Methods, Topics
from taor.protocol.methods import (
    SessionCancelParams,
    SessionCancelResponse,
    SessionSendParams,
    SessionSendResponse,
)
from taor.protocol.transport import DirectTransport
from taor.providers.base import BaseProvider
from taor.tools.base import ToolResult
from taor.tools.registry import ToolRegistry
from taor.utils.session_transcript import SessionTranscript
from .approval import make_bus_approval
from .cancellation import CancellationToken
from .context.compaction import Summarizer
from .context.history import CompressResult, History
from .context.message import CANCELED_MESSAGE_TEXT, Message, create_tool_result_part
from .loop import run_loop
from .structs import LoopErrorType, LoopResult, StreamResult, ToolUse, TurnInfo


class AgentSession:
    """
    Owns one History and runs at most one loop over it at a time.
    """

    def __init__(
        self,
        bus: MessageBus,
        provider: BaseProvider,
        tools: ToolRegistry,
        settings: Optional[Settings] = None,
        system_prompt: str = "",
        cwd: str = "",
        session_id: Optional[str] = None,
        history: Optional[History] = None,
        on_message: Optional[Any] = None,
        summarize: Optional[Summarizer] = None,
    ):
        self.bus = bus
        self.provider = provider
        self.tools = tools
        self.settings = settings or Settings()
        self.system_prompt = system_prompt
        self.cwd = cwd
        self.session_id = session_id
        self.summarize = summarize
        self.logger = logging.getLogger(__name__)

        if self.settings.tool_description_limit and not tools.description_limit:
            tools.description_limit = self.settings.tool_description_limit
        if on_message is None and self.settings.transcript_dir is not None:
            on_message = SessionTranscript(self.settings.transcript_dir, session_id)
            self.session_id = on_message.session_id
        self._on_message = on_message
        self.history = history or History(on_message=self._handle_message)
        self.history.on_message = self._handle_message

        self._token: Optional[CancellationToken] = None
        self.last_result: Optional[LoopResult] = None

    @classmethod
    def create_local(
        cls, provider: BaseProvider, tools: ToolRegistry, settings: Optional[Settings] = None, **kwargs
    ) -> Tuple["AgentSession", MessageBus]:
        """
        Start a session behind an in-process transport pair.

        Returns the session and the front-end bus wired to it.
        """
        settings = settings or Settings()
        client_side, agent_side = DirectTransport.create_pair(settings.bus_buffer_size)
        client = MessageBus("client")
        client.set_transport(client_side)
        agent_bus = MessageBus("agent")
        agent_bus.set_transport(agent_side)

        session = cls(agent_bus, provider, tools, settings=settings, **kwargs)
        session.start()
        return session, client

    @property
    def busy(self) -> bool:
        return self._token is not None

    def start(self) -> None:
        """Register the session's request handlers on the bus."""
        self.bus.register_handler(Methods.SESSION_SEND, self.handle_send)
        self.bus.register_handler(Methods.SESSION_CANCEL, self.handle_cancel)

    def stop(self) -> None:
        self.bus.unregister_handler(Methods.SESSION_SEND)
        self.bus.unregister_handler(Methods.SESSION_CANCEL)
        if self._token is not None:
            self._token.cancel("Session stopped")

    # --- Handlers ---

    async def handle_send(self, params: SessionSendParams) -> SessionSendResponse:
        if isinstance(params, dict):
            params = SessionSendParams.model_validate(params)
        if self.busy:
            raise AgentError("Session is busy with another request")

        token = CancellationToken()
        self._token = token
        try:
            user_message = Message(role="user", content=params.message)
            if params.parent_id is not None:
                await self.history.add_message(user_message, parent_id=params.parent_id)
            else:
                await self.history.add_message(user_message)

            result = await self._run(token)
            if result.error is not None and result.error.type == LoopErrorType.CANCELED:
                await self._close_canceled_turn()
        finally:
            self._token = None

        self.last_result = result
        return await self._to_response(result)

    async def handle_cancel(
        self, params: Optional[SessionCancelParams] = None
    ) -> SessionCancelResponse:
        if self._token is None:
            return SessionCancelResponse(canceled=False)
        self._token.cancel("Canceled by peer")
        self.logger.info("Session run canceled")
        return SessionCancelResponse(canceled=True)

    # --- Loop wiring ---

    async def _run(self, token: CancellationToken) -> LoopResult:
        settings = self.settings
        return await run_loop(
            self.history,
            self.provider,
            self.tools,
            cwd=self.cwd,
            system_prompt=self.system_prompt,
            max_turns=settings.max_turns,
            error_retry_turns=settings.error_retry_turns,
            retry_base_delay=settings.retry_base_delay,
            retry_poll_interval=settings.retry_poll_interval,
            cancellation=token,
            auto_compact=settings.auto_compact,
            compression_config=settings.compression_config(),
            summarize=self.summarize,
            on_text_delta=self._emit_text_delta,
            on_text=self._emit_text,
            on_reasoning=self._emit_reasoning,
            on_stream_result=self._emit_stream_result,
            on_tool_use=self._emit_tool_use,
            on_tool_result=self._emit_tool_result,
            on_tool_approve=make_bus_approval(
                self.bus, self.tools, timeout=settings.request_timeout
            ),
            on_turn=self._emit_turn,
            on_compress=self._emit_compressed,
            on_message=self._handle_message,
        )

    async def _close_canceled_turn(self) -> None:
        """
        Answer every tool use the canceled run left open, or mark the
        interruption with a user message when nothing was left open.
        """
        incomplete = self.history.find_incomplete_tool_uses()
        if incomplete is None:
            await self.history.add_message(Message(role="user", content=CANCELED_MESSAGE_TEXT))
            return

        _, tool_uses = incomplete
        parts = [
            create_tool_result_part(
                tool_use.id,
                tool_use.name,
                tool_use.input,
                ToolResult.skipped(CANCELED_MESSAGE_TEXT),
            )
            for tool_use in tool_uses
        ]
        await self.history.add_message(Message(role="tool", content=parts))
        self.logger.debug("Closed %d tool uses left open by cancellation", len(parts))

    async def _to_response(self, result: LoopResult) -> SessionSendResponse:
        if result.success:
            return SessionSendResponse(
                success=True,
                text=result.data.get("text"),
                turns_count=result.metadata.get("turns_count", 0),
                tool_calls_count=result.metadata.get("tool_calls_count", 0),
            )

        error = {"type": result.error.type.value, "message": result.error.message}
        retries = result.error.details.get("retries_attempted")
        if retries is not None:
            error["retries_attempted"] = retries
        await self.bus.emit_event(Topics.ERROR, error)
        return SessionSendResponse(
            success=False,
            error=error,
            turns_count=result.error.details.get("turns_count", 0),
        )

    async def _handle_message(self, message: Message) -> None:
        await self.bus.emit_event(
            Topics.MESSAGE, {"session_id": self.session_id, "message": message.to_dict()}
        )
        if self._on_message is not None:
            result = self._on_message(message)
            if inspect.isawaitable(result):
                await result

    # --- Event emitters ---

    async def _emit_text_delta(self, delta: str) -> None:
        await self.bus.emit_event(Topics.TEXT_DELTA, {"text": delta})

    async def _emit_text(self, text: str) -> None:
        await self.bus.emit_event(Topics.TEXT, {"text": text})

    async def _emit_reasoning(self, reasoning: str) -> None:
        await self.bus.emit_event(Topics.REASONING, {"text": reasoning})

    async def _emit_stream_result(self, stream_result: StreamResult) -> None:
        payload = {
            "request_id": stream_result.request_id,
            "model": stream_result.model,
            "status_code": stream_result.status_code,
            "retries_attempted": stream_result.retries_attempted,
        }
        if stream_result.error:
            payload["error"] = {
                k: v for k, v in stream_result.error.items() if k != "data"
            }
            payload["error"]["message"] = str(stream_result.error.get("data"))
        await self.bus.emit_event(Topics.STREAM_RESULT, payload)

    async def _emit_tool_use(self, tool_use: ToolUse) -> None:
        await self.bus.emit_event(
            Topics.TOOL_USE,
            {"name": tool_use.name, "params": tool_use.params, "call_id": tool_use.call_id},
        )

    async def _emit_tool_result(self, tool_use: ToolUse, result, approved: bool) -> None:
        await self.bus.emit_event(
            Topics.TOOL_RESULT,
            {
                "name": tool_use.name,
                "call_id": tool_use.call_id,
                "approved": approved,
                "result": result.to_dict(),
            },
        )
        if result.is_error:
            self.logger.debug("Tool %s returned %s", tool_use.name, result.status.value)

    async def _emit_turn(self, turn: TurnInfo) -> None:
        await self.bus.emit_event(
            Topics.TURN,
            {
                "usage": turn.usage.to_dict(),
                "start_time": turn.start_time.isoformat(),
                "end_time": turn.end_time.isoformat(),
            },
        )

    async def _emit_compressed(self, compressed: CompressResult) -> None:
        await self.bus.emit_event(
            Topics.COMPRESSED,
            {
                "compressed": compressed.compressed,
                "pruned": compressed.pruned,
                "pruned_tokens": compressed.prune_result.pruned_tokens,
            },
        )
