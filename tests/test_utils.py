# Test suite for logging helpers and the session transcript

import asyncio
import json
import logging

import pytest
from rich.logging import RichHandler

from taor.agent.context.message import Message, ToolResultPart
from taor.protocol.bus import MessageBus
from taor.protocol.events import Topics
from taor.protocol.transport import DirectTransport
from taor.tools.base import ToolResult
from taor.utils.logger import LOGGER_NAME, EventLogger, setup_logging
from taor.utils.session_transcript import SessionTranscript


async def settle(ticks: int = 10):
    for _ in range(ticks):
        await asyncio.sleep(0)


@pytest.fixture
def taor_logger():
    logger = logging.getLogger(LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers, logger.level, logger.propagate = saved[0], saved[1], saved[2]


class TestSetupLogging:
    def test_single_rich_handler(self, taor_logger):
        setup_logging("debug")
        setup_logging("info")

        rich_handlers = [h for h in taor_logger.handlers if isinstance(h, RichHandler)]
        assert len(rich_handlers) == 1
        assert taor_logger.level == logging.INFO
        assert taor_logger.propagate is False


class TestEventLogger:
    @pytest.fixture
    def pair(self):
        left, right = DirectTransport.create_pair()
        sender, receiver = MessageBus("agent"), MessageBus("observer")
        sender.set_transport(left)
        receiver.set_transport(right)
        return sender, receiver

    @pytest.mark.asyncio
    async def test_deltas_flush_on_turn(self, pair, caplog):
        sender, receiver = pair
        event_logger = EventLogger(receiver, logging.getLogger("tests.events"))
        event_logger.start()
        caplog.set_level(logging.INFO, logger="tests.events")

        await sender.emit_event(Topics.TEXT_DELTA, {"text": "Hel"})
        await sender.emit_event(Topics.TEXT_DELTA, {"text": "lo"})
        await settle()
        assert event_logger.buffered_text == "Hello"
        assert "MODEL" not in caplog.text

        await sender.emit_event(
            Topics.TURN, {"usage": {"prompt_tokens": 12, "completion_tokens": 3}}
        )
        await settle()

        assert event_logger.buffered_text == ""
        assert "MODEL: Hello" in caplog.text
        assert "TURN: prompt=12 completion=3" in caplog.text

    @pytest.mark.asyncio
    async def test_tool_and_error_lines(self, pair, caplog):
        sender, receiver = pair
        event_logger = EventLogger(receiver, logging.getLogger("tests.events"))
        event_logger.start()
        caplog.set_level(logging.INFO, logger="tests.events")

        await sender.emit_event(
            Topics.TOOL_RESULT, {"name": "echo", "result": {"status": "success"}}
        )
        await sender.emit_event(Topics.ERROR, {"type": "api_error", "message": "boom"})
        await settle()

        assert "TOOL: echo finished (success)" in caplog.text
        error_records = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert error_records[0].getMessage() == "ERROR: boom"

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, pair):
        sender, receiver = pair
        event_logger = EventLogger(receiver, logging.getLogger("tests.events"))
        event_logger.start()
        event_logger.stop()

        await sender.emit_event(Topics.TEXT_DELTA, {"text": "ignored"})
        await settle()

        assert event_logger.buffered_text == ""


class TestSessionTranscript:
    @pytest.mark.asyncio
    async def test_append_and_load(self, tmp_path):
        transcript = SessionTranscript(tmp_path / "sessions", session_id="abc")
        first = Message(role="user", content="hello")
        second = Message(
            role="tool",
            content=[ToolResultPart("c1", "echo", {"text": "x"}, ToolResult.success_result("x"))],
            parent_id=first.id,
        )

        await transcript(first)
        await transcript.append(second)

        assert transcript.path == tmp_path / "sessions" / "abc.jsonl"
        lines = transcript.path.read_text(encoding="utf-8").splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["sequence"] for r in records] == [0, 1]
        assert all(r["session_id"] == "abc" for r in records)

        restored = SessionTranscript.load(transcript.path)
        assert [m.id for m in restored] == [first.id, second.id]
        assert restored[1].content[0].result.llm_content == "x"

    def test_generated_session_id(self, tmp_path):
        transcript = SessionTranscript(tmp_path)

        assert transcript.session_id
        assert transcript.path.name == f"{transcript.session_id}.jsonl"
