import logging
from typing import Any, Dict, List, Optional

from rich.logging import RichHandler

from taor.protocol.bus import MessageBus
from taor.protocol.events import Topics

LOGGER_NAME = "taor"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Route the `taor` logger tree through a single RichHandler.

    Safe to call repeatedly; an existing RichHandler is reused.
    """
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level.upper())
    root.propagate = False  # Don't double-print to root logger

    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(handler)
    return root


class EventLogger:
    """
    Logs the loop's bus events on the receiving side.

    Text deltas are aggregated and flushed once per turn so a streamed
    answer lands as one log line instead of one per token.
    """

    def __init__(self, bus: MessageBus, logger: Optional[logging.Logger] = None):
        self._bus = bus
        self._buffer: List[str] = []  # The "Stream Aggregator" buffer
        self._logger = logger or logging.getLogger(f"{LOGGER_NAME}.events")
        self._handlers = {
            Topics.TEXT_DELTA: self._handle_delta,
            Topics.TURN: self._handle_turn,
            Topics.TOOL_RESULT: self._log_tool,
            Topics.COMPRESSED: self._log_compressed,
            Topics.ERROR: self._log_error,
        }

    def start(self) -> None:
        for topic, handler in self._handlers.items():
            self._bus.on_event(topic, handler)

    def stop(self) -> None:
        for topic, handler in self._handlers.items():
            self._bus.off_event(topic, handler)
        self._buffer.clear()

    @property
    def buffered_text(self) -> str:
        return "".join(self._buffer)

    # --- Handlers ---

    def _handle_delta(self, data: Dict[str, Any]) -> None:
        """Silent buffer. Doesn't print."""
        delta = (data or {}).get("text", "")
        if delta:
            self._buffer.append(delta)

    def _handle_turn(self, data: Dict[str, Any]) -> None:
        """Flushes the buffer to the log."""
        usage = (data or {}).get("usage") or {}
        if self._buffer:
            self._logger.info("MODEL: %s", "".join(self._buffer))
            self._buffer.clear()
        self._logger.info(
            "TURN: prompt=%s completion=%s",
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
        )

    def _log_tool(self, data: Dict[str, Any]) -> None:
        data = data or {}
        result = data.get("result") or {}
        status = result.get("status", "unknown")
        self._logger.info("TOOL: %s finished (%s)", data.get("name", "unknown"), status)

    def _log_compressed(self, data: Dict[str, Any]) -> None:
        self._logger.info("CONTEXT: %s", data)

    def _log_error(self, data: Dict[str, Any]) -> None:
        data = data or {}
        self._logger.error("ERROR: %s", data.get("message", data))
