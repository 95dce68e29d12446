"""Append-only JSONL transcript of a session's history messages."""

import asyncio
import json
import time
import uuid
from pathlib import Path
from typing import List, Optional

from taor.agent.context.message import Message


class SessionTranscript:
    """
    Records each message added to a History as one JSON line.

    Instances are callable so they can be passed straight to
    `run_loop(on_message=...)` or `History(on_message=...)`.
    """

    def __init__(self, directory: Path, session_id: Optional[str] = None):
        self._session_id = session_id or f"{int(time.time())}-{uuid.uuid4().hex[:8]}"
        self._sequence = 0
        self._lock = asyncio.Lock()
        self._path = Path(directory) / f"{self._session_id}.jsonl"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def session_id(self) -> str:
        return self._session_id

    async def __call__(self, message: Message) -> None:
        await self.append(message)

    async def append(self, message: Message) -> None:
        async with self._lock:
            record = {
                "session_id": self._session_id,
                "sequence": self._sequence,
                "timestamp": time.time(),
                "message": message.to_dict(),
            }
            self._sequence += 1
            line = json.dumps(record, ensure_ascii=True, separators=(",", ":"))
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    @staticmethod
    def load(path: Path) -> List[Message]:
        """Read a transcript back into messages, in recorded order."""
        records = []
        with Path(path).open("r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    records.append(json.loads(line))
        records.sort(key=lambda r: r.get("sequence", 0))
        return [Message.from_dict(r["message"]) for r in records]
