"""
`@path` mentions in user prompts.

`@src/app.py`, `@"docs/my notes.md"` and `@src/app.py:10-20` pull the
file's text into the prompt. Directory and missing-file mentions are
ignored. Expansion runs once per loop run, on the newest user message.
"""

import copy
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 256 * 1024

_MENTION_PATTERN = re.compile(r'(?:^|(?<=\s))@(?:"([^"]+)"|([^\s"]+))')
_RANGE_PATTERN = re.compile(r"^(.*?):(\d+)(?:-(\d+))?$")


@dataclass
class Mention:
    path: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None


def parse_mentions(text: str) -> List[Mention]:
    mentions = []
    seen = set()
    for match in _MENTION_PATTERN.finditer(text):
        raw = match.group(1) or match.group(2)
        raw = raw.rstrip(".,;!?)")
        start = end = None
        range_match = _RANGE_PATTERN.match(raw)
        if range_match:
            raw = range_match.group(1)
            start = int(range_match.group(2))
            end = int(range_match.group(3)) if range_match.group(3) else start
        key = (raw, start, end)
        if raw and key not in seen:
            seen.add(key)
            mentions.append(Mention(raw, start, end))
    return mentions


def _resolve(path: str, cwd: str) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path(cwd) / candidate
    return candidate


def _read_mention(mention: Mention, cwd: str) -> Optional[str]:
    path = _resolve(mention.path, cwd)
    if not path.is_file():
        if path.is_dir():
            logger.debug("Ignoring directory mention: %s", mention.path)
        return None

    try:
        if path.stat().st_size > MAX_FILE_BYTES:
            logger.warning("Skipping %s: larger than %d bytes", path, MAX_FILE_BYTES)
            return None
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Could not read mentioned file %s: %s", path, e)
        return None

    attrs = f'path="{mention.path}"'
    if mention.start_line is not None:
        lines = text.splitlines()
        start = max(1, mention.start_line)
        end = min(len(lines), mention.end_line or start)
        text = "\n".join(lines[start - 1:end])
        attrs += f' lines="{start}-{end}"'
    return f"<file {attrs}>\n{text}\n</file>"


def get_mention_content(text: str, cwd: str) -> Optional[str]:
    """File blocks for every readable file mentioned in `text`, or None."""
    blocks = [
        block
        for block in (_read_mention(m, cwd) for m in parse_mentions(text))
        if block is not None
    ]
    if not blocks:
        return None
    return "\n\n".join(blocks)


def expand_prompt_mentions(prompt: List[Dict[str, Any]], cwd: str) -> List[Dict[str, Any]]:
    """
    Return a copy of a provider prompt whose last user message has the
    mentioned files appended to its last text part.
    """
    if not cwd:
        return prompt

    for index in range(len(prompt) - 1, -1, -1):
        message = prompt[index]
        if message.get("role") != "user":
            continue
        text_parts = [p for p in message.get("content", []) if p.get("type") == "text"]
        if not text_parts:
            return prompt

        content = get_mention_content("\n".join(p["text"] for p in text_parts), cwd)
        if content is None:
            return prompt

        expanded = list(prompt)
        new_message = copy.deepcopy(message)
        last_text = [p for p in new_message["content"] if p.get("type") == "text"][-1]
        last_text["text"] = f"{last_text['text']}\n\n{content}"
        expanded[index] = new_message
        return expanded
    return prompt
