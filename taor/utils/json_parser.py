"""
JSON Parsing Utilities.

Tool-call arguments arrive as model-written JSON strings. They are parsed
leniently: strict json first, then a repair pass that strips Markdown
fences, cuts the first balanced object out of surrounding prose and drops
trailing commas. Anything still unparseable becomes an empty dict.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")


def safe_parse_json(raw: Any) -> Dict[str, Any]:
    """
    Parse tool-call input into a dict.

    Models sometimes return an empty value, a dict, or slightly broken JSON
    instead of a JSON string; all of those are tolerated.
    """
    if isinstance(raw, dict):
        return raw
    if raw is None:
        return {}
    if not isinstance(raw, str):
        logger.debug("Unexpected tool input type %s", type(raw).__name__)
        return {}
    if not raw.strip():
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug("safe_parse_json failed, trying to repair: %s", e)
        parsed = _repair(raw)

    if not isinstance(parsed, dict):
        return {}
    return parsed


def _repair(text: str) -> Optional[Any]:
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        text = fenced.group(1)

    candidate = _BracketParser(text).first_object()
    if candidate is None:
        candidate = text.strip()
        # Truncated output: close what was opened.
        candidate += _BracketParser(candidate).missing_closers()

    candidate = _TRAILING_COMMA_PATTERN.sub(r"\1", candidate)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug("safe_parse_json repair failed: %s", e)
        return None


class _BracketParser:
    """
    Stateful bracket counter that respects string literals.
    """

    # pylint: disable=too-few-public-methods

    def __init__(self, text: str):
        self.text = text
        self._stack = []
        self._in_string = False
        self._escape = False

    def first_object(self) -> Optional[str]:
        """Return the first balanced {...} substring, if any."""
        start = None
        for i, char in enumerate(self.text):
            if not self._advance(char):
                continue
            if char == "{":
                if not self._stack:
                    start = i
                self._stack.append(char)
            elif char == "}" and self._stack:
                self._stack.pop()
                if not self._stack and start is not None:
                    return self.text[start:i + 1]
        return None

    def missing_closers(self) -> str:
        for char in self.text:
            if not self._advance(char):
                continue
            if char in "{[":
                self._stack.append(char)
            elif char in "}]" and self._stack:
                self._stack.pop()
        closers = "".join("}" if c == "{" else "]" for c in reversed(self._stack))
        return ('"' if self._in_string else "") + closers

    def _advance(self, char: str) -> bool:
        """Update string/escape state; True when `char` is structural."""
        if self._escape:
            self._escape = False
            return False
        if char == "\\":
            self._escape = self._in_string
            return False
        if char == '"':
            self._in_string = not self._in_string
            return False
        return not self._in_string
