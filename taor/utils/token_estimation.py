#!/usr/bin/env python3
"""
Token Estimation for the agent core
Provides token counting without heavy ML dependencies.

Used by the pruning pass to size tool outputs; the overflow check itself
relies on provider-reported usage, not on these estimates.
"""

import logging
import re
from functools import lru_cache

from taor.exceptions.context import TokenEstimationError

# Pre-compiled at module level; estimation runs once per tool result.
_CJK_CHARS_PATTERN = re.compile(r'[一-鿿]')
_CODE_CHARS_PATTERN = re.compile(r'[{}\(\)\[\];,.]')
_WHITESPACE_PATTERN = re.compile(r'\s')
_WORD_CLEANUP_PATTERN = re.compile(r'[^\w]')
_JSON_STRUCTURE_PATTERN = re.compile(r'[{}[\],:]')
_JSON_STRINGS_PATTERN = re.compile(r'"([^"]*)"')
_JSON_NUMBERS_PATTERN = re.compile(r'\b\d+\b')
_JSON_BOOLEANS_PATTERN = re.compile(r'\b(true|false|null)\b')
_MARKDOWN_HEADERS_PATTERN = re.compile(r'^#+\s', re.MULTILINE)
_MARKDOWN_CODE_BLOCKS_PATTERN = re.compile(r'```[^`]*```', re.DOTALL)

_MODEL_RULES = {
    'gpt': {
        'avg_chars_per_token': 4.0,
        'code_multiplier': 1.15,
        'cjk_multiplier': 0.8,
        'whitespace_factor': 0.95,
    },
    'claude': {
        'avg_chars_per_token': 3.5,
        'code_multiplier': 1.2,
        'cjk_multiplier': 0.8,
        'whitespace_factor': 0.9,
    },
    'generic': {
        'avg_chars_per_token': 4.0,
        'code_multiplier': 1.2,
        'cjk_multiplier': 0.75,
        'whitespace_factor': 0.9,
    },
}

_COMMON_PREFIXES = ('un', 're', 'pre', 'dis', 'over', 'under', 'out')
_COMMON_SUFFIXES = ('ing', 'ed', 'er', 'est', 'ly', 'tion', 'sion', 'ness')
_CODE_INDICATORS = ('def ', 'function ', 'class ', 'import ', 'from ', '#!/')
_CODE_KEYWORDS = ('def', 'class', 'if', 'for', 'while', 'import', 'from', 'return')


class SmartTokenEstimator:
    """
    Token estimation using linguistic patterns and empirical rules.
    Blends a character-based, a subword-based and a content-type estimate.
    """

    def __init__(self, model_family: str = "generic"):
        self.model_family = model_family.lower()
        self.logger = logging.getLogger(__name__)
        self.model_rules = next(
            (rules for family, rules in _MODEL_RULES.items() if family in self.model_family),
            _MODEL_RULES['generic'],
        )

    def estimate_tokens(self, text: str) -> int:
        """
        Estimate token count for given text.

        Args:
            text: Input text to analyze

        Returns:
            Estimated token count, at least 1 for non-empty text
        """
        if not text:
            return 0

        char_estimate = self._estimate_by_characters(text)
        subword_estimate = self._estimate_by_subwords(text)
        content_estimate = self._estimate_by_content_type(text)

        # Character-based gets the highest weight for stability
        final_estimate = int(
            0.5 * char_estimate +
            0.3 * subword_estimate +
            0.2 * content_estimate
        )
        return max(1, final_estimate)

    def _estimate_by_characters(self, text: str) -> float:
        try:
            char_count = len(text)
            cjk_chars = len(_CJK_CHARS_PATTERN.findall(text))
            code_chars = len(_CODE_CHARS_PATTERN.findall(text))
            whitespace_chars = len(_WHITESPACE_PATTERN.findall(text))

            base_tokens = char_count / self.model_rules['avg_chars_per_token']

            if cjk_chars > char_count * 0.1:
                base_tokens = base_tokens - cjk_chars + cjk_chars * self.model_rules['cjk_multiplier']

            if code_chars > char_count * 0.05:
                base_tokens *= self.model_rules['code_multiplier']

            if whitespace_chars > 0:
                base_tokens *= self.model_rules['whitespace_factor']

            return base_tokens
        except ZeroDivisionError as e:
            raise TokenEstimationError(
                "Token estimation failed due to invalid configuration.",
                estimator_name=self.__class__.__name__,
                original_error=e,
            ) from e

    def _estimate_by_subwords(self, text: str) -> float:
        token_count = 0.0
        for word in text.split():
            clean_word = _WORD_CLEANUP_PATTERN.sub('', word)
            if not clean_word:
                token_count += 1  # Punctuation-only = 1 token
                continue

            word_tokens = self._estimate_word_tokens(clean_word)
            word_tokens += (len(word) - len(clean_word)) * 0.8
            token_count += word_tokens

        return token_count

    def _estimate_word_tokens(self, word: str) -> float:
        if len(word) <= 3:
            return 1.0
        if len(word) <= 6:
            return 1.2

        tokens = 1.0
        for prefix in _COMMON_PREFIXES:
            if word.startswith(prefix):
                tokens += 0.3
                word = word[len(prefix):]
                break

        for suffix in _COMMON_SUFFIXES:
            if word.endswith(suffix):
                tokens += 0.4
                word = word[:-len(suffix)]
                break

        if len(word) > 4:
            tokens += (len(word) - 4) / 5.0  # ~1 token per 5 chars

        return tokens

    def _estimate_by_content_type(self, text: str) -> float:
        stripped = text.strip()
        if (stripped.startswith('{') and stripped.endswith('}')) or \
           (stripped.startswith('[') and stripped.endswith(']')):
            return self._estimate_json_tokens(text)
        if any(indicator in text for indicator in _CODE_INDICATORS):
            return self._estimate_code_tokens(text)
        if _MARKDOWN_HEADERS_PATTERN.search(text) or '```' in text:
            return self._estimate_markdown_tokens(text)
        return len(text.split()) * 1.3

    def _estimate_code_tokens(self, text: str) -> float:
        total_tokens = 0.0
        for line in text.split('\n'):
            if not line.strip():
                total_tokens += 1
                continue

            indent_level = len(line) - len(line.lstrip())
            total_tokens += max(1, indent_level // 4)

            code_content = line.strip()
            for keyword in _CODE_KEYWORDS:
                if keyword in code_content:
                    total_tokens += 1
                    code_content = code_content.replace(keyword, '', 1)

            total_tokens += len(code_content) / 3.5  # Code is denser

        return total_tokens

    def _estimate_json_tokens(self, text: str) -> float:
        structure_chars = len(_JSON_STRUCTURE_PATTERN.findall(text))
        string_tokens = sum(len(s) / 4.0 for s in _JSON_STRINGS_PATTERN.findall(text))
        numbers = len(_JSON_NUMBERS_PATTERN.findall(text))
        booleans = len(_JSON_BOOLEANS_PATTERN.findall(text))
        return structure_chars + string_tokens + numbers + booleans

    def _estimate_markdown_tokens(self, text: str) -> float:
        headers = len(_MARKDOWN_HEADERS_PATTERN.findall(text))
        code_blocks = _MARKDOWN_CODE_BLOCKS_PATTERN.findall(text)
        code_tokens = sum(self._estimate_code_tokens(block) for block in code_blocks)
        text_without_code = _MARKDOWN_CODE_BLOCKS_PATTERN.sub('', text)
        return headers * 2 + code_tokens + len(text_without_code.split()) * 1.3


@lru_cache(maxsize=8)
def get_estimator(model_family: str = "generic") -> SmartTokenEstimator:
    return SmartTokenEstimator(model_family)


def count_tokens(text: str, model_family: str = "generic") -> int:
    """Estimate tokens for `text` with a shared estimator."""
    return get_estimator(model_family).estimate_tokens(text)
