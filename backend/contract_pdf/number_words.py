"""
Hungarian number-to-words conversion for the purchase price.

Contracts spell the price out in words ("vételár betűvel"). The converter
asks a language model first and falls back to a rule-based speller when no
API key is configured or the call fails.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
import threading
from typing import Optional, Union

from cachetools import TTLCache
from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

UNITS = ["", "egy", "kettő", "három", "négy", "öt", "hat", "hét", "nyolc", "kilenc"]
TENS = ["", "tíz", "húsz", "harminc", "negyven", "ötven", "hatvan", "hetven", "nyolcvan", "kilencven"]
TENS_WITH_UNITS = ["", "tizen", "huszon", "harminc", "negyven", "ötven", "hatvan", "hetven", "nyolcvan", "kilencven"]
SCALES = ["", "ezer", "millió", "milliárd", "billió", "billiárd", "trillió"]

# Up to this value the number is written as a single word.
HYPHEN_THRESHOLD = 2000

# Longest amount the scale words can spell (999 trillió ...).
MAX_DIGITS = 3 * len(SCALES)

PROMPT = (
    "Convert the number {number} to Hungarian words. The output should be capitalized. "
    'For example, if the input is 123, the output should be "Egyszázhuszonhárom". '
    'Respond ONLY with a JSON object: {{"words": "..."}}'
)


class NumberToWordsError(RuntimeError):
    """Raised when a number cannot be spelled out."""


def _unit(digit: int, in_compound: bool) -> str:
    if digit == 2 and in_compound:
        return "két"
    return UNITS[digit]


def _spell_group(n: int, in_compound: bool) -> str:
    """Spell 1..999. ``in_compound`` means a scale word follows (két vs kettő)."""
    hundreds, rest = divmod(n, 100)
    tens, units = divmod(rest, 10)
    parts = []
    if hundreds:
        parts.append(_unit(hundreds, True) + "száz")
    if tens:
        parts.append(TENS_WITH_UNITS[tens] if units else TENS[tens])
    if units:
        parts.append(_unit(units, in_compound))
    return "".join(parts)


def spell_hungarian(number: int) -> str:
    """
    Spell a non-negative integer in Hungarian, lower case.

    >>> spell_hungarian(123)
    'egyszázhuszonhárom'
    >>> spell_hungarian(2500000)
    'kétmillió-ötszázezer'
    """
    if number < 0:
        raise NumberToWordsError(f"Negative amount: {number}")
    if number == 0:
        return "nulla"

    groups = []
    remaining = number
    while remaining:
        remaining, group = divmod(remaining, 1000)
        groups.append(group)
    if len(groups) > len(SCALES):
        raise NumberToWordsError(f"Amount too large: {number}")

    words = []
    for scale_index in range(len(groups) - 1, -1, -1):
        group = groups[scale_index]
        if not group:
            continue
        words.append(_spell_group(group, in_compound=scale_index > 0) + SCALES[scale_index])

    separator = "" if number <= HYPHEN_THRESHOLD else "-"
    return separator.join(words)


def capitalize(words: str) -> str:
    return words[:1].upper() + words[1:]


def parse_amount(value: Union[str, int, float, None]) -> Optional[int]:
    """
    Read a price as typed into the form; ``None`` for anything non-positive.

    Accepts Hungarian thousand separators (space or dot) and ignores a
    fractional part. Raises NumberToWordsError for amounts too long to spell.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        amount = int(value)
        if amount >= 10**MAX_DIGITS:
            raise NumberToWordsError("Amount too large")
        return amount if amount > 0 else None

    text = re.sub(r"\s", "", str(value))
    if re.fullmatch(r"\d{1,3}(\.\d{3})+", text):
        text = text.replace(".", "")
    match = re.match(r"\d+", text)
    if not match:
        return None
    digits = match.group(0).lstrip("0")
    if len(digits) > MAX_DIGITS:
        raise NumberToWordsError(f"Amount too large: {len(digits)} digits")
    amount = int(digits or "0")
    return amount if amount > 0 else None


class NumberToWordsConverter:
    """Converts prices to capitalised Hungarian words, caching the results."""

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        model: Optional[str] = None,
        client=None,
        cache_ttl: int = 24 * 3600,
    ):
        api_key = openai_api_key or os.getenv("OPENAI_API_KEY")
        self.openai_client = client or (OpenAI(api_key=api_key) if api_key else None)
        self.model = model or os.getenv("NUMBER_WORDS_MODEL", DEFAULT_MODEL)
        self._cache: TTLCache = TTLCache(maxsize=512, ttl=cache_ttl)
        self._lock = threading.Lock()

    def convert(self, value: Union[str, int, float, None]) -> str:
        amount = parse_amount(value)
        if amount is None:
            return ""
        with self._lock:
            cached = self._cache.get(amount)
        if cached is not None:
            return cached

        words = None
        if self.openai_client is not None:
            words = self._ask_model(amount)
        if not words:
            words = capitalize(spell_hungarian(amount))

        with self._lock:
            self._cache[amount] = words
        return words

    def _ask_model(self, amount: int) -> Optional[str]:
        try:
            response = self.openai_client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": PROMPT.format(number=amount)}],
                temperature=0,
                max_tokens=200,
                response_format={"type": "json_object"},
            )
            content = (response.choices[0].message.content or "").strip()
            if content.startswith("```"):
                content = content.strip("`").removeprefix("json").strip()
            words = str(json.loads(content).get("words", "")).strip()
        except Exception as exc:
            logger.warning("Number-to-words model call failed for %s: %s", amount, exc)
            return None

        if not words:
            logger.warning("Model returned no words for %s", amount)
            return None
        return capitalize(words)
