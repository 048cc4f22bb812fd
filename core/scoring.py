"""
Deterministic confidence scoring of raw input against a module's command phrases.

Per phrase (first rule that applies wins):
    exact match after normalization          -> 1.0
    every phrase word found among input words -> 0.8  (substring either way)
    fuzzy word matches (edit distance)        -> matches / phrase words, max 0.6
    wildcard phrase (* any run, ? one char)   -> 0.7
    otherwise                                 -> 0.0

A module's score is the max over its phrases. Everything here is pure:
no I/O and no shared state, so modules can be scored concurrently.
"""

import re
from typing import Iterable, List, Optional

EXACT_MATCH = 1.0
ALL_WORDS_MATCH = 0.8
WILDCARD_MATCH = 0.7
PARTIAL_MATCH_CAP = 0.6

_WILDCARD_CHARS = ("*", "?")


def normalize(text: Optional[str]) -> str:
    """Lowercase and trim."""
    return (text or "").lower().strip()


def split_words(text: str) -> List[str]:
    return text.split()


def clamp_confidence(value: float) -> float:
    """Clamp into [0, 1]; NaN counts as 0."""
    if value != value:
        return 0.0
    return max(0.0, min(1.0, float(value)))


def levenshtein_distance(s1: str, s2: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def _words_close(input_word: str, phrase_word: str) -> bool:
    tolerance = max(1, min(len(input_word), len(phrase_word)) // 3)
    return levenshtein_distance(input_word, phrase_word) <= tolerance


def compile_wildcard(phrase: str) -> "re.Pattern":
    """Compile a phrase with * and ? wildcards into a regex matched anywhere in the input."""
    parts = []
    for ch in phrase:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def phrase_confidence(normalized_input: str, phrase: str) -> float:
    """
    Score one already-normalized input against one phrase.

    Args:
        normalized_input: Output of normalize()
        phrase: A supported command phrase (normalized here)

    Returns:
        Score in [0, 1]
    """
    command = normalize(phrase)
    if not command:
        return 0.0

    if normalized_input == command:
        return EXACT_MATCH

    command_words = split_words(command)
    input_words = split_words(normalized_input)

    matching = sum(
        1 for cw in command_words
        if any(iw in cw or cw in iw for iw in input_words)
    )
    if matching == len(command_words):
        return ALL_WORDS_MATCH

    partial = sum(
        1 for cw in command_words
        if any(_words_close(iw, cw) for iw in input_words)
    )
    if partial > 0:
        return min(PARTIAL_MATCH_CAP, partial / len(command_words))

    if any(ch in command for ch in _WILDCARD_CHARS):
        if compile_wildcard(command).search(normalized_input):
            return WILDCARD_MATCH

    return 0.0


def score_phrases(text: str, phrases: Iterable[str]) -> float:
    """Best phrase score for raw input text."""
    normalized_input = normalize(text)
    best = 0.0
    for phrase in phrases:
        best = max(best, phrase_confidence(normalized_input, phrase))
        if best >= EXACT_MATCH:
            break
    return best


def contains_any(normalized_input: str, keywords: Iterable[str]) -> bool:
    """Substring check used by domain adjustment hooks."""
    return any(keyword in normalized_input for keyword in keywords)
