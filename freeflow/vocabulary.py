"""Vocabulary assembly and fuzzy correction of proper nouns.

Everything in this module is pure: no I/O and no shared state, so the helpers
can be called concurrently from any number of rewrites.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

# Words that introduce a list of people in a context summary.
ADDRESS_CUES = ("addressing", "recipient", "recipients", "to", "cc", "bcc")

# Separators (besides the comma) between names once a cue has been found.
LIST_SEPARATORS = (";", " and ", " or ", " cc ", " bcc ")

NAME_MAX_TOKENS = 3

_VOCABULARY_SPLIT_RE = re.compile(r"[\n,;]")
_CONTEXT_CUE_RE = re.compile(
    r"\b(?:%s)\b\s*[:\-]?\s*(.+)" % "|".join(ADDRESS_CUES),
    re.IGNORECASE,
)
_SEPARATOR_RE = re.compile(
    "|".join(re.escape(separator) for separator in LIST_SEPARATORS),
    re.IGNORECASE,
)
_FRAGMENT_END_RE = re.compile(r"[.;]")
_TOKEN_RE = re.compile(r"[^\W\d_]+")


def parse_vocabulary(raw: str) -> List[str]:
    """Split user vocabulary text on newlines, commas and semicolons."""

    terms = (piece.strip() for piece in _VOCABULARY_SPLIT_RE.split(raw or ""))
    return [term for term in terms if term]


def looks_like_person_name(value: str) -> bool:
    tokens = value.split()
    if not tokens or len(tokens) > NAME_MAX_TOKENS:
        return False
    return all(token[0].isupper() for token in tokens)


def _parse_name_list(text: str) -> List[str]:
    names: List[str] = []
    for piece in _SEPARATOR_RE.sub(",", text).split(","):
        cleaned = piece.strip().strip(".:")
        if not cleaned:
            continue
        if ":" in cleaned:
            cleaned = cleaned.replace(":", " ").strip()
        if looks_like_person_name(cleaned):
            names.append(cleaned)
    return names


def context_terms(context_summary: str) -> List[str]:
    """Extract name-like terms that follow address cues ("to", "cc", ...)."""

    candidates: List[str] = []
    for match in _CONTEXT_CUE_RE.finditer(context_summary or ""):
        capture = match.group(1)
        end = _FRAGMENT_END_RE.search(capture)
        if end is not None:
            capture = capture[: end.start()]
        candidates.extend(_parse_name_list(capture))
    return _dedupe(candidates)


def _dedupe(terms: Iterable[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for term in terms:
        cleaned = term.strip()
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


def rank_terms(terms: Iterable[str]) -> List[str]:
    """Order terms for substitution: longest first, then alphabetically."""

    return sorted(terms, key=lambda term: (-len(term), term.casefold()))


def merged_vocabulary_terms(raw_vocabulary: str, context_summary: str) -> List[str]:
    """Combine user and context terms, adding the words of multi-word terms.

    >>> merged_vocabulary_terms("Aanya", "cc: Deep Thought")
    ['Deep Thought', 'Thought', 'Aanya', 'Deep']
    """

    expanded: List[str] = []
    for term in parse_vocabulary(raw_vocabulary) + context_terms(context_summary):
        term = term.strip()
        if not term:
            continue
        expanded.append(term)
        if " " in term:
            expanded.extend(part for part in term.split() if len(part) > 1)
    return rank_terms(_dedupe(expanded))


def levenshtein(left: str, right: str) -> int:
    """Classic edit distance with unit insert, delete and substitute costs."""

    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i] + [0] * len(right)
        for j, right_char in enumerate(right, start=1):
            if left_char == right_char:
                current[j] = previous[j - 1]
            else:
                current[j] = min(previous[j], current[j - 1], previous[j - 1]) + 1
        previous = current
    return previous[-1]


def fuzzy_match(token: str, vocabulary: Sequence[str]) -> Optional[str]:
    """Return the vocabulary spelling for a close misspelling of ``token``.

    Candidates must share the token's first letter and differ in length by at
    most two. Tokens up to five characters accept one edit, longer tokens two.
    Exact (case-insensitive) matches are never rewritten.
    """

    lowered = token.lower()
    if len(lowered) < 2:
        return None
    if any(candidate.strip().lower() == lowered for candidate in vocabulary):
        return None

    threshold = 1 if len(lowered) <= 5 else 2
    for candidate in vocabulary:
        clean = candidate.strip()
        lowered_candidate = clean.lower()
        if not lowered_candidate or lowered_candidate[0] != lowered[0]:
            continue
        if abs(len(lowered_candidate) - len(lowered)) > 2:
            continue
        if levenshtein(lowered, lowered_candidate) <= threshold:
            return clean
    return None


def _replace_phrase(text: str, phrase: str) -> str:
    pattern = re.compile(r"\b%s\b" % re.escape(phrase), re.IGNORECASE)
    return pattern.sub(lambda _match: phrase, text)


def correct_transcript(text: str, vocabulary: Sequence[str]) -> str:
    """Rewrite close misspellings of vocabulary terms in ``text``.

    Multi-word phrases are restored first so that they win over word-level
    guesses. ``vocabulary`` is expected in priority order (see
    :func:`rank_terms`).
    """

    result = text
    for entry in vocabulary:
        phrase = entry.strip()
        if " " in phrase:
            result = _replace_phrase(result, phrase)

    single_words = [entry for entry in vocabulary if " " not in entry.strip()]
    if not single_words:
        return result

    def _substitute(match: re.Match) -> str:
        replacement = fuzzy_match(match.group(0), single_words)
        return replacement if replacement is not None else match.group(0)

    return _TOKEN_RE.sub(_substitute, result)


__all__ = [
    "ADDRESS_CUES",
    "LIST_SEPARATORS",
    "NAME_MAX_TOKENS",
    "context_terms",
    "correct_transcript",
    "fuzzy_match",
    "levenshtein",
    "looks_like_person_name",
    "merged_vocabulary_terms",
    "parse_vocabulary",
    "rank_terms",
]
