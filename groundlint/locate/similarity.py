"""
String similarity measures for fuzzy grounding.

Every measure takes (quote, candidate) after normalization and returns
a score in [0, 100]. The locator keeps the maximum over an ordered
list of measures, so adding or reordering measures never changes the
cascade's control flow.

Built on diff_match_patch. The diff engine's timeout is disabled:
with a timeout the diff (and therefore the score) would depend on
machine speed.
"""

from __future__ import annotations

import re
from typing import Callable, Sequence

import diff_match_patch as dmp_module

_dmp = dmp_module.diff_match_patch()
_dmp.Diff_Timeout = 0

_DIFF_EQUAL = dmp_module.diff_match_patch.DIFF_EQUAL
_DIFF_DELETE = dmp_module.diff_match_patch.DIFF_DELETE

_NON_WORD = re.compile(r"[\W_]+")

Measure = Callable[[str, str], float]


def normalize(text: str) -> str:
    """Lowercase, collapse every non-word run to one space."""
    return _NON_WORD.sub(" ", text.lower()).strip()


def _common_length(a: str, b: str) -> int:
    diffs = _dmp.diff_main(a, b, False)
    return sum(len(chunk) for op, chunk in diffs if op == _DIFF_EQUAL)


def ratio(a: str, b: str) -> float:
    """Whole-string similarity: 2 * common / total length."""
    total = len(a) + len(b)
    if not a or not b:
        return 0.0
    return 200.0 * _common_length(a, b) / total


def partial_ratio(quote: str, candidate: str) -> float:
    """
    Best ratio of the quote against any equally long slice of the
    candidate. Tolerates a quote that is only part of a line.

    Only the quote slides. A candidate shorter than the quote is slid
    over the quote instead and the score is scaled by how much of the
    quote it covers, so a one-word line found inside a long quote
    cannot score as a match.
    """
    if not quote or not candidate:
        return 0.0
    if len(quote) > len(candidate):
        return _best_slice_ratio(candidate, quote) * len(candidate) / len(quote)
    return _best_slice_ratio(quote, candidate)


def _best_slice_ratio(shorter: str, longer: str) -> float:
    if len(shorter) == len(longer):
        return ratio(shorter, longer)

    # Anchor candidate slices on the blocks the two strings share
    max_start = len(longer) - len(shorter)
    starts: list[int] = []
    i_short = i_long = 0
    for op, chunk in _dmp.diff_main(shorter, longer, False):
        if op == _DIFF_EQUAL:
            start = max(0, min(i_long - i_short, max_start))
            if start not in starts:
                starts.append(start)
            i_short += len(chunk)
            i_long += len(chunk)
        elif op == _DIFF_DELETE:
            i_short += len(chunk)
        else:
            i_long += len(chunk)

    best = 0.0
    for start in starts:
        score = ratio(shorter, longer[start:start + len(shorter)])
        if score > best:
            best = score
            if best >= 99.5:
                return 100.0
    return best


def token_sort_ratio(a: str, b: str) -> float:
    """Word-order-invariant similarity."""
    return ratio(" ".join(sorted(a.split())), " ".join(sorted(b.split())))


def token_coverage(quote: str, candidate: str) -> float:
    """
    How much of the quote's vocabulary the candidate contains.

    Asymmetric on purpose: a short candidate holding one quote word
    must not score as a perfect match.
    """
    quote_tokens = set(quote.split())
    if not quote_tokens:
        return 0.0
    shared = sorted(quote_tokens & set(candidate.split()))
    if not shared:
        return 0.0
    missing = sorted(quote_tokens - set(shared))
    return ratio(" ".join(shared), " ".join(shared + missing))


SIMILARITY_MEASURES: tuple[Measure, ...] = (
    partial_ratio,
    token_sort_ratio,
    ratio,
    token_coverage,
)


def similarity(
    quote: str,
    candidate: str,
    measures: Sequence[Measure] = SIMILARITY_MEASURES,
) -> float:
    """Max score over all measures, on normalized text."""
    q = normalize(quote)
    c = normalize(candidate)
    if not q or not c:
        return 0.0
    return max(measure(q, c) for measure in measures)
