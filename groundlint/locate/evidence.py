"""
Evidence Locator — ground model quotations in the source text.

Models paraphrase, mistype and re-case the text they quote. The
locator maps a claimed quotation back to an exact line/column through
a cascade of strategies, strictest first:

  1. exact             verbatim substring (context picks among repeats)
  2. substring         longest run of >= 3 consecutive quoted words
  3. case-insensitive  verbatim except for case
  4. fuzzy-line        best-scoring source line
  5. fuzzy-window      best-scoring character window

Output is a pure function of (source, evidence, min_confidence).
"""

from __future__ import annotations

import re
from typing import Optional

from groundlint.locate.similarity import normalize, similarity
from groundlint.schemas.evidence import (
    AnchoredMatch,
    AnchorEvidence,
    Evidence,
    GroundedMatch,
    Location,
    Strategy,
)

DEFAULT_MIN_CONFIDENCE = 80
CASE_INSENSITIVE_CONFIDENCE = 95
MIN_SUBSTRING_WORDS = 3

# Only exact and context matches may claim full confidence
_MAX_INEXACT_CONFIDENCE = 99

_WINDOW_SCALES = (0.5, 0.75, 1.0, 1.25, 1.5)
_WINDOW_STEP_DIVISOR = 4


def compute_line_col(text: str, index: int) -> Location:
    """1-based line/column of a character offset."""
    line = text.count("\n", 0, index) + 1
    last_break = text.rfind("\n", 0, index)
    return Location(line=line, column=index - last_break)


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; 99.5 must not become 100 by luck
    return int(value + 0.5)


def _find_all(text: str, needle: str) -> list[int]:
    """Every occurrence, overlapping ones included."""
    found = []
    idx = text.find(needle)
    while idx != -1:
        found.append(idx)
        idx = text.find(needle, idx + 1)
    return found


def _grounded(
    text: str, index: int, matched: str, confidence: int, strategy: Strategy,
) -> GroundedMatch:
    loc = compute_line_col(text, index)
    return GroundedMatch(
        line=loc.line,
        column=loc.column,
        matched_text=matched,
        confidence=confidence,
        strategy=strategy,
    )


def _context_matches(text: str, index: int, ev: Evidence) -> bool:
    if ev.context_before:
        start = index - len(ev.context_before)
        if start < 0 or text[start:index] != ev.context_before:
            return False
    if ev.context_after:
        end = index + len(ev.quoted_text)
        if text[end:end + len(ev.context_after)] != ev.context_after:
            return False
    return True


# ============================================================
# STRATEGIES
# ============================================================

def _exact(text: str, ev: Evidence) -> Optional[GroundedMatch]:
    occurrences = _find_all(text, ev.quoted_text)
    if not occurrences:
        return None
    if len(occurrences) > 1 and (ev.context_before or ev.context_after):
        for idx in occurrences:
            if _context_matches(text, idx, ev):
                return _grounded(text, idx, ev.quoted_text, 100, "context")
    return _grounded(text, occurrences[0], ev.quoted_text, 100, "exact")


def _substring(text: str, ev: Evidence) -> Optional[GroundedMatch]:
    words = ev.quoted_text.split()
    total = len(words)
    for length in range(total - 1, MIN_SUBSTRING_WORDS - 1, -1):
        for start in range(total - length + 1):
            phrase = " ".join(words[start:start + length])
            idx = text.find(phrase)
            if idx != -1:
                confidence = min(
                    _MAX_INEXACT_CONFIDENCE, _round_half_up(length / total * 100),
                )
                return _grounded(text, idx, phrase, confidence, "substring")
    return None


def _case_insensitive(text: str, ev: Evidence) -> Optional[GroundedMatch]:
    # re keeps offsets in the original string; str.lower() can change length
    m = re.search(re.escape(ev.quoted_text), text, re.IGNORECASE)
    if m is None:
        return None
    return _grounded(
        text, m.start(), m.group(0), CASE_INSENSITIVE_CONFIDENCE, "case-insensitive",
    )


def _fuzzy_line(
    text: str, ev: Evidence, min_confidence: float,
) -> Optional[GroundedMatch]:
    best: Optional[tuple[float, int, str]] = None
    offset = 0
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped:
            score = similarity(ev.quoted_text, stripped)
            if score >= min_confidence and (best is None or score > best[0]):
                lead = len(line) - len(line.lstrip())
                best = (score, offset + lead, stripped)
        offset += len(line) + 1

    if best is None:
        return None
    score, index, matched = best
    confidence = min(_MAX_INEXACT_CONFIDENCE, _round_half_up(score))
    return _grounded(text, index, matched, confidence, "fuzzy-line")


def _fuzzy_window(
    text: str, ev: Evidence, min_confidence: float,
) -> Optional[GroundedMatch]:
    quote_len = len(ev.quoted_text)
    quote_tokens = set(normalize(ev.quoted_text).split())
    if not quote_tokens:
        return None

    sizes = sorted({max(1, _round_half_up(quote_len * s)) for s in _WINDOW_SCALES})
    step = max(1, quote_len // _WINDOW_STEP_DIVISOR)

    best: Optional[tuple[float, int, str]] = None
    for size in sizes:
        for start in range(0, max(1, len(text) - size + 1), step):
            window = text[start:start + size]
            # Windows sharing no word with the quote cannot win
            if not quote_tokens & set(normalize(window).split()):
                continue
            score = similarity(ev.quoted_text, window)
            if score >= min_confidence and (best is None or score > best[0]):
                lead = len(window) - len(window.lstrip())
                best = (score, start + lead, window.strip())

    if best is None:
        return None
    score, index, matched = best
    confidence = min(_MAX_INEXACT_CONFIDENCE, _round_half_up(score))
    return _grounded(text, index, matched, confidence, "fuzzy-window")


# ============================================================
# PUBLIC API
# ============================================================

def locate_quoted_text(
    text: str,
    evidence: Evidence,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> Optional[GroundedMatch]:
    """
    Ground a quotation in text. First strategy to succeed wins.

    Returns None when nothing clears min_confidence. Callers must treat
    None as an operational error and still report the finding.
    """
    if not evidence.quoted_text:
        return None

    return (
        _exact(text, evidence)
        or _substring(text, evidence)
        or _case_insensitive(text, evidence)
        or _fuzzy_line(text, evidence, min_confidence)
        or _fuzzy_window(text, evidence, min_confidence)
    )


def locate_evidence_with_match(
    text: str, anchors: AnchorEvidence,
) -> Optional[AnchoredMatch]:
    """
    Ground evidence given as the text right before and after the problem.

    With both anchors, the pre occurrence followed most closely by a
    post occurrence wins (first pre on ties) and the match is the text
    between them. With one anchor, the location is its boundary.
    """
    pre, post = anchors.pre, anchors.post
    if not pre and not post:
        return None

    if pre and post:
        best: Optional[tuple[int, int, int]] = None
        for idx in _find_all(text, pre):
            end = idx + len(pre)
            following = text.find(post, end)
            if following == -1:
                # Later pre occurrences cannot find one either
                break
            gap = following - end
            if best is None or gap < best[0]:
                best = (gap, end, following)
        if best is not None:
            _, start, stop = best
            loc = compute_line_col(text, start)
            return AnchoredMatch(line=loc.line, column=loc.column, match=text[start:stop])

    if pre:
        idx = text.find(pre)
        if idx != -1:
            loc = compute_line_col(text, idx + len(pre))
            return AnchoredMatch(line=loc.line, column=loc.column, match="")

    if post:
        idx = text.find(post)
        if idx != -1:
            loc = compute_line_col(text, idx)
            return AnchoredMatch(line=loc.line, column=loc.column, match="")

    return None
