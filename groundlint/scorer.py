"""
Score Calculator

Turns raw model output into weighted, bounded, comparable numbers.
Separated from the orchestrator for single-responsibility.

Two evaluation kinds, chosen per rule:
  - subjective:     each criterion scored 1-4 by the model, normalized
                    to 1-10, weighted average across criteria
  - semi-objective: a flat violation list, scored by violation density
                    per 100 words

Long documents are evaluated in chunks and merged back by consensus
voting on the discrete 1-4 scale.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from groundlint.schemas.results import (
    CriteriaResult,
    CriterionResult,
    ScoreComponent,
    SemiObjectiveScore,
    Severity,
    SubjectiveScore,
    Violation,
)

MAX_RAW_SCORE = 4
MAX_NORMALIZED_SCORE = 10

STRICTNESS_TIERS = {"lenient": 5.0, "standard": 10.0, "strict": 20.0}
DEFAULT_STRICTNESS = STRICTNESS_TIERS["standard"]


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def criterion_key(name: str) -> str:
    """Normalized criterion name used to reconcile model output with rules."""
    return " ".join(name.lower().split())


# ============================================================
# SUBJECTIVE
# ============================================================

def normalize_score(raw: float) -> float:
    """
    Map a raw 1-4 score onto 1-10: 1 -> 1.0, 2 -> 4.0, 3 -> 7.0, 4 -> 10.0.

    0 is the "target missing" sentinel and always maps to 0.
    """
    if raw < 0 or raw > MAX_RAW_SCORE:
        raise ValueError(f"Raw score out of range: {raw}")
    if raw == 0:
        return 0.0
    return 1 + (raw - 1) / 3 * 9


def criterion_severity(raw: float) -> Optional[Severity]:
    """1 or below is an error, 2 a warning, 3 and up produces no finding."""
    if raw <= 1:
        return "error"
    if raw == 2:
        return "warning"
    return None


def score_component(criterion: str, raw: int, weight: float) -> ScoreComponent:
    normalized = normalize_score(raw)
    return ScoreComponent(
        criterion=criterion,
        raw_score=raw,
        weighted_score=round(normalized / MAX_NORMALIZED_SCORE * weight, 2),
        weighted_max_score=weight,
        normalized_score=round(normalized, 2),
    )


def calculate_subjective_score(
    scored: Sequence[tuple[str, int, float]],
) -> SubjectiveScore:
    """
    Weighted rule score from (criterion, raw score, weight) triples.

    final = sum(normalized * weight) / sum(weight), 0 when there is no
    weight at all. Gated criteria enter as raw 0 and drag the score down
    by their full weight.
    """
    total_points = 0.0
    total_weight = 0.0
    components = []

    for name, raw, weight in scored:
        total_points += normalize_score(raw) * weight
        total_weight += weight
        components.append(score_component(name, raw, weight))

    final = total_points / total_weight if total_weight > 0 else 0.0
    return SubjectiveScore(final_score=round(final, 1), components=components)


def format_score_text(weighted: float, weight: float) -> str:
    """"7.5/10" style text; integral values lose their decimals."""
    def _fmt(v: float) -> str:
        v = round(v, 2)
        return str(int(v)) if float(v).is_integer() else f"{v:.2f}"

    return f"{_fmt(weighted)}/{_fmt(weight)}"


# ============================================================
# SEMI-OBJECTIVE
# ============================================================

def resolve_strictness(value: Union[float, str, None] = None) -> float:
    """Named tier (lenient=5, standard=10, strict=20) or a positive number."""
    if value is None:
        return DEFAULT_STRICTNESS
    if isinstance(value, bool):
        raise ValueError(f"Invalid strictness: {value!r}")
    if isinstance(value, (int, float)):
        if value > 0:
            return float(value)
        raise ValueError(f"Strictness must be positive: {value!r}")

    key = str(value).strip().lower()
    if key in STRICTNESS_TIERS:
        return STRICTNESS_TIERS[key]
    # Per-file overrides arrive as strings
    try:
        number = float(key)
    except ValueError:
        raise ValueError(f"Invalid strictness: {value!r}") from None
    if number > 0:
        return number
    raise ValueError(f"Strictness must be positive: {value!r}")


def calculate_semi_objective_score(
    violations: Sequence[Violation],
    word_count: int,
    strictness: Union[float, str, None] = None,
    default_severity: Optional[Severity] = None,
    rule_severity: Optional[str] = None,
) -> SemiObjectiveScore:
    """
    Density-based score.

      density    = violations / word_count * 100
      percentage = clamp(100 - density * strictness, 0, 100)
      final      = percentage / 10

    Any violation makes the result carry the rule's severity when the
    rule declares "error", otherwise the caller's default.
    """
    factor = resolve_strictness(strictness)
    count = len(violations)

    if count == 0:
        percentage = 100.0
    elif word_count <= 0:
        percentage = 0.0
    else:
        density = count / word_count * 100
        percentage = max(0.0, min(100.0, 100 - density * factor))
    final = percentage / 10

    severity: Severity = "warning"
    if final < MAX_NORMALIZED_SCORE:
        if rule_severity == "error":
            severity = "error"
        elif default_severity:
            severity = default_severity

    if count:
        message = f"Found {count} issue{'s' if count > 1 else ''}"
    else:
        message = "No issues found"

    return SemiObjectiveScore(
        final_score=round(final, 1),
        percentage=round(percentage, 1),
        violation_count=count,
        severity=severity,
        message=message,
        violations=list(violations),
    )


# ============================================================
# CHUNK AGGREGATION
# ============================================================

def _dedupe(violations: Sequence[Violation]) -> list[Violation]:
    seen: set[str] = set()
    unique = []
    for v in violations:
        key = v.analysis.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(v)
    return unique


def average_subjective_scores(
    results: Sequence[CriteriaResult],
    chunk_word_counts: Sequence[int] = (),
) -> CriteriaResult:
    """
    Merge per-chunk subjective results into one.

    Each criterion's raw scores are averaged, weighted by chunk word
    count (uniform when counts are unavailable), then rounded and
    clamped to 1-4. Voting on the raw scale keeps "2" meaning "2";
    averaging normalized values would invent scores no chunk gave.
    """
    if not results:
        return CriteriaResult(criteria=[])

    total_words = sum(chunk_word_counts) if len(chunk_word_counts) == len(results) else 0

    merged: dict[str, dict] = {}
    for i, result in enumerate(results):
        chunk_weight = (
            chunk_word_counts[i] / total_words if total_words > 0 else 1 / len(results)
        )
        for criterion in result.criteria:
            entry = merged.setdefault(criterion_key(criterion.name), {
                "name": criterion.name,
                "score": 0.0,
                "weight": 0.0,
                "violations": [],
                "summaries": [],
                "reasonings": [],
            })
            entry["score"] += criterion.score * chunk_weight
            entry["weight"] += chunk_weight
            entry["violations"].extend(criterion.violations)
            if criterion.summary.strip():
                entry["summaries"].append(criterion.summary.strip())
            if criterion.reasoning.strip():
                entry["reasonings"].append(criterion.reasoning.strip())

    criteria = []
    for entry in merged.values():
        avg = entry["score"] / entry["weight"] if entry["weight"] > 0 else 0
        consensus = max(1, min(MAX_RAW_SCORE, _round_half_up(avg)))
        criteria.append(CriterionResult(
            name=entry["name"],
            score=consensus,
            summary=" ".join(entry["summaries"]),
            reasoning=" ".join(entry["reasonings"]),
            violations=_dedupe(entry["violations"]),
        ))

    return CriteriaResult(criteria=criteria)


def merge_violations(chunk_violations: Sequence[Sequence[Violation]]) -> list[Violation]:
    """Flatten semi-objective chunk results, dropping repeated analyses."""
    return _dedupe([v for chunk in chunk_violations for v in chunk])
