"""
Orchestrator — lint files against rules.

Per file:
  1. Resolve the applicable rules (and per-file overrides).
  2. Target gate every criterion. Deterministic, before any model call.
  3. Ask the model about the remaining criteria, several rules at once
     (bounded by the concurrency limit). A failing rule is recorded and
     never takes its siblings or the file down with it.
  4. In rule order: reconcile criteria, score, ground every violation
     and emit findings.

Files are processed one after another; only the rules of a single file
run concurrently. Findings always come out in rule order, whatever the
order the model calls finished in.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any, Awaitable, Callable, Optional, Protocol, Sequence, TypeVar, Union,
)

from groundlint.cache import ResultCache, cache_key
from groundlint.config import Settings, settings as default_settings
from groundlint.errors import describe_error
from groundlint.evaluator import RuleEvaluation, RuleEvaluator
from groundlint.llm import LLMProvider
from groundlint.locate import locate_evidence_with_match, locate_quoted_text
from groundlint.schemas.results import (
    CriteriaResult,
    CriterionResult,
    FileReport,
    Finding,
    RunTotals,
    SemiObjectiveResponse,
    Severity,
    Violation,
)
from groundlint.schemas.rules import CriterionSpec, Rule
from groundlint.scorer import (
    MAX_RAW_SCORE,
    calculate_semi_objective_score,
    calculate_subjective_score,
    criterion_key,
    criterion_severity,
    format_score_text,
    score_component,
)
from groundlint.target import (
    TARGET_MISSING_MESSAGE,
    TargetCheck,
    check_target,
    resolve_suggestion,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

FindingSink = Callable[[Finding], None]

_SUMMARY_WORD_LIMIT = 15
_SNIPPET_WORDS = 5
_SNIPPET_CHARS = 50
_QUOTED_IN_ANALYSIS = re.compile(r"'([^']+)'|\"([^\"]+)\"|`([^`]+)`")


# ============================================================
# CONCURRENCY
# ============================================================

async def run_with_concurrency(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """
    Run worker over items with at most `limit` in flight.

    Workers pull the next index from a shared counter and write into a
    pre-sized list, so results[i] always belongs to items[i].
    """
    results: list[Any] = [None] * len(items)
    if not items:
        return results

    next_index = itertools.count()

    async def _drain() -> None:
        for idx in next_index:
            if idx >= len(items):
                return
            results[idx] = await worker(items[idx], idx)

    pool = max(1, min(limit, len(items)))
    await asyncio.gather(*(_drain() for _ in range(pool)))
    return results


# ============================================================
# RULE RESOLUTION
# ============================================================

@dataclass(frozen=True)
class RuleResolution:
    """Rules that apply to one file plus that file's merged overrides."""
    rules: list[Rule]
    overrides: dict[str, Union[str, int, float, bool]] = field(default_factory=dict)


class RuleResolver(Protocol):
    def resolve(self, file_path: str, rules: Sequence[Rule]) -> RuleResolution:
        ...


class AllRules:
    """Default resolver: every rule applies to every file, with fixed overrides."""

    def __init__(self, overrides: Optional[dict] = None):
        self.overrides = dict(overrides or {})

    def resolve(self, file_path: str, rules: Sequence[Rule]) -> RuleResolution:
        return RuleResolution(rules=list(rules), overrides=dict(self.overrides))


def _override(overrides: dict, rule_id: str, key: str):
    """Rule-specific override ("Clarity.strictness") beats the bare key."""
    return overrides.get(f"{rule_id}.{key}", overrides.get(key))


# ============================================================
# OPTIONS & PLANS
# ============================================================

@dataclass
class LintOptions:
    concurrency: int = default_settings.CONCURRENCY
    min_confidence: float = default_settings.MIN_CONFIDENCE
    default_severity: Severity = "warning"
    config: Settings = field(default_factory=lambda: default_settings)

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "LintOptions":
        severity = config.DEFAULT_SEVERITY if config.DEFAULT_SEVERITY in ("error", "warning") else "warning"
        return cls(
            concurrency=config.CONCURRENCY,
            min_confidence=config.MIN_CONFIDENCE,
            default_severity=severity,
            config=config,
        )


@dataclass
class RulePlan:
    """Gate outcome for one rule, computed before the model is called."""
    rule: Rule
    rule_check: TargetCheck
    criterion_checks: dict[str, TargetCheck]

    @property
    def active_criteria(self) -> list[CriterionSpec]:
        return [c for c in self.rule.criteria if not self.criterion_checks[c.id].missing]

    @property
    def needs_model(self) -> bool:
        if self.rule.type == "semi-objective":
            return not self.rule_check.missing
        return bool(self.active_criteria)


@dataclass
class RuleOutcome:
    """Tagged result of one rule's model call."""
    ok: bool
    evaluation: Optional[RuleEvaluation] = None
    error: Optional[str] = None


def plan_rule(content: str, rule: Rule) -> RulePlan:
    rule_check = check_target(content, rule.target)
    criterion_checks = {
        c.id: check_target(content, rule.target, c.target) for c in rule.criteria
    }
    return RulePlan(rule=rule, rule_check=rule_check, criterion_checks=criterion_checks)


# ============================================================
# FILE STATE
# ============================================================

class _FileState:
    """Mutable per-file accumulator. Only the sequential finalize step writes it."""

    def __init__(self, file: str, sink: Optional[FindingSink]):
        self.report = FileReport(file=file)
        self._sink = sink

    def emit(self, finding: Finding) -> None:
        self.report.findings.append(finding)
        if self._sink is not None:
            self._sink(finding)

    def tally(self, severity: Severity) -> None:
        """Count one failing criterion (or semi-objective rule), not one finding."""
        if severity == "error":
            self.report.errors += 1
            self.report.had_severity_errors = True
        else:
            self.report.warnings += 1

    def operational_error(self, message: str, *args, **extra) -> None:
        self.report.had_operational_errors = True
        logger.error(message, *args, extra={"file": self.report.file, **extra})


# ============================================================
# GROUNDING
# ============================================================

def _line_snippet(content: str, line: int) -> str:
    lines = content.split("\n")
    if not 1 <= line <= len(lines):
        return ""
    words = " ".join(lines[line - 1].split()[:_SNIPPET_WORDS])
    return words[:_SNIPPET_CHARS]


def _refine_anchor(content: str, line: int, column: int, matched: str, analysis: str):
    """Narrow an anchored match to a phrase the analysis quotes, if it is on that line."""
    m = _QUOTED_IN_ANALYSIS.search(analysis)
    quoted = next((g for g in m.groups() if g), "") if m else ""
    if not quoted:
        return column, matched or _line_snippet(content, line)

    lines = content.split("\n")
    line_text = lines[line - 1] if 1 <= line <= len(lines) else ""
    idx = line_text.find(quoted)
    if idx != -1:
        return idx + 1, quoted
    return column, matched or _line_snippet(content, line)


def ground_violation(
    content: str, violation: Violation, min_confidence: float,
) -> tuple[int, int, str, bool]:
    """
    Locate a violation in content: (line, column, matched text, grounded).

    Ungrounded violations fall back to 1:1 with the model's own text.
    """
    evidence = violation.evidence
    if evidence is not None:
        match = locate_quoted_text(content, evidence, min_confidence)
        if match is not None:
            logger.debug(
                "Grounded quotation via %s (%d)", match.strategy, match.confidence,
                extra={"strategy": match.strategy, "confidence": match.confidence},
            )
            return match.line, match.column, match.matched_text, True
        return 1, 1, evidence.quoted_text, False

    anchors = violation.anchors
    if anchors is not None:
        anchored = locate_evidence_with_match(content, anchors)
        if anchored is not None:
            column, matched = _refine_anchor(
                content, anchored.line, anchored.column, anchored.match, violation.analysis,
            )
            return anchored.line, column, matched, True

    return 1, 1, "", False


# ============================================================
# RULE FINALIZATION
# ============================================================

def _summary_text(summary: str) -> str:
    words = summary.split()[:_SUMMARY_WORD_LIMIT]
    return " ".join(words) or "No findings"


def _valid_raw(score: float) -> bool:
    return float(score).is_integer() and 0 <= score <= MAX_RAW_SCORE


def _emit_violations(
    state: _FileState,
    content: str,
    violations: Sequence[Violation],
    severity: Severity,
    rule_id: Union[str, Callable[[Violation], str]],
    score_text: Optional[str],
    options: LintOptions,
) -> None:
    for v in violations:
        line, column, matched, grounded = ground_violation(content, v, options.min_confidence)
        rid = rule_id(v) if callable(rule_id) else rule_id
        if not grounded:
            state.operational_error(
                "Could not ground evidence for %s: %r", rid, v.quoted_text or v.pre or v.post,
                rule_id=rid,
            )
        state.emit(Finding(
            file=state.report.file,
            line=line,
            column=column,
            severity=severity,
            message=v.analysis.strip(),
            rule_id=rid,
            matched_text=matched,
            suggestion=v.suggestion or None,
            score_text=score_text,
        ))


def _emit_target_missing(
    state: _FileState, rule_id: str, suggestion: str,
) -> None:
    state.tally("error")
    state.emit(Finding(
        file=state.report.file,
        severity="error",
        message=TARGET_MISSING_MESSAGE,
        rule_id=rule_id,
        suggestion=suggestion,
        score_text="nil",
    ))


def _check_threshold(
    state: _FileState, rule: Rule, final_score: float, overrides: dict,
) -> None:
    threshold = _override(overrides, rule.id, "threshold")
    if threshold is None:
        threshold = rule.threshold
    if threshold is None:
        return
    threshold = float(threshold)
    if final_score >= threshold:
        return

    severity = _override(overrides, rule.id, "severity") or rule.severity or "error"
    severity = "error" if severity == "error" else "warning"
    # Breaches flag the run; only warning breaches are counted
    if severity == "error":
        state.report.had_severity_errors = True
    else:
        state.report.warnings += 1
    state.emit(Finding(
        file=state.report.file,
        severity=severity,
        message=f"Score {final_score} is below threshold {threshold:g}",
        rule_id=rule.id,
        score_text=f"{final_score}/10",
    ))


def _returned_criteria(
    state: _FileState, rule: Rule, result: CriteriaResult,
) -> dict[str, CriterionResult]:
    expected = {criterion_key(c.name) for c in rule.criteria}
    returned: dict[str, CriterionResult] = {}
    for cr in result.criteria:
        key = criterion_key(cr.name)
        if key not in expected:
            logger.warning(
                "Extra criterion returned by model (ignored): %s", cr.name,
                extra={"file": state.report.file, "rule_id": rule.id},
            )
            continue
        if key in returned:
            logger.warning(
                "Criterion returned twice by model, keeping the first: %s", cr.name,
                extra={"file": state.report.file, "rule_id": rule.id},
            )
            continue
        returned[key] = cr
    return returned


def _finalize_subjective(
    state: _FileState,
    content: str,
    plan: RulePlan,
    evaluation: Optional[RuleEvaluation],
    overrides: dict,
    options: LintOptions,
) -> None:
    rule = plan.rule
    returned: dict[str, CriterionResult] = {}
    chunk_answers: list = []
    if evaluation is not None:
        returned = _returned_criteria(state, rule, evaluation.merged)
        chunk_answers = evaluation.chunks

    scored: list[tuple[str, int, float]] = []
    for criterion in rule.criteria:
        rule_name = rule.rule_name(criterion)
        check = plan.criterion_checks[criterion.id]

        if check.missing:
            suggestion = resolve_suggestion(check, rule.target, criterion.target)
            _emit_target_missing(state, rule_name, suggestion)
            scored.append((criterion.name, 0, criterion.weight))
            continue

        key = criterion_key(criterion.name)
        got = returned.get(key)
        if got is None:
            state.operational_error(
                "Missing criterion in model output: %s", criterion.name, rule_id=rule_name,
            )
            continue

        chunk_scores = [
            cr.score for answer in chunk_answers for cr in answer.criteria
            if criterion_key(cr.name) == key
        ]
        bad = [s for s in chunk_scores + [got.score] if not _valid_raw(s)]
        if bad:
            state.operational_error(
                "Invalid score for %s: %s", criterion.name, bad[0], rule_id=rule_name,
            )
            continue

        raw = int(got.score)
        if raw == 0:
            # 0 means "target missing" and only the gate may say that
            state.operational_error(
                "Model returned the reserved score 0 for %s", criterion.name,
                rule_id=rule_name,
            )

        scored.append((criterion.name, raw, criterion.weight))
        component = score_component(criterion.name, raw, criterion.weight)
        score_text = format_score_text(component.weighted_score, criterion.weight)

        severity = criterion_severity(raw)
        if severity is None:
            continue

        state.tally(severity)
        if not got.violations:
            state.emit(Finding(
                file=state.report.file,
                severity=severity,
                message=_summary_text(got.summary),
                rule_id=rule_name,
                score_text=score_text,
            ))
            continue

        _emit_violations(
            state, content, got.violations, severity, rule_name, score_text, options,
        )

    if scored:
        final = calculate_subjective_score(scored).final_score
        state.report.scores[rule.id] = final
        _check_threshold(state, rule, final, overrides)


def _finalize_semi_objective(
    state: _FileState,
    content: str,
    plan: RulePlan,
    evaluation: Optional[RuleEvaluation],
    overrides: dict,
    options: LintOptions,
) -> None:
    rule = plan.rule
    if plan.rule_check.missing:
        suggestion = resolve_suggestion(plan.rule_check, rule.target)
        _emit_target_missing(state, rule.id, suggestion)
        state.report.scores[rule.id] = 0.0
        return

    answer = evaluation.merged if evaluation is not None else SemiObjectiveResponse()
    score = calculate_semi_objective_score(
        answer.violations,
        evaluation.word_count if evaluation is not None else 0,
        strictness=_override(overrides, rule.id, "strictness") or rule.strictness,
        default_severity=options.default_severity,
        rule_severity=_override(overrides, rule.id, "severity") or rule.severity,
    )
    state.report.scores[rule.id] = score.final_score

    by_name = {criterion_key(c.name): c for c in rule.criteria}

    def _rule_id(v: Violation) -> str:
        criterion = by_name.get(criterion_key(v.criterion_name))
        return rule.rule_name(criterion) if criterion is not None else rule.id

    if score.violations:
        state.tally(score.severity)
    _emit_violations(
        state, content, score.violations, score.severity, _rule_id,
        f"{score.final_score}/10", options,
    )
    _check_threshold(state, rule, score.final_score, overrides)


# ============================================================
# FILE & RUN DRIVERS
# ============================================================

async def lint_file(
    file: str,
    content: str,
    rules: Sequence[Rule],
    provider: LLMProvider,
    *,
    overrides: Optional[dict] = None,
    options: Optional[LintOptions] = None,
    sink: Optional[FindingSink] = None,
) -> FileReport:
    """Lint one document against already-resolved rules."""
    options = options or LintOptions.from_settings()
    overrides = overrides or {}
    state = _FileState(file, sink)
    rules = list(rules)

    # Gate first: pure and synchronous, so its outcome never sees the model
    plans = [plan_rule(content, rule) for rule in rules]

    async def _run(plan: RulePlan, idx: int) -> RuleOutcome:
        if not plan.needs_model:
            return RuleOutcome(ok=True)
        try:
            evaluator = RuleEvaluator(provider, plan.rule, options.config)
            evaluation = await evaluator.evaluate(content, plan.active_criteria)
            return RuleOutcome(ok=True, evaluation=evaluation)
        except Exception as e:
            return RuleOutcome(ok=False, error=describe_error(e, f"Running rule {plan.rule.id}"))

    start = time.monotonic()
    outcomes = await run_with_concurrency(plans, options.concurrency, _run)

    for plan, outcome in zip(plans, outcomes):
        rule = plan.rule
        if not outcome.ok:
            state.report.request_failures += 1
            state.operational_error(
                "Rule failed: %s", outcome.error, rule_id=rule.id, error=outcome.error,
            )
            continue
        try:
            if rule.type == "semi-objective":
                _finalize_semi_objective(
                    state, content, plan, outcome.evaluation, overrides, options,
                )
            else:
                _finalize_subjective(
                    state, content, plan, outcome.evaluation, overrides, options,
                )
        except Exception as e:
            state.operational_error(
                "Could not process result of rule %s: %s", rule.id, e,
                rule_id=rule.id, error_type=type(e).__name__,
            )

    logger.info(
        "Linted %s: %d errors, %d warnings", file,
        state.report.errors, state.report.warnings,
        extra={
            "file": file,
            "errors": state.report.errors,
            "warnings": state.report.warnings,
            "request_failures": state.report.request_failures,
            "rule_count": len(rules),
            "duration_ms": int((time.monotonic() - start) * 1000),
        },
    )
    return state.report


async def lint_documents(
    documents: Sequence[tuple[str, str]],
    rules: Sequence[Rule],
    provider: LLMProvider,
    *,
    resolver: Optional[RuleResolver] = None,
    options: Optional[LintOptions] = None,
    cache: Optional[ResultCache] = None,
    sink: Optional[FindingSink] = None,
) -> RunTotals:
    """
    Lint (path, content) pairs one after another and total the results.

    The cache is read and written only here, after a file's report is
    final. Reports with failed requests are not cached.
    """
    options = options or LintOptions.from_settings()
    resolver = resolver or AllRules()
    totals = RunTotals()

    for file, content in documents:
        resolution = resolver.resolve(file, rules)
        key = cache_key(file, content, resolution.rules) if cache is not None else None

        report = await cache.get(key) if cache is not None else None
        if report is not None:
            logger.debug("Cache hit for %s", file, extra={"file": file, "cache_key": key})
            if sink is not None:
                for finding in report.findings:
                    sink(finding)
        else:
            report = await lint_file(
                file, content, resolution.rules, provider,
                overrides=resolution.overrides, options=options, sink=sink,
            )
            if cache is not None and report.request_failures == 0:
                await cache.put(key, report)

        totals.add(report)

    return totals


async def lint_files(
    paths: Sequence[Union[str, Path]],
    rules: Sequence[Rule],
    provider: LLMProvider,
    **kwargs,
) -> RunTotals:
    """Read and lint files from disk. Unreadable files are operational errors."""
    documents: list[tuple[str, str]] = []
    unreadable = 0
    for path in paths:
        try:
            documents.append((str(path), Path(path).read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as e:
            unreadable += 1
            logger.error(
                "Error reading file %s: %s", path, e,
                extra={"file": str(path), "error": str(e)},
            )

    totals = await lint_documents(documents, rules, provider, **kwargs)
    if unreadable:
        totals.had_operational_errors = True
    return totals


def exit_code(totals: RunTotals, fail_on_operational: bool = False) -> int:
    """Non-zero when severity errors occurred (or operational ones, if asked)."""
    if totals.had_severity_errors:
        return 1
    if fail_on_operational and totals.had_operational_errors:
        return 1
    return 0
