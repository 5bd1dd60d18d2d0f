"""
Orchestrator Tests

End-to-end lint runs against a scripted LLM. Verifies:
  - Bounded concurrency with results kept in input order
  - Findings emitted in rule order whatever order calls finish in
  - One failing rule never takes its siblings down
  - The target gate runs before (and instead of) the model
  - Criteria reconciliation: missing, extra and out-of-range scores
  - Grounding, scoring, thresholds and overrides
  - Totals across files and the result cache
"""

from __future__ import annotations

import asyncio
import json
import random

import pytest

from groundlint.cache import ResultCache
from groundlint.errors import ProviderError
from groundlint.llm import LLMProvider
from groundlint.orchestrator import (
    LintOptions,
    RuleResolution,
    exit_code,
    lint_documents,
    lint_file,
    lint_files,
    run_with_concurrency,
)
from groundlint.schemas.results import RunTotals
from groundlint.schemas.rules import Rule


TEXT = """This is the first line.
The quick brown fox jumps over the lazy dog.
This is the third line with some content.
Another line here with different text.
Some more content to test multi-line matching
across different paragraphs and sections."""


class ScriptedLLM(LLMProvider):
    """Answers by the [marker] found in the system prompt. Exceptions are raised."""

    def __init__(self, answers: dict, delays: dict | None = None):
        self.answers = answers
        self.delays = delays or {}
        self.calls = []
        self.prompts = {}

    async def generate(self, prompt, system_instruction=None, temperature=0.2, json_mode=False):
        marker = next(m for m in self.answers if f"[{m}]" in (system_instruction or ""))
        self.calls.append(marker)
        self.prompts[marker] = system_instruction
        await asyncio.sleep(self.delays.get(marker, 0))
        answer = self.answers[marker]
        if isinstance(answer, Exception):
            raise answer
        return json.dumps(answer)


def subjective(rule_id: str, *criteria, **kwargs) -> Rule:
    return Rule(
        id=rule_id,
        body=f"[{rule_id}] Review the text.",
        criteria=[c if isinstance(c, dict) else {"name": c} for c in criteria],
        **kwargs,
    )


def semi_objective(rule_id: str, **kwargs) -> Rule:
    return Rule(
        id=rule_id,
        type="semi-objective",
        body=f"[{rule_id}] List every problem.",
        criteria=[{"name": "Buzzwords"}],
        **kwargs,
    )


def crit(name: str, score, violations=(), summary: str = "") -> dict:
    return {
        "name": name,
        "score": score,
        "summary": summary,
        "reasoning": "",
        "violations": list(violations),
    }


def quote(text: str, analysis: str = "Problem.", suggestion: str = "Fix it.", **extra) -> dict:
    return {"quoted_text": text, "analysis": analysis, "suggestion": suggestion, **extra}


OPTIONS = LintOptions(concurrency=5)


# ============================================================
# CONCURRENCY
# ============================================================

class TestRunWithConcurrency:

    @pytest.mark.asyncio
    async def test_results_in_input_order_with_jitter(self):
        rng = random.Random(7)
        delays = [rng.uniform(0, 0.02) for _ in range(12)]
        in_flight = 0
        peak = 0

        async def worker(item, idx):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(delays[idx])
            in_flight -= 1
            return item * 2

        results = await run_with_concurrency(list(range(12)), 3, worker)
        assert results == [i * 2 for i in range(12)]
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_empty(self):
        async def worker(item, idx):
            raise AssertionError("never called")

        assert await run_with_concurrency([], 4, worker) == []

    @pytest.mark.asyncio
    async def test_limit_below_one_still_runs(self):
        async def worker(item, idx):
            return idx

        assert await run_with_concurrency(["a", "b"], 0, worker) == [0, 1]


# ============================================================
# ISOLATION & ORDER
# ============================================================

NAMES = ["Alpha", "Beta", "Gamma", "Delta", "Epsilon"]


class TestIsolationAndOrder:

    @pytest.mark.asyncio
    async def test_findings_follow_rule_order(self):
        rules = [subjective(n, "Tone") for n in NAMES]
        llm = ScriptedLLM(
            {n: {"criteria": [crit("Tone", 1, summary=f"Bad {n}")]} for n in NAMES},
            # First rule finishes last
            delays={n: 0.01 * (len(NAMES) - i) for i, n in enumerate(NAMES)},
        )
        report = await lint_file("a.md", TEXT, rules, llm, options=OPTIONS)
        assert [f.rule_id for f in report.findings] == [f"{n}.Tone" for n in NAMES]
        assert [f.message for f in report.findings] == [f"Bad {n}" for n in NAMES]

    @pytest.mark.asyncio
    async def test_five_rules_concurrency_two(self):
        rules = [subjective(n, "Tone") for n in NAMES]
        rng = random.Random(11)
        llm = ScriptedLLM(
            {n: {"criteria": [crit("Tone", 2)]} for n in NAMES},
            delays={n: rng.uniform(0, 0.02) for n in NAMES},
        )
        report = await lint_file("a.md", TEXT, rules, llm, options=LintOptions(concurrency=2))
        assert sorted(llm.calls) == sorted(NAMES)
        assert [f.rule_id for f in report.findings] == [f"{n}.Tone" for n in NAMES]

    @pytest.mark.asyncio
    async def test_one_failing_rule_is_isolated(self):
        rules = [subjective(n, "Tone") for n in NAMES]
        answers = {n: {"criteria": [crit("Tone", 1)]} for n in NAMES}
        answers["Gamma"] = ProviderError("quota exceeded")
        llm = ScriptedLLM(answers)

        report = await lint_file("a.md", TEXT, rules, llm, options=OPTIONS)
        assert report.request_failures == 1
        assert report.had_operational_errors
        assert [f.rule_id for f in report.findings] == [
            "Alpha.Tone", "Beta.Tone", "Delta.Tone", "Epsilon.Tone",
        ]
        assert "Gamma" not in report.scores

    @pytest.mark.asyncio
    async def test_malformed_answer_is_a_request_failure(self):
        rules = [subjective("Alpha", "Tone"), subjective("Beta", "Tone")]
        llm = ScriptedLLM({
            "Alpha": {"criteria": "not a list"},
            "Beta": {"criteria": [crit("Tone", 2)]},
        })
        report = await lint_file("a.md", TEXT, rules, llm, options=OPTIONS)
        assert report.request_failures == 1
        assert [f.rule_id for f in report.findings] == ["Beta.Tone"]


# ============================================================
# TARGET GATE
# ============================================================

class TestTargetGate:

    @pytest.mark.asyncio
    async def test_fully_gated_rule_never_calls_model(self):
        rule = subjective(
            "Gate", {"name": "Risks", "target": {"regex": r"^## Risks", "required": True}},
        )
        llm = ScriptedLLM({"Gate": {"criteria": [crit("Risks", 4)]}})

        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert llm.calls == []
        [finding] = report.findings
        assert finding.message == "target not found"
        assert finding.severity == "error"
        assert finding.rule_id == "Gate.Risks"
        assert (finding.line, finding.column) == (1, 1)
        assert finding.score_text == "nil"
        assert finding.suggestion == "Add the required target section."
        assert report.scores["Gate"] == 0.0
        assert report.had_severity_errors
        assert not report.had_operational_errors

    @pytest.mark.asyncio
    async def test_gated_criterion_left_out_of_prompt(self):
        rule = subjective(
            "Gate",
            "Tone",
            {"name": "Risks", "target": {
                "regex": r"^## Risks", "required": True, "suggestion": "Add risks.",
            }},
        )
        llm = ScriptedLLM({"Gate": {"criteria": [crit("Tone", 4)]}})

        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert llm.calls == ["Gate"]
        assert "- Tone" in llm.prompts["Gate"]
        assert "- Risks" not in llm.prompts["Gate"]
        assert [(f.rule_id, f.suggestion) for f in report.findings] == [("Gate.Risks", "Add risks.")]
        # (10 + 0) / 2
        assert report.scores["Gate"] == 5.0

    @pytest.mark.asyncio
    async def test_present_target_is_evaluated(self):
        rule = subjective(
            "Gate", {"name": "Tone", "target": {"regex": r"quick brown", "required": True}},
        )
        llm = ScriptedLLM({"Gate": {"criteria": [crit("Tone", 4)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert llm.calls == ["Gate"]
        assert report.findings == []

    @pytest.mark.asyncio
    async def test_gated_semi_objective_rule(self):
        rule = semi_objective("Jargon", target={"regex": r"^## Glossary", "required": True})
        llm = ScriptedLLM({"Jargon": {"violations": []}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert llm.calls == []
        assert report.findings[0].rule_id == "Jargon"
        assert report.scores["Jargon"] == 0.0


# ============================================================
# CRITERIA RECONCILIATION
# ============================================================

class TestReconciliation:

    @pytest.mark.asyncio
    async def test_missing_criterion_is_operational_error(self):
        rule = subjective("Clarity", "Tone", "Structure")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 4)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.had_operational_errors
        assert report.findings == []
        assert report.request_failures == 0
        assert report.scores["Clarity"] == 10.0

    @pytest.mark.asyncio
    async def test_extra_criterion_is_ignored(self):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 4), crit("Humor", 1)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.findings == []
        assert not report.had_operational_errors

    @pytest.mark.asyncio
    async def test_names_matched_case_insensitively(self):
        rule = subjective("Clarity", "Plain Language")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("plain  language", 2)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert [f.rule_id for f in report.findings] == ["Clarity.PlainLanguage"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score", [7, 2.5, -1])
    async def test_invalid_score_is_operational_error(self, score):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", score)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.had_operational_errors
        assert report.findings == []

    @pytest.mark.asyncio
    async def test_reserved_zero_is_flagged_but_reported(self):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 0)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.had_operational_errors
        assert [f.severity for f in report.findings] == ["error"]
        assert report.scores["Clarity"] == 0.0


# ============================================================
# SCORING & GROUNDING
# ============================================================

class TestFindings:

    @pytest.mark.asyncio
    async def test_grounded_violation(self):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [
            crit("Tone", 2, [quote("quick brown fox", "Too folksy.", "Be direct.")]),
        ]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        [f] = report.findings
        assert (f.line, f.column) == (2, 5)
        assert f.severity == "warning"
        assert f.matched_text == "quick brown fox"
        assert f.message == "Too folksy."
        assert f.suggestion == "Be direct."
        assert f.score_text == "0.40/1"
        assert report.warnings == 1
        assert not report.had_operational_errors

    @pytest.mark.asyncio
    async def test_ungrounded_violation_still_reported(self):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [
            crit("Tone", 1, [quote("the cat sat on the mat")]),
        ]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        [f] = report.findings
        assert (f.line, f.column) == (1, 1)
        assert f.matched_text == "the cat sat on the mat"
        assert f.severity == "error"
        assert report.had_operational_errors
        assert report.errors == 1

    @pytest.mark.asyncio
    async def test_anchor_evidence(self):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [
            crit("Tone", 2, [{"pre": "The quick ", "post": " jumps", "analysis": "Cliche."}]),
        ]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        [f] = report.findings
        assert (f.line, f.column) == (2, 11)
        assert f.matched_text == "brown fox"

    @pytest.mark.asyncio
    async def test_passing_score_has_no_finding(self):
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 3, [quote("lazy dog")])]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.findings == []
        assert report.scores["Clarity"] == 7.0

    @pytest.mark.asyncio
    async def test_failing_score_without_violations_uses_summary(self):
        words = " ".join(f"w{i}" for i in range(20))
        rule = subjective("Clarity", "Tone")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 1, summary=words)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        [f] = report.findings
        assert f.message == " ".join(f"w{i}" for i in range(15))
        assert f.severity == "error"

    @pytest.mark.asyncio
    async def test_weighted_rule_score(self):
        rule = subjective("Clarity", {"name": "Tone", "weight": 1}, {"name": "Structure", "weight": 3})
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 4), crit("Structure", 2)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.scores["Clarity"] == 5.5

    @pytest.mark.asyncio
    async def test_counts_once_per_failing_criterion(self):
        rule = subjective("Clarity", "Tone", "Structure", "Voice")
        llm = ScriptedLLM({"Clarity": {"criteria": [
            crit("Tone", 1, [quote("quick brown fox"), quote("lazy dog"), quote("third line")]),
            crit("Structure", 2, [quote("first line"), quote("different text")]),
            crit("Voice", 4),
        ]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert len(report.findings) == 5
        assert report.errors == 1
        assert report.warnings == 1

    @pytest.mark.asyncio
    async def test_gated_criterion_counts_as_one_error(self):
        rule = subjective(
            "Gate", "Tone", {"name": "Risks", "target": {"regex": r"^## Risks", "required": True}},
        )
        llm = ScriptedLLM({"Gate": {"criteria": [crit("Tone", 4)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.errors == 1
        assert report.warnings == 0

    @pytest.mark.asyncio
    async def test_sink_receives_findings_in_order(self):
        rules = [subjective(n, "Tone") for n in NAMES[:3]]
        llm = ScriptedLLM({n: {"criteria": [crit("Tone", 2)]} for n in NAMES[:3]})
        seen = []
        await lint_file("a.md", TEXT, rules, llm, options=OPTIONS, sink=seen.append)
        assert [f.rule_id for f in seen] == ["Alpha.Tone", "Beta.Tone", "Gamma.Tone"]


class TestSemiObjective:

    ANSWER = {"violations": [
        quote("quick brown fox", criterion_name="Buzzwords"),
        quote("lazy dog"),
    ]}

    @pytest.mark.asyncio
    async def test_density_score_and_findings(self):
        rule = semi_objective("Jargon", severity="error")
        report = await lint_file(
            "a.md", TEXT, [rule], ScriptedLLM({"Jargon": self.ANSWER}), options=OPTIONS,
        )
        # 2 violations in 40 words at standard strictness
        assert report.scores["Jargon"] == 5.0
        assert [f.rule_id for f in report.findings] == ["Jargon.Buzzwords", "Jargon"]
        assert all(f.severity == "error" for f in report.findings)
        assert all(f.score_text == "5.0/10" for f in report.findings)
        assert (report.findings[1].line, report.findings[1].column) == (2, 36)

    @pytest.mark.asyncio
    async def test_default_severity_is_warning(self):
        rule = semi_objective("Jargon")
        report = await lint_file(
            "a.md", TEXT, [rule], ScriptedLLM({"Jargon": self.ANSWER}), options=OPTIONS,
        )
        # One failing rule, however many violations it lists
        assert report.warnings == 1
        assert report.errors == 0
        assert len(report.findings) == 2

    @pytest.mark.asyncio
    async def test_strictness_override(self):
        rule = semi_objective("Jargon")
        report = await lint_file(
            "a.md", TEXT, [rule], ScriptedLLM({"Jargon": self.ANSWER}),
            overrides={"Jargon.strictness": "lenient"}, options=OPTIONS,
        )
        assert report.scores["Jargon"] == 7.5

    @pytest.mark.asyncio
    async def test_invalid_strictness_override_is_operational_error(self):
        rule = semi_objective("Jargon")
        report = await lint_file(
            "a.md", TEXT, [rule], ScriptedLLM({"Jargon": self.ANSWER}),
            overrides={"strictness": "brutal"}, options=OPTIONS,
        )
        assert report.had_operational_errors
        assert report.findings == []

    @pytest.mark.asyncio
    async def test_no_violations(self):
        rule = semi_objective("Jargon")
        report = await lint_file(
            "a.md", TEXT, [rule], ScriptedLLM({"Jargon": {"violations": []}}), options=OPTIONS,
        )
        assert report.findings == []
        assert report.scores["Jargon"] == 10.0


class TestThreshold:

    @pytest.mark.asyncio
    async def test_below_threshold_is_error_by_default(self):
        rule = subjective("Clarity", "Tone", threshold=5)
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 2)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert [f.severity for f in report.findings] == ["warning", "error"]
        assert report.findings[1].message == "Score 4.0 is below threshold 5"
        assert report.findings[1].rule_id == "Clarity"
        assert report.had_severity_errors
        # The breach fails the run without adding to the error count
        assert report.errors == 0
        assert report.warnings == 1

    @pytest.mark.asyncio
    async def test_warning_severity_rule(self):
        rule = subjective("Clarity", "Tone", threshold=5, severity="warning")
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 2)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.warnings == 2
        assert not report.had_severity_errors

    @pytest.mark.asyncio
    async def test_threshold_override(self):
        rule = subjective("Clarity", "Tone", threshold=5)
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 2)]}})
        report = await lint_file(
            "a.md", TEXT, [rule], llm, overrides={"Clarity.threshold": "3"}, options=OPTIONS,
        )
        assert [f.severity for f in report.findings] == ["warning"]

    @pytest.mark.asyncio
    async def test_at_threshold_passes(self):
        rule = subjective("Clarity", "Tone", threshold=7)
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 3)]}})
        report = await lint_file("a.md", TEXT, [rule], llm, options=OPTIONS)
        assert report.findings == []


# ============================================================
# RUN DRIVERS
# ============================================================

class TestRun:

    @pytest.mark.asyncio
    async def test_totals_accumulate_across_files(self):
        rules = [subjective("Clarity", "Tone")]
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 1)]}})
        totals = await lint_documents(
            [("a.md", TEXT), ("b.md", TEXT + "\nMore.")], rules, llm, options=OPTIONS,
        )
        assert totals.files == 2
        assert totals.errors == 2
        assert [f.file for f in totals.findings] == ["a.md", "b.md"]
        assert exit_code(totals) == 1

    @pytest.mark.asyncio
    async def test_cache_skips_model_on_second_run(self):
        rules = [subjective("Clarity", "Tone")]
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 2)]}})
        cache = ResultCache()

        first = await lint_documents([("a.md", TEXT)], rules, llm, options=OPTIONS, cache=cache)
        replayed = []
        second = await lint_documents(
            [("a.md", TEXT)], rules, llm, options=OPTIONS, cache=cache, sink=replayed.append,
        )
        assert len(llm.calls) == 1
        assert second.findings == first.findings
        assert len(replayed) == 1

    @pytest.mark.asyncio
    async def test_failed_reports_are_not_cached(self):
        rules = [subjective("Clarity", "Tone")]
        llm = ScriptedLLM({"Clarity": ProviderError("down")})
        cache = ResultCache()
        await lint_documents([("a.md", TEXT)], rules, llm, options=OPTIONS, cache=cache)
        await lint_documents([("a.md", TEXT)], rules, llm, options=OPTIONS, cache=cache)
        assert len(llm.calls) == 2

    @pytest.mark.asyncio
    async def test_resolver_selects_rules_per_file(self):
        class MarkdownOnly:
            def resolve(self, file_path, rules):
                chosen = rules if file_path.endswith(".md") else []
                return RuleResolution(rules=list(chosen))

        rules = [subjective("Clarity", "Tone")]
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 1)]}})
        totals = await lint_documents(
            [("a.md", TEXT), ("b.txt", TEXT)], rules, llm,
            resolver=MarkdownOnly(), options=OPTIONS,
        )
        assert llm.calls == ["Clarity"]
        assert totals.files == 2
        assert totals.errors == 1

    @pytest.mark.asyncio
    async def test_lint_files_reads_disk_and_survives_missing(self, tmp_path):
        doc = tmp_path / "doc.md"
        doc.write_text(TEXT, encoding="utf-8")
        rules = [subjective("Clarity", "Tone")]
        llm = ScriptedLLM({"Clarity": {"criteria": [crit("Tone", 4)]}})

        totals = await lint_files(
            [doc, tmp_path / "missing.md"], rules, llm, options=OPTIONS,
        )
        assert totals.files == 1
        assert totals.had_operational_errors
        assert exit_code(totals) == 0
        assert exit_code(totals, fail_on_operational=True) == 1


class TestExitCode:

    def test_clean(self):
        assert exit_code(RunTotals()) == 0

    def test_severity_errors(self):
        assert exit_code(RunTotals(had_severity_errors=True)) == 1

    def test_operational_only_passes_by_default(self):
        assert exit_code(RunTotals(had_operational_errors=True)) == 0
