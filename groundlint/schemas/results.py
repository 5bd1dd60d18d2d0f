"""
Result Schemas — model responses, scores, findings and totals.

Model-facing models are lenient (extra keys ignored, missing text
fields default to ""). Everything produced by groundlint itself is
strict.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from groundlint.schemas.evidence import AnchorEvidence, Evidence

Severity = Literal["error", "warning"]


# ============================================================
# MODEL RESPONSES
# ============================================================

class Violation(BaseModel):
    """One reported problem, created from a single model response."""

    model_config = ConfigDict(extra="ignore")

    analysis: str = ""
    suggestion: str = ""
    quoted_text: str = ""
    context_before: str = ""
    context_after: str = ""
    pre: str = ""
    post: str = ""
    criterion_name: str = ""

    @property
    def evidence(self) -> Optional[Evidence]:
        if not self.quoted_text:
            return None
        return Evidence(
            quoted_text=self.quoted_text,
            context_before=self.context_before,
            context_after=self.context_after,
        )

    @property
    def anchors(self) -> Optional[AnchorEvidence]:
        if not self.pre and not self.post:
            return None
        return AnchorEvidence(pre=self.pre, post=self.post)


class CriterionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    score: float
    summary: str = ""
    reasoning: str = ""
    violations: list[Violation] = Field(default_factory=list)


class CriteriaResult(BaseModel):
    """Structured answer for a subjective rule."""

    model_config = ConfigDict(extra="ignore")

    criteria: list[CriterionResult] = Field(default_factory=list)


class SemiObjectiveResponse(BaseModel):
    """Structured answer for a semi-objective rule: a flat violation list."""

    model_config = ConfigDict(extra="ignore")

    violations: list[Violation] = Field(default_factory=list)


# ============================================================
# SCORES
# ============================================================

class ScoreComponent(BaseModel):
    criterion: str
    raw_score: int
    max_score: int = 4
    weighted_score: float
    weighted_max_score: float
    normalized_score: float = Field(..., ge=0, le=10)
    normalized_max_score: int = 10


class SubjectiveScore(BaseModel):
    final_score: float
    components: list[ScoreComponent] = Field(default_factory=list)


class SemiObjectiveScore(BaseModel):
    final_score: float
    percentage: float
    violation_count: int
    severity: Severity
    message: str
    violations: list[Violation] = Field(default_factory=list)


# ============================================================
# FINDINGS & TOTALS
# ============================================================

class Finding(BaseModel):
    """One located, scored finding handed to the output sink."""

    file: str
    line: int = 1
    column: int = 1
    severity: Severity
    message: str
    rule_id: str
    matched_text: str = ""
    suggestion: Optional[str] = None
    score_text: Optional[str] = None


class FileReport(BaseModel):
    """Everything one file produced. This is what the result cache stores."""

    file: str
    findings: list[Finding] = Field(default_factory=list)
    scores: dict[str, float] = Field(default_factory=dict)
    errors: int = 0
    warnings: int = 0
    request_failures: int = 0
    had_operational_errors: bool = False
    had_severity_errors: bool = False


class RunTotals(BaseModel):
    """Running totals across every file of a run."""

    files: int = 0
    errors: int = 0
    warnings: int = 0
    request_failures: int = 0
    had_operational_errors: bool = False
    had_severity_errors: bool = False
    findings: list[Finding] = Field(default_factory=list)

    def add(self, report: FileReport) -> None:
        self.files += 1
        self.errors += report.errors
        self.warnings += report.warnings
        self.request_failures += report.request_failures
        self.had_operational_errors = self.had_operational_errors or report.had_operational_errors
        self.had_severity_errors = self.had_severity_errors or report.had_severity_errors
        self.findings.extend(report.findings)
