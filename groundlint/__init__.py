"""
Groundlint — LLM content linter with grounded findings.

Rules are prompts with weighted criteria. The model judges a document;
groundlint gates, scores and, above all, grounds every claim the model
makes back to a real line and column before reporting it.

Public API:
  - check_target:          Deterministic target gate (no model call)
  - locate_quoted_text:    Ground a quotation via the strategy cascade
  - locate_evidence_with_match: Ground a pre/post anchor pair
  - calculate_subjective_score / calculate_semi_objective_score: Scoring
  - RuleEvaluator:         One rule, one document, one model answer
  - lint_file / lint_documents / lint_files: Orchestration
  - ResultCache:           Per-file result cache
  - LLMProvider:           Abstract LLM interface for provider swapping

Usage:
    from groundlint import Rule, lint_documents, get_provider
"""

__version__ = "1.0.0"

from groundlint.cache import ResultCache, cache_key
from groundlint.chunking import RecursiveChunker, count_words
from groundlint.errors import (
    GroundlintError,
    ModelResponseError,
    ProviderError,
    RuleValidationError,
)
from groundlint.evaluator import RuleEvaluator
from groundlint.llm import LLMProvider
from groundlint.llm.factory import get_provider
from groundlint.locate import (
    compute_line_col,
    locate_evidence_with_match,
    locate_quoted_text,
)
from groundlint.orchestrator import (
    AllRules,
    LintOptions,
    exit_code,
    lint_documents,
    lint_file,
    lint_files,
    run_with_concurrency,
)
from groundlint.schemas.evidence import AnchorEvidence, Evidence
from groundlint.schemas.results import FileReport, Finding, RunTotals
from groundlint.schemas.rules import CriterionSpec, Rule, TargetSpec, load_rule
from groundlint.scorer import (
    calculate_semi_objective_score,
    calculate_subjective_score,
)
from groundlint.target import check_target

__all__ = [
    "ResultCache",
    "cache_key",
    "RecursiveChunker",
    "count_words",
    "GroundlintError",
    "ModelResponseError",
    "ProviderError",
    "RuleValidationError",
    "RuleEvaluator",
    "LLMProvider",
    "get_provider",
    "compute_line_col",
    "locate_evidence_with_match",
    "locate_quoted_text",
    "AllRules",
    "LintOptions",
    "exit_code",
    "lint_documents",
    "lint_file",
    "lint_files",
    "run_with_concurrency",
    "AnchorEvidence",
    "Evidence",
    "FileReport",
    "Finding",
    "RunTotals",
    "CriterionSpec",
    "Rule",
    "TargetSpec",
    "load_rule",
    "calculate_semi_objective_score",
    "calculate_subjective_score",
    "check_target",
]
