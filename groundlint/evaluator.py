"""
Rule Evaluator — one rule, one document, one structured model answer.

Builds the system prompt and JSON schema for a rule, asks the provider
(once per chunk for long documents), validates the answer and merges
chunk answers. Scoring, gating and grounding happen in the
orchestrator; this module only talks to the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from pydantic import ValidationError

from groundlint.chunking import Chunk, RecursiveChunker, count_words
from groundlint.config import Settings, settings as default_settings
from groundlint.errors import ModelResponseError
from groundlint.llm import LLMProvider
from groundlint.schemas.results import CriteriaResult, SemiObjectiveResponse
from groundlint.schemas.rules import CriterionSpec, Rule
from groundlint.scorer import average_subjective_scores, merge_violations

logger = logging.getLogger(__name__)


# ============================================================
# LLM PROMPTS
# ============================================================

SUBJECTIVE_PROMPT = """You are a meticulous content reviewer.

## Instructions
{body}

## Criteria
Score every criterion below on this scale:
  1 = fails badly, 2 = notable problems, 3 = minor problems, 4 = no problems.
Return one entry per criterion, using the criterion name exactly as written.
{criteria}

{evidence_rules}"""


SEMI_OBJECTIVE_PROMPT = """You are a meticulous content reviewer.

## Instructions
{body}

## Task
List every violation of the instructions above. Report each occurrence
separately. Return an empty list when there are none.
{criteria}

{evidence_rules}"""


EVIDENCE_RULES = """## Evidence
For each violation:
- "quoted_text": copy the offending text EXACTLY as it appears in the document
- "context_before": up to 20 characters immediately before the quote
- "context_after": up to 20 characters immediately after the quote
- "analysis": one sentence explaining the problem
- "suggestion": a concrete fix"""


def _violation_schema(with_criterion: bool = False) -> dict:
    properties = {
        "quoted_text": {"type": "string"},
        "context_before": {"type": "string"},
        "context_after": {"type": "string"},
        "analysis": {"type": "string"},
        "suggestion": {"type": "string"},
    }
    if with_criterion:
        properties["criterion_name"] = {"type": "string"}
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": properties,
        "required": list(properties),
    }


def build_criteria_json_schema() -> dict:
    """Strict schema for subjective rules."""
    return {
        "name": "groundlint_criteria_result",
        "strict": True,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "criteria": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "additionalProperties": False,
                        "properties": {
                            "name": {"type": "string"},
                            "score": {"type": "integer", "enum": [1, 2, 3, 4]},
                            "summary": {"type": "string"},
                            "reasoning": {"type": "string"},
                            "violations": {
                                "type": "array",
                                "items": _violation_schema(),
                            },
                        },
                        "required": ["name", "score", "summary", "reasoning", "violations"],
                    },
                },
            },
            "required": ["criteria"],
        },
    }


def build_semi_objective_json_schema() -> dict:
    """Strict schema for semi-objective rules."""
    return {
        "name": "groundlint_semi_objective_result",
        "strict": True,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "violations": {
                    "type": "array",
                    "items": _violation_schema(with_criterion=True),
                },
            },
            "required": ["violations"],
        },
    }


# ============================================================
# EVALUATION
# ============================================================

ModelAnswer = Union[CriteriaResult, SemiObjectiveResponse]


@dataclass
class RuleEvaluation:
    """Validated model answer for one rule, merged across chunks."""
    rule_id: str
    kind: str
    merged: ModelAnswer
    chunks: list[ModelAnswer] = field(default_factory=list)
    chunk_word_counts: list[int] = field(default_factory=list)
    word_count: int = 0


class RuleEvaluator:
    """Evaluates one rule against one document."""

    def __init__(
        self,
        provider: LLMProvider,
        rule: Rule,
        config: Optional[Settings] = None,
    ):
        self.provider = provider
        self.rule = rule
        self.config = config or default_settings

    def build_system_prompt(self, criteria: Sequence[CriterionSpec]) -> str:
        if self.rule.type == "semi-objective":
            listed = "\n".join(f"- {c.name}" for c in criteria)
            return SEMI_OBJECTIVE_PROMPT.format(
                body=self.rule.body.strip(),
                criteria=(
                    "Set \"criterion_name\" to the category each violation belongs to:\n"
                    + listed
                ) if listed else "",
                evidence_rules=EVIDENCE_RULES,
            )

        listed = "\n".join(f"- {c.name}" for c in criteria)
        return SUBJECTIVE_PROMPT.format(
            body=self.rule.body.strip(),
            criteria=listed,
            evidence_rules=EVIDENCE_RULES,
        )

    def _split(self, content: str) -> list[Chunk]:
        if (
            self.config.CHUNKING_ENABLED
            and count_words(content) > self.config.CHUNK_WORD_THRESHOLD
        ):
            chunks = RecursiveChunker(self.config.CHUNK_SIZE).chunk(content)
            if chunks:
                return chunks
        return [Chunk(content=content, start_offset=0, end_offset=len(content), index=0)]

    async def evaluate(
        self,
        content: str,
        criteria: Optional[Sequence[CriterionSpec]] = None,
    ) -> RuleEvaluation:
        """
        Ask the model about the given criteria (default: all of the rule's).

        Raises ProviderError / ModelResponseError; the caller isolates them.
        """
        criteria = list(self.rule.criteria if criteria is None else criteria)
        semi = self.rule.type == "semi-objective"
        schema = build_semi_objective_json_schema() if semi else build_criteria_json_schema()
        answer_model = SemiObjectiveResponse if semi else CriteriaResult
        system_prompt = self.build_system_prompt(criteria)

        pieces = self._split(content)
        if len(pieces) > 1:
            logger.debug(
                "Evaluating rule %s in %d chunks", self.rule.id, len(pieces),
                extra={"rule_id": self.rule.id, "chunks": len(pieces)},
            )

        answers: list[ModelAnswer] = []
        for piece in pieces:
            span = f"{piece.start_offset}-{piece.end_offset}"
            if len(pieces) > 1:
                logger.debug(
                    "Chunk %d of rule %s covers chars %s", piece.index, self.rule.id, span,
                    extra={"rule_id": self.rule.id, "span": span},
                )
            raw = await self.provider.run_prompt_structured(
                piece.content, system_prompt, schema,
                temperature=self.config.LLM_TEMPERATURE,
            )
            try:
                answers.append(answer_model.model_validate(raw))
            except ValidationError as e:
                raise ModelResponseError(
                    f"Rule {self.rule.id} (chars {span}): response does not match schema: {e}",
                    raw=str(raw),
                ) from e

        word_counts = [count_words(p.content) for p in pieces]
        if len(answers) == 1:
            merged = answers[0]
        elif semi:
            merged = SemiObjectiveResponse(
                violations=merge_violations([a.violations for a in answers]),
            )
        else:
            merged = average_subjective_scores(answers, word_counts)

        return RuleEvaluation(
            rule_id=self.rule.id,
            kind=self.rule.type,
            merged=merged,
            chunks=answers,
            chunk_word_counts=word_counts,
            word_count=count_words(content),
        )
