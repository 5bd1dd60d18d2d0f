"""
Rule Schemas — declarative rule definitions.

A rule is a prompt body plus weighted criteria. Rule packs are
discovered and parsed elsewhere; this module only validates the
parsed mapping.
"""

from __future__ import annotations

import logging
import re
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from groundlint.errors import RuleValidationError

logger = logging.getLogger(__name__)

DEFAULT_TARGET_FLAGS = "mu"

# Rule-pack regex flag letters. "g" and "y" only affect iteration
# state in the rule-pack dialect and carry no meaning for a single search.
_FLAG_MAP = {
    "m": re.MULTILINE,
    "i": re.IGNORECASE,
    "s": re.DOTALL,
    "u": re.UNICODE,
    "x": re.VERBOSE,
    "g": 0,
    "y": 0,
}


class TargetSpec(BaseModel):
    """Section a rule (or one criterion) requires the document to contain."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    regex: Optional[str] = None
    flags: Optional[str] = None
    group: Optional[Union[int, str]] = None
    required: bool = False
    suggestion: Optional[str] = None

    def compile(self) -> re.Pattern:
        """Compile the regex. Raises re.error for bad patterns or flags."""
        flags = 0
        for letter in self.flags or DEFAULT_TARGET_FLAGS:
            if letter not in _FLAG_MAP:
                raise re.error(f"unknown regex flag {letter!r}")
            flags |= _FLAG_MAP[letter]
        return re.compile(self.regex or "", flags)


class CriterionSpec(BaseModel):
    """One named, weighted sub-check within a rule."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    name: str = Field(..., min_length=1)
    weight: float = Field(1.0, gt=0)
    target: Optional[TargetSpec] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data):
        # "Passive voice use" -> "PassiveVoiceUse"
        if isinstance(data, dict) and not data.get("id") and data.get("name"):
            words = re.split(r"[^A-Za-z0-9]+", str(data["name"]))
            data = {**data, "id": "".join(w[:1].upper() + w[1:] for w in words if w)}
        return data


class Rule(BaseModel):
    """A declarative rule sent to the model to evaluate a document."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = ""
    body: str = ""
    type: Literal["subjective", "semi-objective"] = "subjective"
    severity: Optional[Literal["error", "warning"]] = None
    strictness: Optional[Union[float, Literal["lenient", "standard", "strict"]]] = None
    threshold: Optional[float] = None
    target: Optional[TargetSpec] = None
    criteria: list[CriterionSpec] = Field(default_factory=list)
    pack: str = ""

    @model_validator(mode="after")
    def _check_criteria(self) -> "Rule":
        if self.type == "subjective" and not self.criteria:
            raise ValueError(f"Rule {self.id} has no criteria")

        seen: set[str] = set()
        for c in self.criteria:
            if c.id in seen:
                raise ValueError(f"Duplicate criterion id {c.id!r} in rule {self.id}")
            seen.add(c.id)

        # Malformed targets fail open or closed at evaluation time;
        # say so now so the author sees it before the first run.
        targets = [("rule", self.target)] + [(c.id, c.target) for c in self.criteria]
        for owner, tgt in targets:
            if tgt is None or not tgt.regex:
                continue
            try:
                tgt.compile()
            except re.error as e:
                logger.warning(
                    "Invalid target regex in rule %s (%s): %s; treated as %s",
                    self.id, owner, e, "missing" if tgt.required else "absent",
                )
        return self

    def rule_name(self, criterion: CriterionSpec) -> str:
        """Finding rule name, e.g. "Clarity.PassiveVoice"."""
        return f"{self.id}.{criterion.id}" if criterion.id else self.id


def load_rule(data: dict) -> Rule:
    """Validate a parsed rule mapping."""
    try:
        return Rule.model_validate(data)
    except ValidationError as e:
        rule_id = data.get("id", "<unknown>") if isinstance(data, dict) else "<unknown>"
        raise RuleValidationError(f"Invalid rule {rule_id}: {e}") from e
