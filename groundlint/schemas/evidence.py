"""
Evidence Schemas — what the model claims, and where it really is.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Strategy = Literal[
    "exact",
    "context",
    "substring",
    "case-insensitive",
    "fuzzy-line",
    "fuzzy-window",
]


class Evidence(BaseModel):
    """A quotation the model says violates a criterion. May not be verbatim."""

    model_config = ConfigDict(frozen=True)

    quoted_text: str
    context_before: str = ""
    context_after: str = ""


class AnchorEvidence(BaseModel):
    """Evidence given as the text immediately around the problem."""

    model_config = ConfigDict(frozen=True)

    pre: str = ""
    post: str = ""


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    line: int = Field(..., ge=1)
    column: int = Field(..., ge=1)


class GroundedMatch(Location):
    matched_text: str
    confidence: int = Field(..., ge=0, le=100)
    strategy: Strategy


class AnchoredMatch(Location):
    match: str
