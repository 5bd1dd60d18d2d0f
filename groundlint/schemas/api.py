"""
API Schemas — Request and Response Models

Pydantic models for the groundlint HTTP API.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, Field

from groundlint.schemas.evidence import AnchorEvidence, Evidence
from groundlint.schemas.results import Finding
from groundlint.schemas.rules import Rule


# ============================================================
# LINT
# ============================================================

class LintDocument(BaseModel):
    path: str = Field(..., min_length=1, description="Path reported on every finding.")
    content: str = Field(..., max_length=500_000)


class LintRequest(BaseModel):
    """POST /lint request body."""
    documents: list[LintDocument] = Field(..., min_length=1, max_length=50)
    rules: list[Rule] = Field(..., min_length=1, max_length=100)
    overrides: dict[str, Union[str, int, float, bool]] = Field(default_factory=dict)
    concurrency: Optional[int] = Field(None, ge=1, le=32)

    model_config = {"json_schema_extra": {"examples": [{
        "documents": [{"path": "docs/intro.md", "content": "# Intro\n\nThis is very simple."}],
        "rules": [{
            "id": "Clarity",
            "body": "Flag vague or condescending wording.",
            "criteria": [{"name": "Plain language", "weight": 2}],
        }],
    }]}}


class LintResponse(BaseModel):
    """POST /lint response body."""
    findings: list[Finding]
    files: int
    errors: int
    warnings: int
    request_failures: int
    had_operational_errors: bool
    had_severity_errors: bool
    exit_code: int


# ============================================================
# LOCATE
# ============================================================

class LocateRequest(BaseModel):
    """POST /locate request body. Give either evidence or anchors."""
    content: str = Field(..., max_length=500_000)
    evidence: Optional[Evidence] = None
    anchors: Optional[AnchorEvidence] = None
    min_confidence: float = Field(80, ge=0, le=100)


class LocateResponse(BaseModel):
    found: bool
    line: Optional[int] = None
    column: Optional[int] = None
    matched_text: Optional[str] = None
    confidence: Optional[int] = None
    strategy: Optional[str] = None


# ============================================================
# HEALTH
# ============================================================

class HealthResponse(BaseModel):
    status: str
    engine_version: str
    llm_provider: str
    cache_enabled: bool
    cache_entries: int
