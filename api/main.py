"""
Groundlint API — Main Application

POST /lint    — Lint documents against rules
POST /locate  — Ground a quotation (or anchors) in a document
GET  /health  — Health check
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from groundlint.cache import ResultCache
from groundlint.config import settings
from groundlint.llm.factory import get_provider
from groundlint.locate import locate_evidence_with_match, locate_quoted_text
from groundlint.logging import get_logger, setup_logging
from groundlint.orchestrator import AllRules, LintOptions, exit_code, lint_documents
from groundlint.schemas.api import (
    HealthResponse,
    LintRequest,
    LintResponse,
    LocateRequest,
    LocateResponse,
)

logger = get_logger("api")


# ============================================================
# STARTUP / SHUTDOWN
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Groundlint API starting",
                extra={"concurrency": settings.CONCURRENCY})
    yield
    logger.info("Groundlint API shutting down")


app = FastAPI(
    title="Groundlint API",
    description="LLM content linter with evidence grounded findings",
    version=settings.ENGINE_VERSION,
    lifespan=lifespan,
)

# CORS: set GROUNDLINT_CORS_ORIGINS in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=False,
)


# ============================================================
# GLOBAL ERROR HANDLER
# ============================================================

@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions — return structured error, don't leak internals."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={"error": str(exc), "path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error. The lint run could not be completed."},
    )


# Lazy LLM provider
_llm = None

result_cache = (
    ResultCache(max_entries=settings.CACHE_MAX_ENTRIES)
    if settings.CACHE_ENABLED else None
)


def _get_llm():
    global _llm
    if _llm is None:
        _llm = get_provider(settings.LLM_PROVIDER)
    return _llm


# ============================================================
# ROUTES
# ============================================================

@app.post("/lint", response_model=LintResponse)
async def lint(request: LintRequest):
    """Lint every document against every rule."""
    start = time.time()

    options = LintOptions.from_settings(settings)
    if request.concurrency is not None:
        options.concurrency = request.concurrency

    overrides = dict(request.overrides)

    totals = await lint_documents(
        [(d.path, d.content) for d in request.documents],
        request.rules,
        _get_llm(),
        resolver=AllRules(overrides),
        options=options,
        cache=result_cache if not overrides else None,
    )

    logger.info(
        f"Lint complete: {totals.errors} errors, {totals.warnings} warnings",
        extra={
            "errors": totals.errors,
            "warnings": totals.warnings,
            "request_failures": totals.request_failures,
            "rule_count": len(request.rules),
            "duration_ms": int((time.time() - start) * 1000),
        },
    )

    return LintResponse(
        findings=totals.findings,
        files=totals.files,
        errors=totals.errors,
        warnings=totals.warnings,
        request_failures=totals.request_failures,
        had_operational_errors=totals.had_operational_errors,
        had_severity_errors=totals.had_severity_errors,
        exit_code=exit_code(totals),
    )


@app.post("/locate", response_model=LocateResponse)
async def locate(request: LocateRequest):
    """Find where a quotation (or the text between anchors) sits in content."""
    if request.evidence is not None:
        match = locate_quoted_text(request.content, request.evidence, request.min_confidence)
        if match is None:
            return LocateResponse(found=False)
        return LocateResponse(
            found=True,
            line=match.line,
            column=match.column,
            matched_text=match.matched_text,
            confidence=match.confidence,
            strategy=match.strategy,
        )

    if request.anchors is not None:
        anchored = locate_evidence_with_match(request.content, request.anchors)
        if anchored is None:
            return LocateResponse(found=False)
        return LocateResponse(
            found=True,
            line=anchored.line,
            column=anchored.column,
            matched_text=anchored.match,
        )

    raise HTTPException(400, "Provide either evidence or anchors.")


@app.get("/health", response_model=HealthResponse)
async def health():
    return {
        "status": "operational",
        "engine_version": settings.ENGINE_VERSION,
        "llm_provider": settings.LLM_PROVIDER,
        "cache_enabled": result_cache is not None,
        "cache_entries": result_cache.stats["entries"] if result_cache is not None else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.HOST, port=settings.PORT)
