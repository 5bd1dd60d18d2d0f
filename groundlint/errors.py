"""
Error taxonomy.

Only provider and model-contract failures are exceptions. A missing
target and an ungrounded quotation are ordinary outcomes reported as
findings and counters, never raised.
"""

from __future__ import annotations


class GroundlintError(Exception):
    """Base class for all groundlint errors."""

    code = "GROUNDLINT_ERROR"


class RuleValidationError(GroundlintError):
    """A rule definition is malformed (duplicate criterion ids, bad weight...)."""

    code = "RULE_VALIDATION_ERROR"


class ProviderError(GroundlintError):
    """The model provider rejected the request (network, auth, quota)."""

    code = "PROVIDER_ERROR"


class CircuitOpenError(ProviderError):
    """Raised when the provider circuit breaker is open."""

    code = "CIRCUIT_OPEN"


class ModelResponseError(GroundlintError):
    """The model answered, but not in the shape the schema demands."""

    code = "MODEL_RESPONSE_ERROR"

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw[:300]


def describe_error(exc: BaseException, context: str) -> str:
    """One-line description used when a rule failure is recorded."""
    code = getattr(exc, "code", type(exc).__name__)
    return f"{context}: [{code}] {exc}"
