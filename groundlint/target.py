"""
Target Gate — deterministic section precheck.

Answers "is the section this rule requires present?" with a regex
search. No model call, so its outcome never depends on model variance.
A missing required target forces the criterion to score 0 and the
model is never asked about it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from groundlint.schemas.rules import TargetSpec

logger = logging.getLogger(__name__)

TARGET_MISSING_MESSAGE = "target not found"
DEFAULT_TARGET_SUGGESTION = "Add the required target section."


@dataclass(frozen=True)
class TargetCheck:
    """Outcome of a target precheck."""
    missing: bool
    suggestion: Optional[str] = None


def check_target(
    content: str,
    global_target: Optional[TargetSpec] = None,
    criterion_target: Optional[TargetSpec] = None,
) -> TargetCheck:
    """
    Check whether the required section is present in content.

    The criterion target replaces the global one outright; the two
    are never merged. An unparseable regex counts as missing only when
    the target is required, otherwise it is ignored.
    """
    tgt = criterion_target if criterion_target is not None else global_target
    if tgt is None or not tgt.regex:
        return TargetCheck(missing=False)

    try:
        pattern = tgt.compile()
    except re.error as e:
        logger.debug("Ignoring unparseable target regex %r: %s", tgt.regex, e)
        return TargetCheck(missing=tgt.required, suggestion=tgt.suggestion)

    match = pattern.search(content)
    if match is not None and tgt.group is not None:
        try:
            captured = match.group(tgt.group)
        except IndexError:
            captured = None
        if not captured:
            match = None

    if match is None:
        return TargetCheck(missing=tgt.required, suggestion=tgt.suggestion)
    return TargetCheck(missing=False)


def resolve_suggestion(
    check: TargetCheck,
    global_target: Optional[TargetSpec] = None,
    criterion_target: Optional[TargetSpec] = None,
) -> str:
    """Most specific declared suggestion for a missing target."""
    for candidate in (
        check.suggestion,
        criterion_target.suggestion if criterion_target else None,
        global_target.suggestion if global_target else None,
    ):
        if candidate:
            return candidate
    return DEFAULT_TARGET_SUGGESTION
