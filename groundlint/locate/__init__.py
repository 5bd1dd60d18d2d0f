"""
Grounding — map model-claimed text spans back to source locations.
"""

from groundlint.locate.evidence import (
    DEFAULT_MIN_CONFIDENCE,
    compute_line_col,
    locate_evidence_with_match,
    locate_quoted_text,
)
from groundlint.locate.similarity import SIMILARITY_MEASURES, similarity

__all__ = [
    "DEFAULT_MIN_CONFIDENCE",
    "compute_line_col",
    "locate_evidence_with_match",
    "locate_quoted_text",
    "SIMILARITY_MEASURES",
    "similarity",
]
