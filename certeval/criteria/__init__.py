"""
Criteria model: schema checks, recursive merge, and extraction from free text.

The generator lives in certeval.criteria.generator and is imported from
there directly, since it depends on the storage package.
"""

from .interpreter import CriteriaInterpreter, InterpretedCriteria, keyword_fallback, normalize_structured
from .merge import changed_keys, deep_merge
from .schema import (
    DEFAULT_THRESHOLD,
    criterion_required,
    criterion_value,
    criterion_weight,
    ensure_not_empty,
    normalize_threshold,
    validate_criteria_map,
    weight_sum,
)

__all__ = [
    "DEFAULT_THRESHOLD",
    "CriteriaInterpreter",
    "InterpretedCriteria",
    "changed_keys",
    "criterion_required",
    "criterion_value",
    "criterion_weight",
    "deep_merge",
    "ensure_not_empty",
    "keyword_fallback",
    "normalize_structured",
    "normalize_threshold",
    "validate_criteria_map",
    "weight_sum",
]
