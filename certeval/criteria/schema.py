"""
Criteria schema.

A criteria map is an open mapping from criterion name to a small record:

    {
        "expiryDate": {"weight": 0.6, "required": True, "value": "after 2025-01-01"},
        "agencyName": {"weight": 0.4, "required": False, "value": "TUV"},
    }

Only `weight` (number >= 0) and `required` (bool) are checked; any other
keys are carried through untouched. Validation never rewrites the map, so
what is stored is exactly what was given.
"""

import logging
import math
from numbers import Real
from typing import Any, Dict, Mapping, Optional

from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 70.0


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def validate_criteria_map(criteria: Any) -> Dict[str, Any]:
    """
    Check that criteria is a mapping of name -> object with valid weight/required.

    A weight sum above 1.0 is allowed (scores are normalised) but logged.

    Raises:
        ValidationError: On any structural problem.
    """
    if not isinstance(criteria, Mapping):
        raise ValidationError(f"Criteria must be a mapping, got {type(criteria).__name__}")

    for name, entry in criteria.items():
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Criterion names must be non-empty strings, got {name!r}")
        if not isinstance(entry, Mapping):
            raise ValidationError(
                f"Criterion '{name}' must be an object, got {type(entry).__name__}"
            )

        weight = entry.get("weight")
        if weight is not None:
            if not _is_number(weight) or not math.isfinite(weight):
                raise ValidationError(f"Criterion '{name}' weight must be a number, got {weight!r}")
            if weight < 0:
                raise ValidationError(f"Criterion '{name}' weight must be >= 0, got {weight}")

        required = entry.get("required")
        if required is not None and not isinstance(required, bool):
            raise ValidationError(f"Criterion '{name}' required must be a boolean, got {required!r}")

    total = weight_sum(criteria)
    if total > 1.0 + 1e-9:
        logger.warning(f"Criteria weights sum to {total:.3f} (> 1.0); scores will be normalised")

    return dict(criteria)


def ensure_not_empty(criteria: Mapping[str, Any]) -> None:
    """An empty criteria set cannot be validated."""
    if not criteria:
        raise ValidationError("Criteria set is empty; state at least one criterion")


def normalize_threshold(threshold: Any) -> float:
    """None -> default; numbers are clamped to [0, 100]."""
    if threshold is None:
        return DEFAULT_THRESHOLD
    if not _is_number(threshold) or math.isnan(threshold):
        raise ValidationError(f"Threshold must be a number, got {threshold!r}")
    return float(min(100.0, max(0.0, threshold)))


def criterion_weight(entry: Any) -> float:
    if _is_number(entry):
        return float(entry)
    if isinstance(entry, Mapping) and _is_number(entry.get("weight")):
        return float(entry["weight"])
    return 0.0


def criterion_required(entry: Any) -> bool:
    if isinstance(entry, Mapping) and entry.get("required") is not None:
        return bool(entry["required"])
    return True


def criterion_value(entry: Any) -> Optional[Any]:
    if isinstance(entry, Mapping):
        return entry.get("value")
    return entry


def weight_sum(criteria: Mapping[str, Any]) -> float:
    return sum(criterion_weight(entry) for entry in criteria.values())
