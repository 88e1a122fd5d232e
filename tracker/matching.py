from __future__ import annotations

from typing import Any, List, Mapping

from tracker.fields import MULTI_VALUE_DELIMITER, Dropdown, FieldKind, Text
from tracker.filters import FilterCriterion, normalize_value


def split_multi_value(value: Any) -> List[str]:
    """Split a delimited multi-value field into trimmed, non-empty tokens.

    Native collections are accepted too, with the same token semantics.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    s = str(value).strip()
    if not s:
        return []
    if MULTI_VALUE_DELIMITER not in s:
        return [s]
    return [tok.strip() for tok in s.split(MULTI_VALUE_DELIMITER) if tok.strip()]


def field_matches(kind: FieldKind, candidate: str, wanted: str) -> bool:
    """Compare two already lower-cased strings according to the field kind."""
    match kind:
        case Text():
            return wanted in candidate
        case Dropdown():
            return candidate == wanted
    return candidate == wanted


def matches(record: Mapping[str, Any], criterion: FilterCriterion, kind: FieldKind) -> bool:
    tokens = split_multi_value(record.get(criterion.field))
    wanted = criterion.normalized
    if not tokens or not wanted:
        return False
    return any(field_matches(kind, tok.lower(), wanted) for tok in tokens)


def matches_standard_search(standard: Mapping[str, Any], value: str) -> bool:
    """Substring match against a standard's code, name, description or group.

    Missing attributes never match.
    """
    wanted = normalize_value(value)
    if not wanted:
        return False
    hay = [str(standard.get(key) or "").lower() for key in ("code", "name", "description", "group")]
    return any(wanted in h for h in hay if h)


def record_has_value(record: Mapping[str, Any], field: str, value: str) -> bool:
    """Exact, case-insensitive token membership used by the drill-down."""
    wanted = normalize_value(value)
    if not wanted:
        return False
    return any(tok.lower() == wanted for tok in split_multi_value(record.get(field)))
