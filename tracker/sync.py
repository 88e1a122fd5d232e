from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List

from tracker.filters import FilterCriterion

if TYPE_CHECKING:
    from tracker.drilldown import DrilldownNavigator
    from tracker.engine import FilterEngine


def drilldown_criterion_id(field: str, level: int) -> str:
    return f"drilldown-{field}-{level}"


def sync(navigator: "DrilldownNavigator", engine: "FilterEngine") -> None:
    """Project the navigator's dive path into the engine's filter state.

    Criteria on fields the navigator does not own are carried over unchanged.
    Criteria on its own fields are replaced by one include tag per stack
    entry, so an empty path clears only the navigator's fields. Tag ids are
    derived from (field, level), which makes repeated calls idempotent.
    """
    owned = set(navigator.field_ids)
    merged: Dict[str, List[FilterCriterion]] = {}
    for field, criteria in engine.filter_state.items():
        if field not in owned:
            merged[field] = list(criteria)

    for entry in navigator.current_filters:
        merged.setdefault(entry.field, []).append(
            FilterCriterion(
                id=drilldown_criterion_id(entry.field, entry.level),
                field=entry.field,
                value=entry.value,
                mode="include",
            )
        )
    engine.set_filter_state(merged)
