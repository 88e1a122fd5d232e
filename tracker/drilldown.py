"""Drill-down navigation over staff records.

The user picks a starting field, then repeatedly picks one of its values.
Each pick pushes a filter onto a single dive path and moves the cursor to the
next configured field (wrapping around, so a field can be revisited after a
full cycle). Breadcrumbs truncate the path: removing an entry drops it and
everything deeper, navigating to an entry keeps it and drops what follows.

When a :class:`~tracker.engine.FilterEngine` is attached, every transition is
projected into the engine through :func:`tracker.sync.sync`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tracker.engine import FilterEngine, Record, Records, snapshot_records
from tracker.fields import CLASSIFICATION_FIELDS, FilterFieldConfig, fields_by_id
from tracker.matching import record_has_value, split_multi_value
from tracker.sync import sync


@dataclass(frozen=True)
class DrilldownFilter:
    field: str
    value: str
    level: int


@dataclass(frozen=True)
class Breadcrumb:
    index: int
    field: str
    label: str
    value: str
    level: int


@dataclass(frozen=True)
class ValueCount:
    value: str
    count: int


DrilldownCallback = Callable[[List[Record]], None]


def unique_field_values(records: Sequence[Record], field: str) -> List[str]:
    """Distinct values (multi-value fields split into tokens) in first-seen order."""
    seen: List[str] = []
    for record in records:
        try:
            value = record.get(field)
        except AttributeError:
            continue
        if value is None or isinstance(value, (int, float, bool)):
            continue
        for token in split_multi_value(value):
            if token not in seen:
                seen.append(token)
    return seen


class DrilldownNavigator:
    def __init__(
        self,
        records: Records = (),
        fields: Optional[Sequence[FilterFieldConfig]] = None,
        *,
        engine: Optional[FilterEngine] = None,
        on_filter_change: Optional[DrilldownCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._by_id: Dict[str, FilterFieldConfig] = fields_by_id(fields if fields is not None else CLASSIFICATION_FIELDS)
        self.fields: Tuple[FilterFieldConfig, ...] = tuple(self._by_id.values())
        self.engine = engine
        self.on_filter_change = on_filter_change
        self.log = logger or logging.getLogger(__name__)

        self._records = snapshot_records(records)
        self._stack: List[DrilldownFilter] = []
        self.start_field: Optional[str] = None
        self.active_field: Optional[str] = None
        self.dive_level = 0

        self.filtered_records: List[Record] = list(self._records)
        self.candidates: List[ValueCount] = []
        self.breadcrumbs: List[Breadcrumb] = []

    # ---------------- Read access ----------------
    @property
    def field_ids(self) -> List[str]:
        return [f.id for f in self.fields]

    @property
    def current_filters(self) -> List[DrilldownFilter]:
        return list(self._stack)

    @property
    def is_idle(self) -> bool:
        return self.active_field is None

    def get_filtered_primary(self) -> List[Record]:
        return list(self.filtered_records)

    # ---------------- Transitions ----------------
    def select_start_field(self, field_id: Optional[str]) -> None:
        if not field_id or field_id not in self._by_id:
            return
        self._stack = []
        self.start_field = field_id
        self.active_field = field_id
        self.dive_level = 0
        self._transition()

    def select_value(self, value: object) -> None:
        if self.active_field is None or value is None:
            return
        value = str(value).strip()
        if not value:
            return
        self.log.info("Selected %s = %s", self.active_field, value)
        self._stack.append(DrilldownFilter(field=self.active_field, value=value, level=self.dive_level))
        self.dive_level += 1
        self.active_field = self._next_field(self.active_field)
        self._transition()

    def remove_filter_at(self, index: int) -> None:
        if index < 0 or index >= len(self._stack):
            return
        self._stack = self._stack[:index]
        self._restore_from_top()
        self._transition()

    def navigate_to(self, index: int) -> None:
        if index < 0 or index >= len(self._stack):
            return
        self._stack = self._stack[: index + 1]
        self._restore_from_top()
        self._transition()

    def reset(self, keep_start_field: bool = False) -> None:
        self._stack = []
        self.dive_level = 0
        if not keep_start_field:
            self.start_field = None
        self.active_field = self.start_field
        self._transition()

    def update_data(self, records: Records) -> None:
        self._records = snapshot_records(records)
        self._recompute()
        self._notify()

    # ---------------- Internals ----------------
    def _next_field(self, field_id: str) -> str:
        ids = self.field_ids
        current = ids.index(field_id) if field_id in ids else -1
        return ids[(current + 1) % len(ids)]

    def _restore_from_top(self) -> None:
        if self._stack:
            top = self._stack[-1]
            self.dive_level = top.level + 1
            self.active_field = self._next_field(top.field)
        else:
            self.dive_level = 0
            self.active_field = self.start_field

    def _transition(self) -> None:
        self._recompute()
        if self.engine is not None:
            sync(self, self.engine)
        self._notify()

    def _notify(self) -> None:
        if self.on_filter_change is not None:
            self.on_filter_change(list(self.filtered_records))

    def _recompute(self) -> None:
        self.filtered_records = [r for r in self._records if self._passes(r)]
        self.breadcrumbs = [
            Breadcrumb(index=i, field=f.field, label=self._by_id[f.field].name, value=f.value, level=f.level)
            for i, f in enumerate(self._stack)
            if f.field in self._by_id
        ]
        self.candidates = []
        if self.active_field is None:
            return
        for value in unique_field_values(self.filtered_records, self.active_field):
            count = sum(1 for r in self.filtered_records if self._has_value(r, self.active_field, value))
            self.candidates.append(ValueCount(value=value, count=count))

    def _passes(self, record: Record) -> bool:
        try:
            return all(record_has_value(record, f.field, f.value) for f in self._stack)
        except Exception as exc:
            self.log.warning("Excluding staff record %r from drill-down: %s", record, exc)
            return False

    def _has_value(self, record: Record, field: str, value: str) -> bool:
        try:
            return record_has_value(record, field, value)
        except Exception as exc:
            self.log.warning("Could not count %s for staff record %r: %s", field, record, exc)
            return False
