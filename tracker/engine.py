"""Tag-based filter engine over staff (primary) and standards (secondary) records.

How filters combine:

1. Different fields are combined with AND (Phase=Primary AND Year Group=Year 3
   means a staff member must match both).
2. Several tags on the same field:
   - include tags: the record must match AT LEAST ONE (OR),
   - exclude tags: the record must match NONE (AND NOT),
   - mixed: at least one include AND no exclude.
3. Text fields (name, id, standards search) match partially; dropdown fields
   match exactly. Both ignore case.

The standards collection is filtered only by the synthetic ``standards``
search field, matched against code, name, description and group.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from tracker.fields import STANDARDS_SEARCH_FIELD, FilterFieldConfig, default_fields, fields_by_id
from tracker.filters import FILTER_MODES, FilterCriterion, FilterState, normalize_filter_state
from tracker.matching import matches, matches_standard_search


Record = Mapping[str, Any]
Records = Union[pd.DataFrame, Iterable[Record], None]
PendingInput = Mapping[str, Union[str, Tuple[str, str]]]


@dataclass(frozen=True)
class FilteredResult:
    primary: List[Record]
    secondary: List[Record]
    filter_state: FilterState


FilterCallback = Callable[[FilteredResult], None]


def snapshot_records(records: Records) -> Tuple[Record, ...]:
    if records is None:
        return ()
    if isinstance(records, pd.DataFrame):
        from tracker.data import records_from_frame

        return tuple(records_from_frame(records))
    return tuple(records)


def pending_from_inputs(inputs: Mapping[str, Any], field_ids: Iterable[str]) -> Dict[str, Tuple[str, str]]:
    """Collect typed but unsubmitted values keyed ``input-<field>`` / ``mode-<field>``."""
    pending: Dict[str, Tuple[str, str]] = {}
    for field_id in field_ids:
        value = str(inputs.get(f"input-{field_id}") or "").strip()
        if value:
            pending[field_id] = (value, str(inputs.get(f"mode-{field_id}") or "include"))
    return pending


class FilterEngine:
    def __init__(
        self,
        primary: Records = (),
        secondary: Records = (),
        *,
        fields: Optional[Sequence[FilterFieldConfig]] = None,
        on_filter_change: Optional[FilterCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._fields: Dict[str, FilterFieldConfig] = fields_by_id(fields if fields is not None else default_fields())
        self.on_filter_change = on_filter_change
        self.log = logger or logging.getLogger(__name__)
        self._primary = snapshot_records(primary)
        self._secondary = snapshot_records(secondary)
        self._state = FilterState()
        self._ids = itertools.count(1)
        self.filtered_primary: List[Record] = list(self._primary)
        self.filtered_secondary: List[Record] = list(self._secondary)

    # ---------------- State access ----------------
    @property
    def fields(self) -> Dict[str, FilterFieldConfig]:
        return dict(self._fields)

    @property
    def filter_state(self) -> FilterState:
        return self._state.copy()

    @property
    def primary(self) -> Tuple[Record, ...]:
        return self._primary

    @property
    def secondary(self) -> Tuple[Record, ...]:
        return self._secondary

    def get_filtered_data(self) -> FilteredResult:
        return FilteredResult(
            primary=list(self.filtered_primary),
            secondary=list(self.filtered_secondary),
            filter_state=self._state.copy(),
        )

    # ---------------- Mutations ----------------
    def add_criterion(self, field: str, raw_value: object, mode: Optional[str] = "include") -> Optional[FilterCriterion]:
        criterion = self._add(field, raw_value, mode)
        if criterion is None:
            return None
        self._run()
        self.log.info("Added filter tag for %s: %s (%s)", field, criterion.value, criterion.mode)
        return criterion

    def remove_criterion(self, criterion_id: str, field: str) -> None:
        removed = self._state.remove(criterion_id, field)
        self._run()
        if removed:
            self.log.info("Removed filter tag: %s", criterion_id)

    def clear_field(self, field: str) -> None:
        self._state.clear_field(field)
        self._run()
        self.log.info("Cleared filter for field: %s", field)

    def clear_all(self) -> None:
        self._state.clear()
        self.filtered_primary = list(self._primary)
        self.filtered_secondary = list(self._secondary)
        self._run()
        self.log.info("Cleared all filters")

    def apply(self, pending: Optional[PendingInput] = None) -> FilteredResult:
        """Run one filter pass.

        ``pending`` holds raw input values that have not been submitted as
        tags yet (field -> value, or field -> (value, mode)). They take part
        in this pass only and are dropped afterwards.
        """
        for field, raw in (pending or {}).items():
            if isinstance(raw, tuple):
                if len(raw) != 2:
                    self.log.debug("Ignoring malformed pending input for %s: %r", field, raw)
                    continue
                value, mode = raw
            else:
                value, mode = raw, "include"
            self._add(field, value, mode, temporary=True)
        return self._run()

    def set_filter_state(self, state: FilterState | Mapping[str, Any] | None) -> FilteredResult:
        entries = normalize_filter_state(state)
        self._state.clear()
        for entry in entries:
            self._add(entry.field, entry.value, entry.mode, criterion_id=entry.id)
        self.log.info("Applied filters: %s", self._state.to_dict())
        return self._run()

    def update_data(self, primary: Records = None, secondary: Records = None) -> FilteredResult:
        if primary is not None:
            self._primary = snapshot_records(primary)
            self.filtered_primary = list(self._primary)
        if secondary is not None:
            self._secondary = snapshot_records(secondary)
            self.filtered_secondary = list(self._secondary)
        return self._run()

    # UI-facing names
    add_filter_tag = add_criterion
    remove_filter_tag = remove_criterion
    clear_single_filter = clear_field
    clear_filters = clear_all

    # ---------------- Internals ----------------
    def _add(
        self,
        field: str,
        raw_value: object,
        mode: Optional[str],
        *,
        criterion_id: Optional[str] = None,
        temporary: bool = False,
    ) -> Optional[FilterCriterion]:
        if not field or field not in self._fields or raw_value is None:
            self.log.debug("Ignoring filter for unknown field %r", field)
            return None
        value = str(raw_value).strip()
        mode = str(mode or "include").strip().lower()
        if not value or mode not in FILTER_MODES:
            return None
        used = {c.id for c in self._state.criteria()}
        if not criterion_id or criterion_id in used:
            criterion_id = f"filter-{field}-{next(self._ids)}"
        criterion = FilterCriterion(id=criterion_id, field=field, value=value, mode=mode, temporary=temporary)
        if not self._state.add(criterion):
            self.log.debug("Duplicate filter ignored: %s=%s (%s)", field, value, mode)
            return None
        return criterion

    def _run(self) -> FilteredResult:
        self._filter()
        self._state.drop_temporary()
        result = self.get_filtered_data()
        if self.on_filter_change is not None:
            self.on_filter_change(result)
        return result

    def _filter(self) -> None:
        staff_fields = [f for f in self._state.fields() if f != STANDARDS_SEARCH_FIELD]
        if staff_fields:
            self.filtered_primary = [r for r in self._primary if self._keep_primary(r, staff_fields)]
        else:
            self.filtered_primary = list(self._primary)

        if STANDARDS_SEARCH_FIELD in self._state:
            self.filtered_secondary = [r for r in self._secondary if self._keep_secondary(r)]
        else:
            self.filtered_secondary = list(self._secondary)

    def _keep_primary(self, record: Record, staff_fields: List[str]) -> bool:
        try:
            for field in staff_fields:
                kind = self._fields[field].kind
                includes = self._state.includes(field)
                if includes and not any(matches(record, c, kind) for c in includes):
                    return False
                if any(matches(record, c, kind) for c in self._state.excludes(field)):
                    return False
            return True
        except Exception as exc:
            self.log.warning("Excluding staff record %r from filter results: %s", record, exc)
            return False

    def _keep_secondary(self, record: Record) -> bool:
        try:
            includes = self._state.includes(STANDARDS_SEARCH_FIELD)
            if includes and not any(matches_standard_search(record, c.value) for c in includes):
                return False
            return not any(matches_standard_search(record, c.value) for c in self._state.excludes(STANDARDS_SEARCH_FIELD))
        except Exception as exc:
            self.log.warning("Excluding standard record %r from filter results: %s", record, exc)
            return False
