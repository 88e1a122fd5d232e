from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Tuple

from pydantic import ValidationError

from tracker.schemas import CriterionModel


FilterMode = Literal["include", "exclude"]
FILTER_MODES: Tuple[str, ...] = ("include", "exclude")


def normalize_value(value: object) -> str:
    return str(value).strip().lower()


@dataclass(frozen=True)
class FilterCriterion:
    id: str
    field: str
    value: str
    mode: FilterMode = "include"
    temporary: bool = False

    @property
    def normalized(self) -> str:
        return normalize_value(self.value)

    @property
    def key(self) -> Tuple[str, str]:
        return self.normalized, self.mode


class FilterState:
    """Ordered mapping of field id -> criteria for that field.

    Fields keep their insertion order so tags render predictably. Within a
    field a (normalized value, mode) pair appears at most once and a field
    with no criteria is removed.
    """

    def __init__(self, entries: Optional[Mapping[str, Iterable[FilterCriterion]]] = None) -> None:
        self._fields: Dict[str, List[FilterCriterion]] = {}
        for criteria in (entries or {}).values():
            for criterion in criteria:
                self.add(criterion)

    def add(self, criterion: FilterCriterion) -> bool:
        existing = self._fields.get(criterion.field, [])
        if any(c.key == criterion.key for c in existing):
            return False
        if any(c.id == criterion.id for c in self.criteria()):
            return False
        self._fields.setdefault(criterion.field, []).append(criterion)
        return True

    def remove(self, criterion_id: str, field: str) -> bool:
        criteria = self._fields.get(field)
        if not criteria:
            return False
        kept = [c for c in criteria if c.id != criterion_id]
        removed = len(kept) != len(criteria)
        if kept:
            self._fields[field] = kept
        else:
            del self._fields[field]
        return removed

    def clear_field(self, field: str) -> bool:
        return self._fields.pop(field, None) is not None

    def clear(self) -> None:
        self._fields.clear()

    def drop_temporary(self) -> None:
        for field in list(self._fields):
            kept = [c for c in self._fields[field] if not c.temporary]
            if kept:
                self._fields[field] = kept
            else:
                del self._fields[field]

    def get(self, field: str) -> Tuple[FilterCriterion, ...]:
        return tuple(self._fields.get(field, ()))

    def includes(self, field: str) -> List[FilterCriterion]:
        return [c for c in self._fields.get(field, ()) if c.mode == "include"]

    def excludes(self, field: str) -> List[FilterCriterion]:
        return [c for c in self._fields.get(field, ()) if c.mode == "exclude"]

    def fields(self) -> List[str]:
        return list(self._fields)

    def items(self) -> Iterator[Tuple[str, Tuple[FilterCriterion, ...]]]:
        for field, criteria in self._fields.items():
            yield field, tuple(criteria)

    def criteria(self) -> Iterator[FilterCriterion]:
        for criteria in self._fields.values():
            yield from criteria

    def copy(self) -> "FilterState":
        return FilterState(dict(self.items()))

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {field: [asdict(c) for c in criteria] for field, criteria in self._fields.items()}

    def signature(self) -> Tuple[Tuple[str, str, str], ...]:
        """Content of the state without tag ids."""
        return tuple((c.field, c.normalized, c.mode) for c in self.criteria())

    def __contains__(self, field: object) -> bool:
        return field in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __bool__(self) -> bool:
        return bool(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilterState):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"FilterState({self.to_dict()!r})"


@dataclass(frozen=True)
class RawCriterion:
    field: str
    value: str
    mode: FilterMode
    id: Optional[str] = None


def _as_criterion_input(item: object) -> object:
    if isinstance(item, FilterCriterion):
        return {"id": item.id, "value": item.value, "mode": item.mode, "temporary": item.temporary}
    if isinstance(item, str):
        return {"value": item}
    return item


def normalize_filter_state(raw: FilterState | Mapping[str, Any] | None) -> List[RawCriterion]:
    """Flatten an externally supplied filter state into validated entries.

    Malformed entries (no field, no value, unknown mode, wrong shape) are
    dropped rather than raised; this is a user-input boundary.
    """
    if raw is None:
        return []
    source = dict(raw.items()) if isinstance(raw, FilterState) else raw
    if not isinstance(source, Mapping):
        return []

    out: List[RawCriterion] = []
    for field, items in source.items():
        if not field or not isinstance(field, str):
            continue
        if isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
            continue
        for item in items:
            try:
                model = CriterionModel.model_validate(_as_criterion_input(item))
            except ValidationError:
                continue
            if not model.value:
                continue
            out.append(RawCriterion(field=field, value=model.value, mode=model.mode, id=model.id))
    return out
