from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple, Union


MULTI_VALUE_DELIMITER = ", "
STANDARDS_SEARCH_FIELD = "standards"

PHASE_OPTIONS = ("Foundation", "Primary", "Secondary")
OVERSEAS_THAI_OPTIONS = ("Overseas", "Thai", "All")
YEAR_GROUP_OPTIONS = (
    "Reception",
    "Year 1",
    "Year 2",
    "Year 3",
    "Year 4",
    "Year 5",
    "Year 6",
    "Year7",
    "Year8",
    "Year9",
    "Year 10",
    "Year 11",
    "Year 12",
    "Year 13",
)
DEPARTMENT_OPTIONS = ("Outclass", "EAL", "LSA", "Support Staff")


@dataclass(frozen=True)
class Text:
    """Free-text field: case-insensitive substring match."""


@dataclass(frozen=True)
class Dropdown:
    """Fixed-choice field: case-insensitive exact match."""

    options: Tuple[str, ...] = ()


FieldKind = Union[Text, Dropdown]


@dataclass(frozen=True)
class FilterFieldConfig:
    id: str
    name: str
    kind: FieldKind = field(default_factory=Text)

    @property
    def options(self) -> Tuple[str, ...]:
        if isinstance(self.kind, Dropdown):
            return self.kind.options
        return ()

    @property
    def is_search(self) -> bool:
        return self.id == STANDARDS_SEARCH_FIELD


STAFF_FIELDS: Tuple[FilterFieldConfig, ...] = (
    FilterFieldConfig("name", "Name", Text()),
    FilterFieldConfig("id", "ID", Text()),
)

CLASSIFICATION_FIELDS: Tuple[FilterFieldConfig, ...] = (
    FilterFieldConfig("phase", "Phase", Dropdown(PHASE_OPTIONS)),
    FilterFieldConfig("overseas_thai", "Overseas/Thai", Dropdown(OVERSEAS_THAI_OPTIONS)),
    FilterFieldConfig("year_group", "Year Group", Dropdown(YEAR_GROUP_OPTIONS)),
    FilterFieldConfig("department", "Department", Dropdown(DEPARTMENT_OPTIONS)),
)

STANDARDS_FIELDS: Tuple[FilterFieldConfig, ...] = (
    FilterFieldConfig(STANDARDS_SEARCH_FIELD, "Filter:", Text()),
)

DEFAULT_FILTER_GROUPS: Dict[str, Tuple[FilterFieldConfig, ...]] = {
    "staff": STAFF_FIELDS,
    "classification": CLASSIFICATION_FIELDS,
    "standards": STANDARDS_FIELDS,
}


def default_fields(*, include_standards: bool = True) -> List[FilterFieldConfig]:
    out = list(STAFF_FIELDS) + list(CLASSIFICATION_FIELDS)
    if include_standards:
        out += list(STANDARDS_FIELDS)
    return out


def fields_by_id(fields: Iterable[FilterFieldConfig]) -> Dict[str, FilterFieldConfig]:
    """Index field configs by id, first definition wins; blank ids are skipped."""
    out: Dict[str, FilterFieldConfig] = {}
    for cfg in fields:
        if not cfg or not cfg.id or not cfg.name:
            continue
        out.setdefault(cfg.id, cfg)
    return out
