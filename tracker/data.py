from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar, Union

import pandas as pd
from pydantic import BaseModel, ValidationError

from tracker.engine import FilteredResult
from tracker.schemas import Assignment, StaffMember, Standard, StandardGroup
from tracker.storage import JsonStore


logger = logging.getLogger(__name__)

DATA_DIR = Path(os.environ.get("TRACKER_DATA_DIR") or Path(__file__).resolve().parents[1])
TABLE_SUFFIXES = (".xlsx", ".csv")

STAFF_STEM = "staff"
STANDARDS_STEM = "standards"
GROUPS_STEM = "groups"
ASSIGNMENTS_KEY = "assignments"
STAFF_KEY = "staff"
STANDARDS_KEY = "standards"
GROUPS_KEY = "groups"

M = TypeVar("M", bound=BaseModel)

STAFF_COLUMNS = {
    "id": "id",
    "staff id": "id",
    "staff_id": "id",
    "name": "name",
    "staff name": "name",
    "phase": "phase",
    "overseas/thai": "overseas_thai",
    "overseas_thai": "overseas_thai",
    "overseas thai": "overseas_thai",
    "year group": "year_group",
    "year_group": "year_group",
    "department": "department",
    "dept": "department",
}

STANDARD_COLUMNS = {
    "code": "code",
    "standard code": "code",
    "standard_code": "code",
    "name": "name",
    "standard": "name",
    "description": "description",
    "group": "group",
    "group name": "group",
    "parent": "parent_code",
    "parent code": "parent_code",
    "parent_code": "parent_code",
}

GROUP_COLUMNS = {
    "code": "code",
    "group code": "code",
    "name": "name",
    "group": "name",
    "group name": "name",
    "color": "color",
    "colour": "color",
    "description": "description",
}

NA_TOKENS = {"nan", "none", "null", "<na>", "na", "n/a"}


# ---------------- Helpers ----------------
def drop_duplicate_columns(df: pd.DataFrame) -> pd.DataFrame:
    return df.loc[:, ~df.columns.duplicated()]


def coerce_str_safe(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            series = df[col]
            if isinstance(series, pd.DataFrame):
                series = series.iloc[:, 0]
            series = series.astype("string").str.strip()
            series = series.mask(series.str.lower().isin(NA_TOKENS | {""}))
            df[col] = series
    return df


def normalize_key(value: object) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    s = str(value).strip()
    if not s or s.lower() in NA_TOKENS:
        return None
    return s


def rename_columns(df: pd.DataFrame, mapping: Mapping[str, str]) -> pd.DataFrame:
    df.columns = [str(c).strip() for c in df.columns]
    rename = {c: mapping[c.lower()] for c in df.columns if c.lower() in mapping}
    return drop_duplicate_columns(df.rename(columns=rename))


def read_table(path: Path) -> pd.DataFrame:
    if path.suffix.lower() == ".xlsx":
        return pd.read_excel(path, dtype=str, engine="openpyxl")
    return pd.read_csv(path, dtype=str, encoding="utf-8-sig")


def find_table(stem: str, data_dir: Optional[Path] = None) -> Optional[Path]:
    base = data_dir or DATA_DIR
    for suffix in TABLE_SUFFIXES:
        candidate = base / f"{stem}{suffix}"
        if candidate.exists():
            return candidate
    return None


def records_from_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as plain dicts, missing values as None."""
    if df is None or df.empty:
        return []
    obj = df.astype(object)
    return obj.where(obj.notna(), None).to_dict(orient="records")


def standard_level(code: object) -> int:
    """Hierarchy depth of a dotted code: A -> 0, A.1 -> 1, A.1.2 -> 2."""
    key = normalize_key(code)
    if key is None:
        return 0
    segments = key.split(".")
    return len(segments) - 1 if len(segments) > 1 else 0


# ---------------- Loaders ----------------
def _load(path: Optional[Path], mapping: Mapping[str, str], key: str, text_cols: List[str]) -> pd.DataFrame:
    if path is None or not path.exists():
        return pd.DataFrame()
    try:
        df = read_table(path)
    except Exception:
        logger.exception("reading %s failed", path)
        return pd.DataFrame()
    df = rename_columns(df, mapping)
    if key not in df.columns:
        logger.warning("%s has no %r column; ignoring it", path.name, key)
        return pd.DataFrame()
    keep = [c for c in dict.fromkeys(mapping.values()) if c in df.columns]
    df = df[keep].copy()
    df = coerce_str_safe(df, [c for c in text_cols if c in df.columns])
    before = len(df)
    df = df.dropna(subset=[key]).drop_duplicates(subset=[key], keep="first")
    if len(df) != before:
        logger.warning("Dropped %d rows without a unique %s from %s", before - len(df), key, path.name)
    return df.reset_index(drop=True)


def load_staff(path: Optional[Path] = None) -> pd.DataFrame:
    path = path or find_table(STAFF_STEM)
    return _load(path, STAFF_COLUMNS, "id", ["id", "name", "phase", "overseas_thai", "year_group", "department"])


def load_standards(path: Optional[Path] = None) -> pd.DataFrame:
    path = path or find_table(STANDARDS_STEM)
    df = _load(path, STANDARD_COLUMNS, "code", ["code", "name", "description", "group", "parent_code"])
    if df.empty:
        return df
    if "name" not in df.columns:
        df["name"] = df["code"]
    df["name"] = df["name"].fillna(df["code"])
    for col in ["description", "group", "parent_code"]:
        if col not in df.columns:
            df[col] = pd.NA
    df["level"] = df["code"].apply(standard_level)
    return df


def load_groups(path: Optional[Path] = None) -> pd.DataFrame:
    path = path or find_table(GROUPS_STEM)
    df = _load(path, GROUP_COLUMNS, "name", ["code", "name", "color", "description"])
    if not df.empty and "color" not in df.columns:
        df["color"] = "#ffffff"
    return df


def _load_models(store: JsonStore, key: str, model: Type[M], label: str) -> Optional[List[M]]:
    """Validated records stored under ``key``, or None when nothing is stored."""
    raw = store.load(key, None)
    if raw is None:
        return None
    if not isinstance(raw, list):
        logger.warning("Ignoring malformed %s payload of type %s", key, type(raw).__name__)
        return []
    out: List[M] = []
    for item in raw:
        try:
            out.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping invalid %s %r: %s", label, item, exc.errors()[0]["msg"])
    return out


def _save_models(store: JsonStore, key: str, models: Iterable[BaseModel]) -> bool:
    return store.save(key, [m.model_dump(mode="json") for m in models])


def load_assignments(store: JsonStore) -> List[Assignment]:
    return _load_models(store, ASSIGNMENTS_KEY, Assignment, "assignment") or []


def save_assignments(store: JsonStore, assignments: Iterable[Assignment]) -> bool:
    return _save_models(store, ASSIGNMENTS_KEY, assignments)


def set_achievement(
    assignments: List[Assignment],
    staff_id: str,
    standard_code: str,
    achieved: bool,
    *,
    now: Optional[datetime] = None,
) -> List[Assignment]:
    """Return ``assignments`` with the (staff, standard) record upserted."""
    stamp = (now or datetime.now(timezone.utc)) if achieved else None
    out = list(assignments)
    for idx, a in enumerate(out):
        if a.staff_id == staff_id and a.standard_code == standard_code:
            out[idx] = a.model_copy(update={"achieved": achieved, "date_achieved": stamp})
            break
    else:
        out.append(Assignment(staff_id=staff_id, standard_code=standard_code, achieved=achieved, date_achieved=stamp))
    logger.info("Assignment changed: Staff %s, Standard %s, Achieved: %s", staff_id, standard_code, achieved)
    return out


# ---------------- Managed records ----------------
ModelInput = Union[BaseModel, Mapping[str, Any]]


def _upsert(records: Iterable[M], item: ModelInput, model: Type[M], key: str) -> List[M]:
    """Replace the record sharing ``item``'s key, or append it.

    Raises ``pydantic.ValidationError`` when ``item`` is not a valid record.
    """
    record = model.model_validate(item.model_dump() if isinstance(item, BaseModel) else item)
    ident = getattr(record, key)
    out = list(records)
    for idx, existing in enumerate(out):
        if getattr(existing, key) == ident:
            out[idx] = record
            logger.info("Updated %s %s", model.__name__, ident)
            break
    else:
        out.append(record)
        logger.info("Added %s %s", model.__name__, ident)
    return out


def _delete(records: Iterable[M], keys: set, key: str, label: str) -> List[M]:
    out = [r for r in records if getattr(r, key) not in keys]
    for ident in sorted(keys):
        logger.info("Deleted %s %s", label, ident)
    return out


def upsert_staff(staff: Iterable[StaffMember], member: ModelInput) -> List[StaffMember]:
    return _upsert(staff, member, StaffMember, "id")


def delete_staff(staff: Iterable[StaffMember], staff_id: str) -> List[StaffMember]:
    staff = list(staff)
    if not any(s.id == staff_id for s in staff):
        return staff
    return _delete(staff, {staff_id}, "id", "staff")


def upsert_standard(standards: Iterable[Standard], standard: ModelInput) -> List[Standard]:
    return _upsert(standards, standard, Standard, "code")


def delete_standard(standards: Iterable[Standard], code: str) -> List[Standard]:
    """Remove a standard together with every sub-standard below it."""
    standards = list(standards)
    children: Dict[str, List[str]] = {}
    for s in standards:
        if s.parent_code:
            children.setdefault(s.parent_code, []).append(s.code)
    if not any(s.code == code for s in standards):
        return standards
    doomed = set()
    pending = [code]
    while pending:
        current = pending.pop()
        if current in doomed:
            continue
        doomed.add(current)
        pending.extend(children.get(current, ()))
    return _delete(standards, doomed, "code", "standard")


def upsert_group(groups: Iterable[StandardGroup], group: ModelInput) -> List[StandardGroup]:
    return _upsert(groups, group, StandardGroup, "name")


def delete_group(groups: Iterable[StandardGroup], name: str, standards: Iterable[Standard] = ()) -> List[StandardGroup]:
    """Remove a group unless standards still belong to it."""
    groups = list(groups)
    in_use = sum(1 for s in standards if s.group == name)
    if in_use:
        logger.warning("Cannot delete group %r: it contains %d standards", name, in_use)
        return groups
    if not any(g.name == name for g in groups):
        return groups
    return _delete(groups, {name}, "name", "group")


def load_staff_records(store: JsonStore) -> Optional[List[StaffMember]]:
    return _load_models(store, STAFF_KEY, StaffMember, "staff record")


def save_staff_records(store: JsonStore, staff: Iterable[StaffMember]) -> bool:
    return _save_models(store, STAFF_KEY, staff)


def load_standard_records(store: JsonStore) -> Optional[List[Standard]]:
    return _load_models(store, STANDARDS_KEY, Standard, "standard")


def save_standard_records(store: JsonStore, standards: Iterable[Standard]) -> bool:
    return _save_models(store, STANDARDS_KEY, standards)


def load_group_records(store: JsonStore) -> Optional[List[StandardGroup]]:
    return _load_models(store, GROUPS_KEY, StandardGroup, "group")


def save_group_records(store: JsonStore, groups: Iterable[StandardGroup]) -> bool:
    return _save_models(store, GROUPS_KEY, groups)


def models_from_frame(df: pd.DataFrame, model: Type[M]) -> List[M]:
    out: List[M] = []
    for record in records_from_frame(df):
        try:
            out.append(model.model_validate(record))
        except ValidationError as exc:
            logger.warning("Skipping invalid %s row %r: %s", model.__name__, record, exc.errors()[0]["msg"])
    return out


def staff_records(staff: Iterable[StaffMember]) -> List[Dict[str, Any]]:
    return [m.model_dump() for m in staff]


def standard_records(standards: Iterable[Standard]) -> List[Dict[str, Any]]:
    return [dict(m.model_dump(), level=standard_level(m.code)) for m in standards]


# ---------------- Ordering ----------------
def _group_sort_key(group: object) -> Tuple[int, str]:
    key = normalize_key(group)
    if key is None:
        return (1, "")
    return (0, key.casefold())


def sort_standards(standards: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Order by group then code; ungrouped standards come last."""
    return sorted(standards, key=lambda s: (_group_sort_key(s.get("group")), str(s.get("code") or "").casefold()))


def sort_staff(staff: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return sorted(staff, key=lambda s: str(s.get("name") or "").casefold())


# ---------------- Public API ----------------
def get_source_files(data_dir: Optional[Path] = None) -> Dict[str, Path]:
    out: Dict[str, Path] = {}
    for stem in (STAFF_STEM, STANDARDS_STEM, GROUPS_STEM):
        path = find_table(stem, data_dir)
        if path is not None:
            out[stem] = path
    return out


def file_signature(files: Dict[str, Path]) -> Tuple[Tuple[str, str, float], ...]:
    return tuple((stem, str(path), path.stat().st_mtime) for stem, path in sorted(files.items()))


@lru_cache(maxsize=4)
def _load_tracker_data_cached(files_sig: Tuple[Tuple[str, str, float], ...]) -> Dict[str, object]:
    paths = {stem: Path(path) for stem, path, _ in files_sig}
    staff = load_staff(paths.get(STAFF_STEM)) if STAFF_STEM in paths else pd.DataFrame()
    standards = load_standards(paths.get(STANDARDS_STEM)) if STANDARDS_STEM in paths else pd.DataFrame()
    groups = load_groups(paths.get(GROUPS_STEM)) if GROUPS_STEM in paths else pd.DataFrame()
    return {
        "files": [Path(path).name for _, path, _ in files_sig],
        "staff": staff,
        "standards": standards,
        "groups": groups,
    }


def load_tracker_data(data_dir: Optional[Path] = None) -> Dict[str, object]:
    files = get_source_files(data_dir)
    if not files:
        return {"files": [], "staff": pd.DataFrame(), "standards": pd.DataFrame(), "groups": pd.DataFrame()}
    return _load_tracker_data_cached(file_signature(files))


def load_catalog(store: JsonStore, data_dir: Optional[Path] = None) -> Dict[str, List[BaseModel]]:
    """Managed staff, standards and groups.

    Records already in ``store`` win; a kind with nothing stored yet is seeded
    from the source files.
    """
    files = load_tracker_data(data_dir)
    out: Dict[str, List[BaseModel]] = {}
    for key, model in ((STAFF_KEY, StaffMember), (STANDARDS_KEY, Standard), (GROUPS_KEY, StandardGroup)):
        stored = _load_models(store, key, model, f"{key} record")
        out[key] = stored if stored is not None else models_from_frame(files[key], model)
    return out


def prepare_context(result: FilteredResult, assignments: Iterable[Assignment]) -> Dict[str, object]:
    """Sorted filtered views plus the assignments that fall inside them."""
    staff = sort_staff(result.primary)
    standards = sort_standards(result.secondary)
    staff_ids = {str(s.get("id")) for s in staff}
    codes = {str(s.get("code")) for s in standards}
    filtered_assignments = [a for a in assignments if a.staff_id in staff_ids and a.standard_code in codes]
    return {
        "filter_state": result.filter_state,
        "filtered_staff": staff,
        "filtered_standards": standards,
        "filtered_assignments": filtered_assignments,
    }
