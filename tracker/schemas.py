from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tracker.fields import MULTI_VALUE_DELIMITER


class CriterionModel(BaseModel):
    """One filter tag as supplied from outside the engine (UI state, saved views)."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    value: str
    mode: Literal["include", "exclude"] = "include"
    temporary: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, v: Any) -> Any:
        if v is None or isinstance(v, (dict, list, tuple, set)):
            return v
        return str(v).strip()

    @field_validator("mode", mode="before")
    @classmethod
    def _default_mode(cls, v: Any) -> Any:
        if v is None or v == "":
            return "include"
        return str(v).strip().lower()


class Assignment(BaseModel):
    """Achievement record linking a staff member to a standard."""

    model_config = ConfigDict(extra="ignore")

    staff_id: str = Field(min_length=1)
    standard_code: str = Field(min_length=1)
    achieved: bool = False
    date_achieved: Optional[datetime] = None

    @field_validator("staff_id", "standard_code", mode="before")
    @classmethod
    def _strip_key(cls, v: Any) -> Any:
        if v is None:
            return v
        return str(v).strip()


class AchievementSummaryModel(BaseModel):
    total_staff: int
    total_standards: int
    achieved_assignments: int
    total_possible_assignments: int
    achievement_percentage: float


def _blank_to_none(v: Any) -> Any:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


class StaffMember(BaseModel):
    """Managed staff profile; classification fields may hold several values."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = ""
    phase: Optional[str] = None
    overseas_thai: Optional[str] = None
    year_group: Optional[str] = None
    department: Optional[str] = None

    @field_validator("id", "name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("phase", "overseas_thai", "year_group", "department", mode="before")
    @classmethod
    def _join_values(cls, v: Any) -> Any:
        if isinstance(v, (set, frozenset)):
            v = sorted(str(x) for x in v)
        if isinstance(v, (list, tuple)):
            tokens = [str(x).strip() for x in v if x is not None and str(x).strip()]
        elif v is None:
            return None
        else:
            tokens = [t.strip() for t in str(v).split(",") if t.strip()]
        return MULTI_VALUE_DELIMITER.join(tokens) or None


class Standard(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str = Field(min_length=1)
    name: str = ""
    description: Optional[str] = None
    group: Optional[str] = None
    parent_code: Optional[str] = None

    @field_validator("code", "name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("description", "group", "parent_code", mode="before")
    @classmethod
    def _blank_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _default_name(self) -> "Standard":
        if not self.name:
            self.name = self.code
        return self


class StandardGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    code: Optional[str] = None
    color: str = "#ffffff"
    description: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("code", "description", mode="before")
    @classmethod
    def _blank_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("color", mode="before")
    @classmethod
    def _default_color(cls, v: Any) -> Any:
        return _blank_to_none(v) or "#ffffff"
