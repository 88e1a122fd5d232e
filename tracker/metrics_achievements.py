from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from tracker.charts import achievement_bar_chart, to_vega_spec
from tracker.data import sort_staff, sort_standards
from tracker.schemas import AchievementSummaryModel, Assignment


UNGROUPED_LABEL = "Ungrouped"


def build_achievement_matrix(
    staff: Iterable[Mapping[str, Any]],
    standards: Iterable[Mapping[str, Any]],
    assignments: Iterable[Assignment],
) -> pd.DataFrame:
    """Staff x standard boolean grid, rows by name and columns by group/code."""
    ids = [str(s.get("id")) for s in sort_staff(staff)]
    codes = [str(s.get("code")) for s in sort_standards(standards)]
    matrix = pd.DataFrame(
        False,
        index=pd.Index(ids, name="staff_id"),
        columns=pd.Index(codes, name="standard_code"),
    )
    id_set, code_set = set(ids), set(codes)
    for a in assignments:
        if a.achieved and a.staff_id in id_set and a.standard_code in code_set:
            matrix.loc[a.staff_id, a.standard_code] = True
    return matrix


def compute_achievement_summary(
    staff: Iterable[Mapping[str, Any]],
    standards: Iterable[Mapping[str, Any]],
    assignments: Iterable[Assignment],
    *,
    group: Optional[str] = None,
) -> Dict[str, Any]:
    staff = sort_staff(staff)
    standards = sort_standards(standards)
    if group:
        standards = [s for s in standards if s.get("group") == group]
    assignments = list(assignments)

    matrix = build_achievement_matrix(staff, standards, assignments)
    total_staff = len(staff)
    total_standards = len(standards)
    achieved = int(matrix.to_numpy().sum()) if not matrix.empty else 0
    total_possible = total_staff * total_standards
    pct = round(achieved / total_possible * 100, 2) if total_possible > 0 else 0.0

    summary = AchievementSummaryModel(
        total_staff=total_staff,
        total_standards=total_standards,
        achieved_assignments=achieved,
        total_possible_assignments=total_possible,
        achievement_percentage=pct,
    )

    per_standard = pd.DataFrame(
        {
            "code": [str(s.get("code")) for s in standards],
            "name": [str(s.get("name") or "") for s in standards],
            "group": [s.get("group") or UNGROUPED_LABEL for s in standards],
        }
    )
    if not per_standard.empty:
        per_standard["achieved"] = matrix.sum(axis=0).to_numpy().astype(int) if total_staff else 0
        per_standard["total_staff"] = total_staff
        per_standard["achieved_pct"] = per_standard["achieved"] / total_staff if total_staff else 0.0

    per_staff: List[Dict[str, Any]] = []
    if total_staff:
        counts = matrix.sum(axis=1)
        for record, count in zip(staff, counts.to_numpy()):
            per_staff.append({"id": str(record.get("id")), "name": record.get("name"), "achieved": int(count)})

    charts: Dict[str, Any] = {}
    if not per_standard.empty and total_staff:
        charts["achievement_by_standard"] = to_vega_spec(achievement_bar_chart(per_standard))

    return {
        "group": group,
        "summary": summary.model_dump(),
        "per_standard": per_standard.to_dict(orient="records"),
        "per_staff": per_staff,
        "charts": charts,
    }
