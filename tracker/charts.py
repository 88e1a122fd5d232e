from __future__ import annotations

from typing import Any, Dict

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def achievement_bar_chart(per_standard: pd.DataFrame, *, height: int = 260) -> alt.Chart:
    hover = alt.selection_point(fields=["group"], on="mouseover", empty="all")
    return (
        alt.Chart(per_standard)
        .mark_bar()
        .encode(
            x=alt.X("code:N", title="Standard", sort=None, axis=alt.Axis(labelAngle=-45)),
            y=alt.Y("achieved_pct:Q", title="Achieved", axis=alt.Axis(format=".0%", gridDash=[4, 4], domain=False, ticks=False)),
            color=alt.Color("group:N", title="Group"),
            opacity=alt.condition(hover, alt.value(1), alt.value(0.35)),
            tooltip=[
                alt.Tooltip("code:N", title="Code"),
                alt.Tooltip("name:N", title="Standard"),
                alt.Tooltip("achieved:Q", title="Achieved"),
                alt.Tooltip("total_staff:Q", title="Staff"),
                alt.Tooltip("achieved_pct:Q", title="Rate", format=".1%"),
            ],
        )
        .add_params(hover)
        .properties(height=height)
    )
