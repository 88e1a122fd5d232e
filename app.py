import logging
from contextlib import contextmanager
from typing import Dict, List, Optional

import altair as alt
import pandas as pd
import streamlit as st
from pydantic import ValidationError

from tracker.data import (
    DATA_DIR,
    delete_group,
    delete_staff,
    delete_standard,
    load_assignments,
    load_catalog,
    prepare_context,
    save_assignments,
    save_group_records,
    save_staff_records,
    save_standard_records,
    set_achievement,
    staff_records,
    standard_records,
    upsert_group,
    upsert_staff,
    upsert_standard,
)
from tracker.drilldown import DrilldownNavigator
from tracker.engine import FilteredResult, FilterEngine, pending_from_inputs
from tracker.fields import DEFAULT_FILTER_GROUPS, Dropdown, FilterFieldConfig, default_fields
from tracker.filters import FilterState
from tracker.metrics_achievements import build_achievement_matrix, compute_achievement_summary
from tracker.storage import JsonStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
alt.data_transformers.disable_max_rows()


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .app-top-bar {padding: 6px 0 4px;border-bottom: 1px solid #e5e7eb;margin-bottom: 10px;}
        .app-top-bar .breadcrumb {color: #6b7280;font-size: 0.9rem;margin-bottom: 2px;}
        .app-top-bar .page-title {font-size: 1.4rem;font-weight: 700;color: #111827;}
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        .chip.exclude {background: #fef2f2;border-color: #fecaca;color: #991b1b;text-decoration: line-through;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def format_filter_summary(state: FilterState, fields: Dict[str, FilterFieldConfig]) -> str:
    if not state:
        return "<span class='chip'>No filters</span>"
    chips = []
    for field, criteria in state.items():
        label = fields[field].name if field in fields else field
        for c in criteria:
            css = "chip exclude" if c.mode == "exclude" else "chip"
            chips.append(f"<span class='{css}'>{label} {c.value}</span>")
    return "".join(chips)


def render_page_header(title: str, breadcrumb: str, filter_summary_html: str, export_df: Optional[pd.DataFrame] = None, export_name: str = "export.csv"):
    inject_base_styles()
    c1, c2 = st.columns([8, 2])
    with c1:
        st.markdown(
            f"<div class='app-top-bar'><div class='breadcrumb'>{breadcrumb}</div><div class='page-title'>{title}</div></div>",
            unsafe_allow_html=True,
        )
    with c2:
        if export_df is not None and not export_df.empty:
            st.download_button("Export CSV", data=export_df.to_csv().encode("utf-8"), file_name=export_name, mime="text/csv")
    st.markdown(f"<div class='chip-row'>{filter_summary_html}</div>", unsafe_allow_html=True)


# ---------- Data + session setup ----------
st.set_page_config(page_title="Staff Standards Tracker", layout="wide")
inject_base_styles()
st.title("Staff Standards Tracker")
st.caption("Which staff have achieved which standards, sliced by ad-hoc filters.")

store = JsonStore(DATA_DIR / "data")
if "catalog" not in st.session_state:
    st.session_state["catalog"] = load_catalog(store)
if "assignments" not in st.session_state:
    st.session_state["assignments"] = load_assignments(store)
catalog = st.session_state["catalog"]
if not catalog["staff"]:
    st.warning(f"No staff found. Place staff.xlsx or staff.csv in {DATA_DIR} or add staff on the Manage page.")

if "engine" not in st.session_state:
    engine = FilterEngine(staff_records(catalog["staff"]), standard_records(catalog["standards"]), fields=default_fields())
    st.session_state["engine"] = engine
    st.session_state["navigator"] = DrilldownNavigator(engine.primary, DEFAULT_FILTER_GROUPS["classification"], engine=engine)
    engine.apply()

engine: FilterEngine = st.session_state["engine"]
navigator: DrilldownNavigator = st.session_state["navigator"]
field_configs = engine.fields


def save_catalog(updated: Dict[str, list]):
    st.session_state["catalog"] = updated
    save_staff_records(store, updated["staff"])
    save_standard_records(store, updated["standards"])
    save_group_records(store, updated["groups"])
    engine.update_data(primary=staff_records(updated["staff"]), secondary=standard_records(updated["standards"]))
    navigator.update_data(engine.primary)


# ----- Sidebar: navigation + filters -----
def render_filter_field(cfg: FilterFieldConfig):
    st.markdown(f"**{cfg.name}**")
    if isinstance(cfg.kind, Dropdown):
        value = st.selectbox(cfg.name, options=[""] + list(cfg.options), key=f"input-{cfg.id}", label_visibility="collapsed")
    else:
        placeholder = "Filter by code, name, description or group" if cfg.is_search else "Type to filter"
        value = st.text_input(cfg.name, key=f"input-{cfg.id}", placeholder=placeholder, label_visibility="collapsed")
    cols = st.columns([3, 1, 1])
    mode = cols[0].radio("Mode", ["include", "exclude"], key=f"mode-{cfg.id}", horizontal=True, label_visibility="collapsed")
    if cols[1].button("↵", key=f"add-{cfg.id}", help="Add filter"):
        engine.add_filter_tag(cfg.id, value, mode)
    if cols[2].button("×", key=f"clear-{cfg.id}", help="Clear this filter"):
        engine.clear_single_filter(cfg.id)
    for criterion in engine.filter_state.get(cfg.id):
        label = f"{'−' if criterion.mode == 'exclude' else '+'} {criterion.value}  ×"
        if st.button(label, key=f"tag-{criterion.id}"):
            engine.remove_filter_tag(criterion.id, cfg.id)
            st.rerun()


with st.sidebar:
    st.markdown("### Navigate")
    nav_choice = st.radio("Navigate", ["Achievements", "Drill-Down", "Analytics", "Manage"], index=0)
    st.markdown("---")
    for group_name, group_fields in DEFAULT_FILTER_GROUPS.items():
        with st.expander(group_name.title(), expanded=group_name != "standards"):
            for cfg in group_fields:
                render_filter_field(cfg)
    if st.button("Clear All Filters"):
        engine.clear_filters()
        navigator.reset()

result: FilteredResult = engine.apply(pending_from_inputs(st.session_state, field_configs))
ctx = prepare_context(result, st.session_state["assignments"])
filter_summary_html = format_filter_summary(result.filter_state, field_configs)


# ---------- Pages ----------
def render_achievements_page():
    matrix = build_achievement_matrix(ctx["filtered_staff"], ctx["filtered_standards"], st.session_state["assignments"])
    render_page_header("Achievements", "Home / Achievements", filter_summary_html, export_df=matrix, export_name="achievements.csv")
    if matrix.empty:
        st.info("No staff or standards match the current filters.")
        return
    names = {str(s.get("id")): s.get("name") for s in ctx["filtered_staff"]}
    display = matrix.copy()
    display.insert(0, "name", [names.get(i) for i in display.index])
    edited = st.data_editor(display, disabled=["name"], use_container_width=True, key="achievement-grid")
    changed = edited.drop(columns=["name"]) != matrix
    if changed.to_numpy().any():
        assignments = st.session_state["assignments"]
        rows, cols = changed.to_numpy().nonzero()
        for r, c in zip(rows, cols):
            staff_id, code = matrix.index[r], matrix.columns[c]
            assignments = set_achievement(assignments, staff_id, code, bool(edited.loc[staff_id, code]))
        st.session_state["assignments"] = assignments
        save_assignments(store, assignments)


def render_drilldown_page():
    render_page_header("Drill-Down", "Home / Drill-Down", filter_summary_html)
    ids = navigator.field_ids
    labels = {f.id: f.name for f in navigator.fields}
    start = st.selectbox(
        "Starting filter",
        options=[""] + ids,
        format_func=lambda f: labels.get(f, "Select a starting filter..."),
        index=(ids.index(navigator.start_field) + 1) if navigator.start_field in ids else 0,
    )
    if start and start != navigator.start_field:
        navigator.select_start_field(start)
        st.rerun()

    if navigator.breadcrumbs:
        crumb_cols = st.columns(len(navigator.breadcrumbs))
        for col, crumb in zip(crumb_cols, navigator.breadcrumbs):
            if col.button(f"{crumb.label}: {crumb.value}", key=f"crumb-{crumb.index}"):
                navigator.navigate_to(crumb.index)
                st.rerun()
            if col.button("×", key=f"crumb-remove-{crumb.index}"):
                navigator.remove_filter_at(crumb.index)
                st.rerun()

    if navigator.active_field:
        with card(f"Choose {labels.get(navigator.active_field, navigator.active_field)}"):
            cols = st.columns(4)
            for idx, candidate in enumerate(navigator.candidates):
                if cols[idx % 4].button(f"{candidate.value} ({candidate.count} staff)", key=f"value-{idx}"):
                    navigator.select_value(candidate.value)
                    st.rerun()

    staff = navigator.get_filtered_primary()
    if navigator.current_filters:
        with card(f"Staff Matching Filters ({len(staff)} staff member{'s' if len(staff) != 1 else ''})"):
            for record in staff[:10]:
                st.markdown(f"- {record.get('name') or 'Unknown'} (ID: {record.get('id') or 'N/A'})")
            if len(staff) > 10:
                st.caption(f"+ {len(staff) - 10} more staff members")
            if st.button("Reset Filters"):
                navigator.reset()
                st.rerun()


def render_analytics_page():
    render_page_header("Analytics", "Home / Analytics", filter_summary_html)
    groups: List[str] = sorted({s.get("group") for s in ctx["filtered_standards"] if s.get("group")})
    group = st.selectbox("Standard group", options=["All Groups"] + groups)
    payload = compute_achievement_summary(
        ctx["filtered_staff"],
        ctx["filtered_standards"],
        st.session_state["assignments"],
        group=None if group == "All Groups" else group,
    )
    summary = payload["summary"]
    tiles = st.columns(4)
    tiles[0].metric("Staff", summary["total_staff"])
    tiles[1].metric("Standards", summary["total_standards"])
    tiles[2].metric("Achieved", f"{summary['achieved_assignments']} / {summary['total_possible_assignments']}")
    tiles[3].metric("Achievement", f"{summary['achievement_percentage']:.2f}%")
    chart = payload["charts"].get("achievement_by_standard")
    if chart:
        with card("Achievement by standard"):
            st.vega_lite_chart(chart, use_container_width=True)
    with card("Per standard"):
        st.dataframe(pd.DataFrame(payload["per_standard"]), hide_index=True)


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())


def render_staff_manager():
    staff = catalog["staff"]
    with st.form("staff-form", clear_on_submit=True):
        cols = st.columns(2)
        staff_id = cols[0].text_input("Staff ID")
        name = cols[1].text_input("Name")
        picks = {}
        for field_id in ("phase", "overseas_thai", "year_group", "department"):
            cfg = field_configs[field_id]
            picks[field_id] = st.multiselect(cfg.name, options=list(cfg.options), key=f"manage-{field_id}")
        if st.form_submit_button("Save staff member"):
            try:
                save_catalog({**catalog, "staff": upsert_staff(staff, {"id": staff_id, "name": name, **picks})})
                st.rerun()
            except ValidationError as exc:
                st.error(_validation_message(exc))
    if staff:
        st.dataframe(pd.DataFrame(staff_records(staff)), hide_index=True, use_container_width=True)
        doomed = st.selectbox("Delete staff member", options=[""] + [s.id for s in staff], key="delete-staff")
        if doomed and st.button("Delete", key="delete-staff-btn"):
            save_catalog({**catalog, "staff": delete_staff(staff, doomed)})
            st.rerun()


def render_standards_manager():
    standards = catalog["standards"]
    group_names = [g.name for g in catalog["groups"]]
    with st.form("standard-form", clear_on_submit=True):
        cols = st.columns(2)
        code = cols[0].text_input("Code")
        name = cols[1].text_input("Name")
        description = st.text_area("Description")
        cols = st.columns(2)
        group = cols[0].selectbox("Group", options=[""] + group_names)
        parent = cols[1].selectbox("Parent standard", options=[""] + [s.code for s in standards])
        if st.form_submit_button("Save standard"):
            item = {"code": code, "name": name, "description": description, "group": group, "parent_code": parent}
            try:
                save_catalog({**catalog, "standards": upsert_standard(standards, item)})
                st.rerun()
            except ValidationError as exc:
                st.error(_validation_message(exc))
    if standards:
        st.dataframe(pd.DataFrame(standard_records(standards)), hide_index=True, use_container_width=True)
        doomed = st.selectbox("Delete standard", options=[""] + [s.code for s in standards], key="delete-standard")
        if doomed and st.button("Delete with sub-standards", key="delete-standard-btn"):
            save_catalog({**catalog, "standards": delete_standard(standards, doomed)})
            st.rerun()


def render_groups_manager():
    groups = catalog["groups"]
    with st.form("group-form", clear_on_submit=True):
        cols = st.columns([3, 2, 1])
        name = cols[0].text_input("Group name")
        code = cols[1].text_input("Group code")
        color = cols[2].color_picker("Color", value="#ffffff")
        description = st.text_input("Description")
        if st.form_submit_button("Save group"):
            try:
                save_catalog({**catalog, "groups": upsert_group(groups, {"name": name, "code": code, "color": color, "description": description})})
                st.rerun()
            except ValidationError as exc:
                st.error(_validation_message(exc))
    if groups:
        st.dataframe(pd.DataFrame([g.model_dump() for g in groups]), hide_index=True, use_container_width=True)
        doomed = st.selectbox("Delete group", options=[""] + [g.name for g in groups], key="delete-group")
        if doomed and st.button("Delete", key="delete-group-btn"):
            kept = delete_group(groups, doomed, catalog["standards"])
            if len(kept) == len(groups):
                st.error(f"Group {doomed} still contains standards. Move or delete them first.")
            else:
                save_catalog({**catalog, "groups": kept})
                st.rerun()


def render_manage_page():
    render_page_header("Manage", "Home / Manage", filter_summary_html)
    staff_tab, standards_tab, groups_tab = st.tabs(["Staff", "Standards", "Groups"])
    with staff_tab:
        render_staff_manager()
    with standards_tab:
        render_standards_manager()
    with groups_tab:
        render_groups_manager()


if nav_choice == "Achievements":
    render_achievements_page()
elif nav_choice == "Drill-Down":
    render_drilldown_page()
elif nav_choice == "Analytics":
    render_analytics_page()
else:
    render_manage_page()
