from __future__ import annotations

import logging

import pandas as pd
import pytest

from tracker.engine import FilteredResult, FilterEngine, pending_from_inputs
from tracker.fields import STAFF_FIELDS, FilterFieldConfig


def names(records) -> list:
    return [r["name"] for r in records]


def codes(records) -> list:
    return [r["code"] for r in records]


class TestCombination:
    def test_and_across_fields(self, engine) -> None:
        engine.add_filter_tag("name", "ann", "include")
        engine.add_filter_tag("department", "LSA", "include")
        # Anna is the only LSA "ann"; plain Ann is EAL
        assert names(engine.filtered_primary) == ["Anna"]

    def test_and_across_fields_can_be_empty(self) -> None:
        engine = FilterEngine([{"id": "1", "name": "Ann", "department": "EAL"}])
        engine.add_filter_tag("name", "ann")
        engine.add_filter_tag("department", "LSA")
        assert engine.filtered_primary == []

    def test_or_within_includes(self, engine) -> None:
        engine.add_filter_tag("department", "EAL")
        engine.add_filter_tag("department", "LSA")
        assert names(engine.filtered_primary) == ["Ann", "Anna", "Susan"]

    def test_exclude_on_other_field(self, engine) -> None:
        engine.add_filter_tag("phase", "Primary")
        engine.add_filter_tag("year_group", "Year 3", "exclude")
        assert names(engine.filtered_primary) == ["Anna"]

    def test_mixed_include_exclude_same_field(self, engine) -> None:
        engine.add_filter_tag("department", "EAL")
        engine.add_filter_tag("department", "LSA", "exclude")
        assert names(engine.filtered_primary) == ["Ann"]

    def test_multi_value_token_include_and_exclude(self, engine) -> None:
        engine.add_filter_tag("department", "LSA")
        assert "Susan" in names(engine.filtered_primary)
        engine.clear_filters()
        engine.add_filter_tag("department", "LSA", "exclude")
        assert "Susan" not in names(engine.filtered_primary)

    def test_exclude_keeps_records_without_value(self, engine) -> None:
        engine.add_filter_tag("department", "EAL", "exclude")
        assert names(engine.filtered_primary) == ["Anna", "Bob", "Carl"]

    def test_text_partial(self, engine) -> None:
        engine.add_filter_tag("name", "an")
        assert names(engine.filtered_primary) == ["Ann", "Anna", "Susan"]

    def test_dropdown_exact(self, engine) -> None:
        engine.add_filter_tag("phase", "primary")
        assert "Bob" not in names(engine.filtered_primary)
        assert names(engine.filtered_primary) == ["Ann", "Anna", "Carl"]

    def test_staff_filters_leave_standards_alone(self, engine, standards) -> None:
        engine.add_filter_tag("name", "zzz")
        assert engine.filtered_primary == []
        assert engine.filtered_secondary == standards


class TestStandardsSearch:
    def test_include_matches_any_attribute(self, engine) -> None:
        engine.add_filter_tag("standards", "welfare")
        engine.add_filter_tag("standards", "reading")
        assert codes(engine.filtered_secondary) == ["T1", "T2"]

    def test_exclude(self, engine) -> None:
        engine.add_filter_tag("standards", "t1", "exclude")
        assert codes(engine.filtered_secondary) == ["T2", "T3"]

    def test_standard_without_name(self, staff) -> None:
        engine = FilterEngine(staff, [{"code": "T9", "name": None}])
        engine.add_filter_tag("standards", "one")
        assert engine.filtered_secondary == []
        engine.clear_filters()
        engine.add_filter_tag("standards", "on", "exclude")
        assert codes(engine.filtered_secondary) == ["T9"]

    def test_search_leaves_staff_alone(self, engine, staff) -> None:
        engine.add_filter_tag("standards", "nothing-matches")
        assert engine.filtered_secondary == []
        assert engine.filtered_primary == staff


class TestMutations:
    def test_empty_value_is_rejected(self, engine, results) -> None:
        assert engine.add_filter_tag("name", "   ", "include") is None
        assert not engine.filter_state
        assert results == []

    def test_unknown_field_is_rejected(self, engine) -> None:
        assert engine.add_filter_tag("shoe_size", "9") is None
        assert not engine.filter_state

    def test_bad_mode_is_rejected(self, engine) -> None:
        assert engine.add_filter_tag("name", "ann", "maybe") is None

    def test_mode_defaults_to_include(self, engine) -> None:
        criterion = engine.add_filter_tag("name", "ann", None)
        assert criterion.mode == "include"

    def test_duplicate_suppression(self, engine, results) -> None:
        first = engine.add_filter_tag("name", "ann")
        assert engine.add_filter_tag("name", " ANN ") is None
        assert [c.id for c in engine.filter_state.get("name")] == [first.id]
        assert len(results) == 1

    def test_ids_are_unique_and_ordered(self, engine) -> None:
        a = engine.add_filter_tag("name", "ann")
        b = engine.add_filter_tag("name", "bob")
        assert a.id == "filter-name-1"
        assert b.id == "filter-name-2"

    def test_value_is_trimmed_case_preserved(self, engine) -> None:
        criterion = engine.add_filter_tag("name", "  Ann ")
        assert criterion.value == "Ann"

    def test_remove(self, engine) -> None:
        a = engine.add_filter_tag("name", "ann")
        engine.remove_filter_tag(a.id, "name")
        assert "name" not in engine.filter_state
        assert len(engine.filtered_primary) == 5

    def test_clear_single_field(self, engine) -> None:
        engine.add_filter_tag("name", "ann")
        engine.add_filter_tag("phase", "Primary")
        engine.clear_single_filter("name")
        assert engine.filter_state.fields() == ["phase"]

    def test_clear_all(self, engine, staff, standards) -> None:
        engine.add_filter_tag("name", "ann")
        engine.add_filter_tag("standards", "t1")
        engine.clear_filters()
        result = engine.get_filtered_data()
        assert not result.filter_state
        assert result.primary == staff
        assert result.secondary == standards

    def test_filter_state_is_a_copy(self, engine) -> None:
        engine.add_filter_tag("name", "ann")
        engine.filter_state.clear()
        assert "name" in engine.filter_state


class TestCallbacks:
    def test_one_callback_per_mutation(self, engine, results) -> None:
        a = engine.add_filter_tag("name", "ann")
        engine.add_filter_tag("phase", "Primary")
        engine.remove_filter_tag(a.id, "name")
        engine.clear_single_filter("phase")
        engine.clear_filters()
        engine.apply()
        engine.set_filter_state({"name": ["ann", "bob"], "phase": ["Primary"]})
        engine.update_data(primary=[])
        assert len(results) == 8
        assert all(isinstance(r, FilteredResult) for r in results)

    def test_result_carries_state_snapshot(self, engine, results) -> None:
        engine.add_filter_tag("name", "ann")
        assert names(results[-1].primary) == ["Ann", "Anna"]
        assert results[-1].filter_state.fields() == ["name"]


class TestApply:
    def test_idempotent(self, engine) -> None:
        engine.add_filter_tag("phase", "Primary")
        engine.add_filter_tag("year_group", "Year 3", "exclude")
        first = engine.apply()
        second = engine.apply()
        assert first.primary == second.primary
        assert first.filter_state == second.filter_state

    def test_pending_values_apply_once(self, engine) -> None:
        engine.add_filter_tag("phase", "Primary")
        result = engine.apply({"name": "ann", "year_group": ("Year 3", "exclude")})
        assert names(result.primary) == ["Anna"]
        assert result.filter_state.fields() == ["phase"]
        assert names(engine.apply().primary) == ["Ann", "Anna", "Carl"]

    def test_pending_duplicate_of_committed_tag_is_ignored(self, engine) -> None:
        engine.add_filter_tag("name", "ann")
        engine.apply({"name": "ann"})
        assert len(engine.filter_state.get("name")) == 1

    @pytest.mark.parametrize("raw", [("ann",), ("ann", "include", "extra"), ()])
    def test_malformed_pending_tuple_is_skipped(self, engine, results, raw) -> None:
        result = engine.apply({"name": raw, "phase": "Primary"})
        assert names(result.primary) == ["Ann", "Anna", "Carl"]
        assert not engine.filter_state
        assert len(results) == 1


class TestPendingFromInputs:
    def test_collects_typed_values(self, engine) -> None:
        inputs = {
            "input-name": " ann ",
            "input-year_group": "Year 3",
            "mode-year_group": "exclude",
            "input-phase": "",
            "mode-phase": "exclude",
            "input-shoe_size": "9",
        }
        pending = pending_from_inputs(inputs, engine.fields)
        assert pending == {"name": ("ann", "include"), "year_group": ("Year 3", "exclude")}

    def test_narrows_a_rerun_without_committing(self, engine, results) -> None:
        inputs = {"input-name": "ann", "mode-name": "include", "input-year_group": "Year 3", "mode-year_group": "exclude"}
        result = engine.apply(pending_from_inputs(inputs, engine.fields))
        assert names(result.primary) == ["Anna"]
        assert not engine.filter_state
        assert len(results) == 1


class TestSetFilterState:
    def test_replaces_and_revalidates(self, engine) -> None:
        engine.add_filter_tag("phase", "Primary")
        result = engine.set_filter_state(
            {
                "name": [{"value": "ann"}, {"value": "ANN"}, {"value": "  "}],
                "shoe_size": ["9"],
                "department": [{"value": "LSA", "mode": "exclude"}],
            }
        )
        state = result.filter_state
        assert state.fields() == ["name", "department"]
        assert len(state.get("name")) == 1
        assert names(result.primary) == ["Ann"]

    def test_keeps_supplied_ids(self, engine) -> None:
        engine.set_filter_state({"phase": [{"id": "drilldown-phase-0", "value": "Primary"}]})
        assert [c.id for c in engine.filter_state.get("phase")] == ["drilldown-phase-0"]

    def test_reused_id_gets_a_fresh_one(self, engine) -> None:
        engine.set_filter_state({"name": [{"id": "x", "value": "ann"}, {"id": "x", "value": "bob"}]})
        ids = [c.id for c in engine.filter_state.get("name")]
        assert ids[0] == "x"
        assert ids[1].startswith("filter-name-")

    def test_round_trip(self, engine) -> None:
        engine.add_filter_tag("name", "ann")
        engine.add_filter_tag("department", "EAL", "exclude")
        before = engine.get_filtered_data()
        after = engine.set_filter_state(before.filter_state)
        assert after.filter_state == before.filter_state
        assert after.primary == before.primary

    def test_none_clears(self, engine) -> None:
        engine.add_filter_tag("name", "ann")
        engine.set_filter_state(None)
        assert not engine.filter_state


class TestUpdateData:
    def test_reapplies_current_state(self, engine) -> None:
        engine.add_filter_tag("name", "ann")
        engine.update_data(primary=[{"id": "9", "name": "Joanne"}, {"id": "10", "name": "Zed"}])
        assert names(engine.filtered_primary) == ["Joanne"]

    def test_secondary_only(self, engine, staff) -> None:
        engine.update_data(secondary=[{"code": "N1", "name": "New"}])
        assert engine.primary == tuple(staff)
        assert codes(engine.filtered_secondary) == ["N1"]

    def test_accepts_dataframe(self, engine) -> None:
        df = pd.DataFrame([{"id": "1", "name": "Ann", "phase": None}])
        engine.update_data(primary=df)
        assert engine.primary == ({"id": "1", "name": "Ann", "phase": None},)

    def test_snapshot_ignores_later_mutation(self, staff) -> None:
        engine = FilterEngine(staff)
        staff.append({"id": "S9", "name": "Late"})
        assert len(engine.primary) == 5


class TestBadRecords:
    def test_bad_record_is_excluded_and_logged(self, standards, caplog) -> None:
        staff = [{"id": "1", "name": "Ann"}, ["not", "a", "mapping"], {"id": "2", "name": "Anna"}]
        engine = FilterEngine(staff, standards)
        with caplog.at_level(logging.WARNING, logger="tracker.engine"):
            engine.add_filter_tag("name", "ann")
        assert names(engine.filtered_primary) == ["Ann", "Anna"]
        assert "Excluding staff record" in caplog.text

    def test_bad_standard_is_excluded(self, staff, caplog) -> None:
        engine = FilterEngine(staff, [{"code": "T1", "name": "Safeguarding"}, None])
        with caplog.at_level(logging.WARNING, logger="tracker.engine"):
            engine.add_filter_tag("standards", "s")
        assert codes(engine.filtered_secondary) == ["T1"]
        assert "Excluding standard record" in caplog.text

    def test_custom_logger(self, standards, caplog) -> None:
        log = logging.getLogger("tests.engine")
        engine = FilterEngine([None], standards, logger=log)
        with caplog.at_level(logging.WARNING, logger="tests.engine"):
            engine.add_filter_tag("name", "x")
        assert engine.filtered_primary == []
        assert caplog.records[-1].name == "tests.engine"


class TestFieldConfig:
    def test_restricted_fields(self, staff) -> None:
        engine = FilterEngine(staff, fields=STAFF_FIELDS)
        assert engine.add_filter_tag("phase", "Primary") is None
        assert engine.add_filter_tag("name", "ann") is not None

    def test_blank_config_entries_are_skipped(self, staff) -> None:
        engine = FilterEngine(staff, fields=[FilterFieldConfig("", "Nameless"), FilterFieldConfig("name", "Name")])
        assert list(engine.fields) == ["name"]

    @pytest.mark.parametrize("alias, method", [("add_filter_tag", "add_criterion"), ("clear_filters", "clear_all")])
    def test_ui_aliases(self, alias, method) -> None:
        assert getattr(FilterEngine, alias) is getattr(FilterEngine, method)
