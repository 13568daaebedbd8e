"""
Curriculum Tests
================

Packaged program definitions, slug normalization and the day view.
"""

import pytest

from ancretoi.curriculum import (
    DayNotFoundError,
    ProgramDefinitionError,
    get_catalog,
    iter_day_fields,
    load_definition,
    normalize_program_slug,
    render_day,
)
from ancretoi.curriculum.definition import day_field_map, has_text_questions


@pytest.fixture
def reset7():
    definition = get_catalog().get("reset-7")
    assert definition is not None
    return definition


class TestCatalog:

    def test_slug_normalization(self):
        assert normalize_program_slug("  Reset_7 ") == "reset-7"
        assert normalize_program_slug("reset  7") == "reset-7"

    def test_lookup_is_normalized(self):
        catalog = get_catalog()
        assert "RESET_7" in catalog
        assert catalog.get("Reset 7") is catalog.get("reset-7")

    def test_unknown_program(self):
        assert get_catalog().get("inconnu") is None

    def test_reset7_has_seven_days(self, reset7):
        assert reset7.max_day == 7
        assert reset7.get_day(8) is None


class TestLoadDefinition:

    def test_missing_days_refused(self):
        with pytest.raises(ProgramDefinitionError):
            load_definition({"product": "X", "version": "1"})

    def test_unknown_field_type_refused(self):
        raw = {
            "product": "X",
            "version": "1",
            "days": [{
                "day": 1,
                "title": "Un",
                "daily_check": {"x": {"key": "x", "type": "color"}},
            }],
        }
        with pytest.raises(ProgramDefinitionError):
            load_definition(raw)


class TestDayFields:

    def test_paths_cover_daily_check_fields_and_done_flags(self, reset7):
        paths = [slot.path for slot in iter_day_fields(reset7.get_day(1))]
        assert "daily.energie" in paths
        assert "ex.breathing.duration" in paths
        assert "ex.breathing.__done" in paths
        assert "ex.journal.constat" in paths

    def test_text_questions(self, reset7):
        assert has_text_questions(reset7.get_day(1))

    def test_field_map_types(self, reset7):
        fields = day_field_map(reset7.get_day(3))
        assert fields["ex.pauses.entries"].type == "repeater"
        assert fields["daily.focus"].type == "slider"


class TestRenderDay:

    def test_header_and_navigation(self, reset7):
        view = render_day(reset7, 1, {})
        assert view["header"]["day"] == 1
        assert view["header"]["maxDay"] == 7
        assert view["navigation"] == {"previous": None, "next": 2}

        last = render_day(reset7, 7, {})
        assert last["navigation"] == {"previous": 6, "next": None}

    def test_values_are_applied(self, reset7):
        view = render_day(reset7, 1, {"daily.energie": 8, "ex.breathing.__done": True})
        energie = next(c for c in view["dailyCheck"] if c["key"] == "energie")
        assert energie["value"] == 8

        breathing = view["sections"][0]["exercises"][0]
        assert breathing["done"] is True
        assert breathing["donePath"] == "ex.breathing.__done"

    def test_slider_defaults_to_midpoint(self, reset7):
        view = render_day(reset7, 1, {})
        energie = next(c for c in view["dailyCheck"] if c["key"] == "energie")
        assert energie["value"] == 5

    def test_repeater_control_flags(self, reset7):
        values = {"ex.pauses.entries": [{"situation": "a", "respire": True}]}
        view = render_day(reset7, 3, values)
        control = next(
            f
            for s in view["sections"]
            for ex in s["exercises"]
            for f in ex["fields"]
            if f["path"] == "ex.pauses.entries"
        )
        assert control["canAdd"] is True
        # min_items is 1
        assert control["canRemove"] is False
        assert control["items"][0][0]["path"] == "ex.pauses.entries[0].situation"

    def test_unknown_day(self, reset7):
        with pytest.raises(DayNotFoundError):
            render_day(reset7, 42, {})
