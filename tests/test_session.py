"""
Unit tests for the cube session controller.
"""

import json

import pytest

from billcube.cube.actions import (
    ActionType, CubeState, NavigateToLevelAction, SetDimensionAtLevelAction,
    SetNodeBreakdownAction, ToggleExpandAction, ZoomInAction
)
from billcube.cube.engine import CubeCalculationOptions, find_group_by_path
from billcube.cube.paths import ROOT, PathSegment, format_path, parse_path
from billcube.cube.view import CubeConfig
from billcube.errors import CubeConfigurationError
from billcube.nav.session import CubeSession


@pytest.fixture
def session(billing_config):
    """Session over the project > contractor billing cube."""
    return CubeSession(billing_config, session_id="test")


class TestCubeActions:
    def test_apply_never_mutates_input(self, billing_config):
        state = CubeState(config=billing_config)
        new_state = SetDimensionAtLevelAction("date", 0).apply(state)

        assert new_state.config.group_by == ["date"]
        assert state.config.group_by == ["project", "contractor"]

    def test_not_applicable_returns_none(self, billing_config):
        state = CubeState(config=billing_config)
        assert SetDimensionAtLevelAction("bogus", 0).apply(state) is None
        assert SetDimensionAtLevelAction("date", 3).apply(state) is None
        assert NavigateToLevelAction(1).apply(state) is None
        assert ZoomInAction(ROOT).apply(state) is None
        assert SetNodeBreakdownAction("region:North", None).apply(state) is None

    def test_zoom_labels_default_to_keys(self, billing_config):
        state = ZoomInAction("project:Alpha|contractor:John").apply(CubeState(config=billing_config))
        assert state.zoom_labels == ["Alpha", "John"]

    def test_set_node_breakdown_prunes_below(self, billing_config):
        state = CubeState(config=billing_config)
        state = SetNodeBreakdownAction("project:Alpha", "date").apply(state)
        state = SetNodeBreakdownAction("project:Alpha|date:2024-01-15", "contractor").apply(state)
        state = ToggleExpandAction("project:Alpha|date:2024-01-15").apply(state)
        state = SetNodeBreakdownAction("project:Alpha", None).apply(state)

        assert state.config.breakdown_map.to_dict() == {"project:Alpha": None}
        assert len(state.config.node_states) == 0

    def test_describe(self):
        assert SetDimensionAtLevelAction("date", 1).describe() == "Group level 1 by date"
        assert NavigateToLevelAction(0).describe() == "Navigate to root"
        assert ZoomInAction("project:Alpha").action_type == ActionType.ZOOM_IN


class TestSessionGrouping:
    def test_initial_cube(self, session):
        assert session.cube.total_items == 6
        assert session.zoom_path == ROOT
        assert [g.dimension_key for g in session.display_groups] == ["Alpha", "Beta", "Gamma"]

    def test_set_dimension_at_level(self, session, billing_config):
        assert session.set_dimension_at_level("date", 1)

        alpha = session.cube.groups[0]
        assert session.config.group_by == ["project", "date"]
        assert alpha.child_dimension_id == "date"
        # The caller's config is never touched
        assert billing_config.group_by == ["project", "contractor"]

    def test_set_dimension_drops_deeper_state(self, session):
        session.set_node_breakdown("project:Alpha", "date")
        session.toggle_expand("project:Alpha")
        session.set_dimension_at_level("contractor", 0)

        assert session.config.group_by == ["contractor"]
        assert len(session.config.breakdown_map) == 0
        assert len(session.config.node_states) == 0
        assert [g.dimension_key for g in session.cube.groups] == ["John", "Jane", "Bob"]

    def test_set_dimension_cuts_zoom(self, session):
        session.zoom_in("project:Alpha|contractor:John")
        session.set_dimension_at_level("date", 1)

        assert format_path(session.zoom_path) == "project:Alpha"
        assert [g.dimension_label for g in session.display_groups] == ["1/15/24", "1/16/24"]

    def test_on_dimension_change_is_relative_to_zoom(self, session):
        session.zoom_in("project:Alpha")
        assert session.on_dimension_change("date", 0)

        assert session.config.group_by == ["project", "date"]
        assert format_path(session.zoom_path) == "project:Alpha"

    def test_set_node_breakdown(self, session):
        assert session.set_node_breakdown("project:Beta", "date")
        beta = find_group_by_path(session.cube.groups, "project:Beta")
        alpha = find_group_by_path(session.cube.groups, "project:Alpha")

        assert [g.dimension_key for g in beta.sub_groups] == ["2024-01-16", "2024-01-17"]
        assert alpha.child_dimension_id == "contractor"

        session.set_node_breakdown("project:Alpha", None)
        assert find_group_by_path(session.cube.groups, "project:Alpha").is_leaf

    def test_unknown_dimension_not_applied(self, session):
        assert not session.set_dimension_at_level("bogus", 0)
        assert session.step_count == 0


class TestSessionZoom:
    def test_zoom_reversibility(self, session):
        before = session.cube
        session.zoom_in("project:Alpha")

        assert session.cube.total_items == 3
        assert session.cube.root_path == "project:Alpha"
        assert session.navigate_to_level(0)
        assert session.cube == before

    def test_on_zoom_in_builds_breadcrumbs(self, session):
        session.on_zoom_in(session.display_groups[0])
        assert session.breadcrumbs == ["Alpha"]

        session.on_zoom_in(session.display_groups[0])
        assert session.breadcrumbs == ["Alpha", "John"]
        assert format_path(session.zoom_path) == "project:Alpha|contractor:John"

    def test_display_groups_for_leaf_zoom(self, session):
        session.zoom_in("project:Alpha|contractor:John", labels=["Project Alpha", "John D."])

        assert session.cube.groups == []
        groups = session.display_groups
        assert len(groups) == 1
        assert groups[0].is_leaf
        assert groups[0].dimension_label == "John D."
        assert groups[0].item_count == 2
        assert groups[0].path == "project:Alpha|contractor:John"
        assert groups[0].get_cell("hours").value == pytest.approx(7.0)

    def test_navigate_to_level(self, session):
        session.zoom_in("project:Alpha|contractor:John")
        assert session.navigate_to_level(1)
        assert format_path(session.zoom_path) == "project:Alpha"
        assert session.breadcrumbs == ["Alpha"]

        assert not session.navigate_to_level(5)

    def test_reset_zoom(self, session):
        assert not session.reset_zoom()
        session.zoom_in("project:Beta")
        assert session.reset_zoom()
        assert session.zoom_path == ROOT


class TestSeparatorsInKeys:
    @pytest.fixture
    def session(self, registry):
        """Client and task keys that contain the path separators."""
        config = CubeConfig(
            data=[
                {"client": "ACME | Phase 2", "task": "B:x", "hours": 2},
                {"client": "ACME | Phase 2", "task": "C", "hours": 3},
                {"client": "ACME|B:x", "task": "B:x", "hours": 1},
            ],
            dimensions=[
                registry.dimension("client", "Client", "client"),
                registry.dimension("task", "Task", "task"),
            ],
            measures=[registry.measure("hours", "Hours", "hours", "sum")],
            group_by=["client", "task"],
        )
        return CubeSession(config)

    def test_expand_all(self, session):
        assert session.expand_all()

        assert all(session.is_expanded(g.path) for g in session.display_groups)
        assert len(session.visible_groups()) == 5

    def test_on_zoom_in(self, session):
        client = session.display_groups[1]
        assert session.on_zoom_in(client)

        assert session.zoom_path == (PathSegment("client", "ACME|B:x"),)
        assert session.breadcrumbs == ["ACME|B:x"]
        assert session.cube.total_items == 1

        assert session.on_zoom_in(session.display_groups[0])
        assert session.zoom_path[-1] == PathSegment("task", "B:x")

    def test_find_group_by_path(self, session):
        path = (PathSegment("client", "ACME | Phase 2"), PathSegment("task", "B:x"))
        group = find_group_by_path(session.cube.groups, path)
        assert group.cells[0].value == 2.0
        assert find_group_by_path(session.cube.groups, "client:ACME") is None


class TestSessionPresentation:
    def test_toggle_keeps_cube(self, session):
        before = session.cube
        assert session.toggle_expand("project:Alpha")

        assert session.cube is before
        assert session.is_expanded("project:Alpha")
        session.toggle_expand("project:Alpha")
        assert not session.is_expanded("project:Alpha")

    def test_expand_and_collapse_all(self, session):
        assert len(session.visible_groups()) == 3
        session.expand_all()

        assert all(session.is_expanded(p) for p in ("project:Alpha", "project:Beta", "project:Gamma"))
        assert len(session.visible_groups()) == 8

        session.collapse_all()
        assert len(session.visible_groups()) == 3

    def test_node_state_does_not_change_cells(self, billing_config):
        collapsed = CubeSession(billing_config)
        expanded = CubeSession(billing_config)
        expanded.expand_all()
        expanded.set_active_measures(None)

        assert expanded.cube == collapsed.cube

    def test_select_item(self, session):
        before = session.cube
        item = session.config.data[0]
        session.select_item(item)

        assert session.selected_item is item
        assert session.cube is before
        session.select_item(None)
        assert session.selected_item is None


class TestSessionFilters:
    def test_add_and_replace_filter(self, session):
        session.add_filter("project", "oneOf", ["Alpha", "Beta"])
        assert session.cube.total_items == 5

        session.add_filter("project", "equals", "Alpha")
        assert len(session.filters) == 1
        assert session.cube.total_items == 3

    def test_remove_and_clear(self, session):
        assert not session.clear_filters()
        session.add_filter("contractor", "equals", "Bob")
        assert session.remove_filter("contractor")
        assert not session.remove_filter("contractor")
        assert session.cube.total_items == 6

        session.add_filter("contractor", "equals", "Bob")
        assert session.clear_filters()
        assert session.filters == []

    def test_failed_recompute_leaves_state(self, session):
        before = session.cube
        with pytest.raises(CubeConfigurationError):
            session.add_filter("project", "oneOf", "Alpha")

        assert session.filters == []
        assert session.cube is before
        assert session.step_count == 0

    def test_active_measures(self, session):
        assert session.set_active_measures(["billing"])
        assert [c.measure_id for c in session.cube.grand_totals] == ["billing"]
        assert not session.set_active_measures(["bogus"])


class TestSessionPersistence:
    def test_history(self, session):
        session.zoom_in("project:Alpha")
        session.toggle_expand("project:Alpha|contractor:John")
        data = session.to_dict()

        assert data["session_id"] == "test"
        assert data["step_count"] == 2
        assert data["zoom_path"] == "project:Alpha"
        assert [s["action"] for s in data["steps"]] == ["zoom_in", "toggle_expand"]
        json.dumps(data)

    def test_save_and_load(self, session, registry, tmp_path):
        session.set_node_breakdown("project:Beta", "date")
        session.expand_all()
        filepath = tmp_path / "cube.json"
        session.save(str(filepath), registry, name="Billing")

        saved = json.loads(filepath.read_text())
        assert saved["metadata"]["name"] == "Billing"
        assert ["project:Beta", "date"] in saved["breakdownMap"]

        reopened = CubeSession.load(str(filepath), registry=registry)
        assert reopened.cube == session.cube
        assert reopened.is_expanded("project:Beta")

    def test_load_with_options(self, session, registry, tmp_path):
        filepath = tmp_path / "cube.json"
        session.save(str(filepath), registry, include_data=False)

        reopened = CubeSession.load(
            str(filepath), data=session.config.data, registry=registry,
            options=CubeCalculationOptions(max_depth=1)
        )
        assert all(g.is_leaf for g in reopened.cube.groups)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
