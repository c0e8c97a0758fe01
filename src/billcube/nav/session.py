"""
Cube state controller for interactive exploration.

A session holds the unzoomed configuration, the zoom path and the node
states, and keeps the current CubeResult in sync with them. Every
interaction is a CubeAction: it is applied to a copy of the state, the cube
is recomputed on that copy, and only a successful recomputation is
committed. A failed action leaves the session untouched.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence
from datetime import datetime
import logging
import uuid

from billcube.cube.actions import (
    ActionType, AddFilterAction, ClearFiltersAction, CollapseAllAction,
    CubeAction, CubeState, ExpandAllAction, NavigateToLevelAction,
    RemoveFilterAction, SelectItemAction, SetActiveMeasuresAction,
    SetDimensionAtLevelAction, SetNodeBreakdownAction, ToggleExpandAction,
    ZoomInAction
)
from billcube.cube.engine import (
    CubeCalculationOptions, CubeGroup, CubeResult, calculate_cube, find_groups
)
from billcube.cube.paths import NodePath, PathLike, as_path, format_path, parse_path
from billcube.cube.schema import DataItem
from billcube.cube.view import CubeConfig, Filter, FilterOperator
from billcube.serialization.codec import deserialize_cube_config, serialize_cube_state
from billcube.serialization.registry import FunctionRegistry

logger = logging.getLogger(__name__)

# Actions that never change cell values; the current cube is kept as is
PRESENTATIONAL_ACTIONS = {
    ActionType.TOGGLE_EXPAND, ActionType.EXPAND_ALL, ActionType.COLLAPSE_ALL,
    ActionType.SELECT_ITEM,
}


@dataclass
class SessionStep:
    """
    One committed interaction.

    Attributes:
        action: The action that was applied
        zoom_path: Zoom path after the action
        total_items: Filtered item count after the action
        timestamp: When the action was committed
    """
    action: CubeAction
    zoom_path: str
    total_items: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize step for logging."""
        return {
            "action": self.action.action_type.value,
            "description": self.action.describe(),
            "zoom_path": self.zoom_path,
            "total_items": self.total_items,
            "timestamp": self.timestamp.isoformat(),
        }


class CubeSession:
    """
    Stateful wrapper combining the cube engine, node state and interactions.

    Renderer surface: `cube`, `display_groups`, `on_dimension_change`,
    `on_zoom_in`, `select_item`.
    """

    def __init__(self, config: CubeConfig,
                 options: Optional[CubeCalculationOptions] = None,
                 session_id: Optional[str] = None):
        """
        Args:
            config: Initial (unzoomed) configuration; copied, never mutated
            options: Engine options; zoom_path is managed by the session

        Raises:
            CubeConfigurationError: the initial configuration is invalid
        """
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.options = replace(options or CubeCalculationOptions(), zoom_path=())
        self.history: List[SessionStep] = []
        self.start_time = datetime.now()

        state = CubeState(config=config.copy())
        self._cube = self._compute(state)
        self._state = state
        logger.info(
            f"[{self.session_id}] Session started: {self._cube.total_items} items, "
            f"{config.describe()}"
        )

    # --- read-only views -----------------------------------------------------

    @property
    def state(self) -> CubeState:
        return self._state

    @property
    def config(self) -> CubeConfig:
        """The unzoomed configuration."""
        return self._state.config

    @property
    def cube(self) -> CubeResult:
        """Current result (zoomed when a zoom path is set)."""
        return self._cube

    @property
    def zoom_path(self) -> NodePath:
        return self._state.zoom_path

    @property
    def breadcrumbs(self) -> List[str]:
        """Zoom labels from the root down; index i is level i + 1."""
        return list(self._state.zoom_labels)

    @property
    def filters(self) -> List[Filter]:
        return list(self._state.config.filters)

    @property
    def selected_item(self) -> Optional[DataItem]:
        return self._state.selected_item

    @property
    def step_count(self) -> int:
        return len(self.history)

    # --- dispatch --------------------------------------------------------------

    def _compute(self, state: CubeState) -> CubeResult:
        options = replace(self.options, zoom_path=state.zoom_path)
        return calculate_cube(state.config, options)

    def dispatch(self, action: CubeAction) -> bool:
        """
        Apply an action and recompute.

        Returns:
            False if the action is not applicable (state unchanged)

        Raises:
            CubeError: recomputation failed; the state is unchanged
        """
        new_state = action.apply(self._state)
        if new_state is None:
            logger.warning(f"[{self.session_id}] Not applicable: {action.describe()}")
            return False

        if action.action_type in PRESENTATIONAL_ACTIONS:
            cube = self._cube
        else:
            cube = self._compute(new_state)

        self._state = new_state
        self._cube = cube
        self.history.append(SessionStep(
            action=action,
            zoom_path=format_path(new_state.zoom_path),
            total_items=cube.total_items,
        ))
        logger.info(f"[{self.session_id}] {action.describe()}")
        return True

    # --- grouping ----------------------------------------------------------------

    def set_dimension_at_level(self, dimension_id: str, level: int) -> bool:
        """Group absolute level `level` by dimension_id, dropping deeper choices."""
        return self.dispatch(SetDimensionAtLevelAction(dimension_id, level))

    def set_node_breakdown(self, path: PathLike, dimension_id: Optional[str]) -> bool:
        """Break one node down by a dimension; None shows its raw items."""
        return self.dispatch(SetNodeBreakdownAction(as_path(path), dimension_id))

    def on_dimension_change(self, dimension_id: str, level: int) -> bool:
        """Renderer callback; `level` is relative to the current zoom root."""
        return self.set_dimension_at_level(dimension_id, self._state.zoom_depth + level)

    # --- zoom ------------------------------------------------------------------

    def zoom_in(self, path: PathLike, labels: Optional[Sequence[str]] = None) -> bool:
        """Re-root the view at an absolute path."""
        return self.dispatch(ZoomInAction(
            as_path(path), list(labels) if labels is not None else None
        ))

    def on_zoom_in(self, group: CubeGroup, full_path: Optional[PathLike] = None) -> bool:
        """Renderer callback: zoom into a group of the current cube."""
        path = as_path(full_path if full_path is not None else group.path)
        labels = None
        if path[:-1] == self._state.zoom_path:
            labels = self.breadcrumbs + [group.dimension_label]
        return self.zoom_in(path, labels)

    def navigate_to_level(self, level: int) -> bool:
        """Keep the first `level` zoom segments; 0 is the root."""
        return self.dispatch(NavigateToLevelAction(level))

    def reset_zoom(self) -> bool:
        if not self._state.zoom_path:
            return False
        return self.navigate_to_level(0)

    # --- presentation ------------------------------------------------------------

    def toggle_expand(self, path: PathLike) -> bool:
        return self.dispatch(ToggleExpandAction(as_path(path)))

    def expand_all(self) -> bool:
        """Expand every branch group of the current cube."""
        branches = find_groups(self._cube.groups, lambda g: not g.is_leaf)
        return self.dispatch(ExpandAllAction([parse_path(g.path) for g in branches]))

    def collapse_all(self) -> bool:
        return self.dispatch(CollapseAllAction())

    def is_expanded(self, path: PathLike) -> bool:
        node_states = self._state.config.node_states
        return node_states is not None and node_states.is_expanded(path)

    def visible_groups(self) -> List[CubeGroup]:
        """Groups shown by a tree renderer: top level plus children of expanded nodes."""
        visible = []

        def walk(groups: Sequence[CubeGroup]) -> None:
            for group in groups:
                visible.append(group)
                if group.sub_groups and self.is_expanded(group.path):
                    walk(group.sub_groups)

        walk(self.display_groups)
        return visible

    @property
    def display_groups(self) -> List[CubeGroup]:
        """
        Groups to render at the current root.

        Zoomed into a leaf, the cube has no groups; a single leaf group
        standing for the zoom node is returned instead.
        """
        cube = self._cube
        if cube.groups or not self._state.zoom_path:
            return cube.groups

        last = self._state.zoom_path[-1]
        dimension = self.config.schema.require_dimension(last.dimension_id)
        raw_value = dimension.get_value(cube.items[0]) if cube.items else last.key
        return [CubeGroup(
            dimension_id=last.dimension_id,
            dimension_key=last.key,
            dimension_value=raw_value,
            dimension_label=self._state.zoom_labels[-1],
            item_count=cube.total_items,
            cells=list(cube.grand_totals),
            path=cube.root_path,
            depth=0,
            items=cube.items,
        )]

    # --- filters, measures, selection ---------------------------------------------

    def add_filter(self, dimension_id: str, operator: Any = FilterOperator.EQUALS,
                   value: Any = None) -> bool:
        """Add a filter, replacing any filter on the same dimension."""
        return self.dispatch(AddFilterAction(Filter(dimension_id, operator, value)))

    def remove_filter(self, dimension_id: str) -> bool:
        return self.dispatch(RemoveFilterAction(dimension_id))

    def clear_filters(self) -> bool:
        return self.dispatch(ClearFiltersAction())

    def set_active_measures(self, measure_ids: Optional[Sequence[str]]) -> bool:
        return self.dispatch(SetActiveMeasuresAction(measure_ids))

    def select_item(self, item: Optional[DataItem]) -> bool:
        return self.dispatch(SelectItemAction(item))

    # --- persistence -------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize session history for logging."""
        return {
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat(),
            "step_count": self.step_count,
            "zoom_path": format_path(self._state.zoom_path),
            "summary": self._cube.get_summary(),
            "steps": [s.to_dict() for s in self.history],
        }

    def save(self, filepath: str, registry: Optional[FunctionRegistry] = None,
             name: Optional[str] = None, include_data: bool = True) -> None:
        """
        Save the unzoomed configuration (node states and breakdowns included)
        as serialized cube JSON.
        """
        serialized = serialize_cube_state(
            self.config, registry, name=name or f"Session {self.session_id}",
            include_data=include_data
        )
        with open(filepath, 'w') as f:
            f.write(serialized.to_json())
        logger.info(f"[{self.session_id}] Saved to {filepath}")

    @classmethod
    def load(cls, filepath: str, data: Optional[Sequence[DataItem]] = None,
             registry: Optional[FunctionRegistry] = None,
             options: Optional[CubeCalculationOptions] = None) -> "CubeSession":
        """Open a session from serialized cube JSON."""
        with open(filepath, 'r') as f:
            text = f.read()
        config = deserialize_cube_config(text, data=data, registry=registry)
        return cls(config, options=options)
