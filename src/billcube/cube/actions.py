"""
Cube interaction actions.

An action a: S -> S' transforms one controller state into another:
- Grouping: change the dimension at a level, override a single branch
- Zoom: re-root at a sub-path, navigate back along the breadcrumbs
- Presentation: expand / collapse nodes (never affects cell values)
- Selection: filters, active measures, the selected raw item
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence
from enum import Enum
from abc import ABC, abstractmethod

from billcube.cube.paths import (
    BreakdownMap, NodePath, NodeState, NodeStateMap, PathLike, ROOT, as_path,
    format_path
)
from billcube.cube.schema import DataItem
from billcube.cube.view import CubeConfig, Filter


class ActionType(Enum):
    """Types of cube interactions."""
    SET_DIMENSION = "set_dimension"
    SET_BREAKDOWN = "set_breakdown"
    ZOOM_IN = "zoom_in"
    NAVIGATE = "navigate"
    TOGGLE_EXPAND = "toggle_expand"
    EXPAND_ALL = "expand_all"
    COLLAPSE_ALL = "collapse_all"
    ADD_FILTER = "add_filter"
    REMOVE_FILTER = "remove_filter"
    CLEAR_FILTERS = "clear_filters"
    SET_MEASURES = "set_measures"
    SELECT_ITEM = "select_item"


@dataclass
class CubeState:
    """
    Normalized controller state.

    Attributes:
        config: The unzoomed configuration (grouping spec, node states,
            filters, active measures). Node-state and breakdown paths are
            absolute.
        zoom_path: Absolute path of the current zoom root
        zoom_labels: Display label per zoom segment (breadcrumbs)
        selected_item: Raw item selected for drill-through
    """
    config: CubeConfig
    zoom_path: NodePath = ROOT
    zoom_labels: List[str] = field(default_factory=list)
    selected_item: Optional[DataItem] = None

    def __post_init__(self):
        self.zoom_path = as_path(self.zoom_path)
        if len(self.zoom_labels) != len(self.zoom_path):
            self.zoom_labels = [segment.key for segment in self.zoom_path]

    @property
    def zoom_depth(self) -> int:
        return len(self.zoom_path)

    def copy(self) -> "CubeState":
        return CubeState(
            config=self.config.copy(),
            zoom_path=self.zoom_path,
            zoom_labels=list(self.zoom_labels),
            selected_item=self.selected_item,
        )

    def truncate_zoom(self, depth: int) -> None:
        self.zoom_path = self.zoom_path[:depth]
        self.zoom_labels = self.zoom_labels[:depth]


@dataclass
class CubeAction(ABC):
    """
    Abstract base class for cube interactions.

    An action a: S -> S' is a partial function over controller states.
    """

    @property
    @abstractmethod
    def action_type(self) -> ActionType:
        """Return the action type."""
        pass

    @abstractmethod
    def apply(self, state: CubeState) -> Optional[CubeState]:
        """
        Apply this action to a state, returning a new state.
        Returns None if the action is not applicable. The input is never mutated.
        """
        pass

    @abstractmethod
    def describe(self) -> str:
        """Return human-readable description of the action."""
        pass

    @abstractmethod
    def is_applicable(self, state: CubeState) -> bool:
        """Check if this action can be applied to the given state."""
        pass


def _known_path(state: CubeState, path: NodePath) -> bool:
    schema = state.config.schema
    return all(schema.get_dimension(s.dimension_id) is not None for s in path)


@dataclass
class SetDimensionAtLevelAction(CubeAction):
    """
    Group level `level` (absolute depth) by another dimension.

    Deeper group_by entries are dropped, and so are breakdown overrides at
    that depth and below and node states of the regrouped nodes. A zoom
    reaching below the level is cut back to it.
    """
    dimension_id: str
    level: int

    @property
    def action_type(self) -> ActionType:
        return ActionType.SET_DIMENSION

    def is_applicable(self, state: CubeState) -> bool:
        if state.config.schema.get_dimension(self.dimension_id) is None:
            return False
        return 0 <= self.level <= len(state.config.group_by or [])

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None

        new_state = state.copy()
        config = new_state.config
        config.group_by = (config.group_by or [])[:self.level] + [self.dimension_id]
        if config.breakdown_map is not None:
            config.breakdown_map.truncate(self.level)
        if config.node_states is not None:
            config.node_states.truncate(self.level + 1)
        if new_state.zoom_depth > self.level:
            new_state.truncate_zoom(self.level)
        return new_state

    def describe(self) -> str:
        return f"Group level {self.level} by {self.dimension_id}"


@dataclass
class SetNodeBreakdownAction(CubeAction):
    """
    Break a single node down by a dimension (None = show raw items).

    Overrides and node states below the node are dropped.
    """
    path: NodePath
    dimension_id: Optional[str]

    def __post_init__(self):
        self.path = as_path(self.path)

    @property
    def action_type(self) -> ActionType:
        return ActionType.SET_BREAKDOWN

    def is_applicable(self, state: CubeState) -> bool:
        schema = state.config.schema
        if self.dimension_id is not None and schema.get_dimension(self.dimension_id) is None:
            return False
        return _known_path(state, self.path)

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None

        new_state = state.copy()
        config = new_state.config
        if config.breakdown_map is None:
            config.breakdown_map = BreakdownMap()
        config.breakdown_map.set(self.path, self.dimension_id)
        config.breakdown_map.prune_descendants(self.path)
        if config.node_states is not None:
            config.node_states.prune_descendants(self.path)

        depth = len(self.path)
        if new_state.zoom_depth > depth and new_state.zoom_path[:depth] == self.path:
            new_state.truncate_zoom(depth)
        return new_state

    def describe(self) -> str:
        target = self.dimension_id or "raw items"
        return f"Break down '{format_path(self.path) or 'root'}' by {target}"


@dataclass
class ZoomInAction(CubeAction):
    """Re-root the view at an absolute node path."""
    path: NodePath
    labels: Optional[List[str]] = None

    def __post_init__(self):
        self.path = as_path(self.path)

    @property
    def action_type(self) -> ActionType:
        return ActionType.ZOOM_IN

    def is_applicable(self, state: CubeState) -> bool:
        return bool(self.path) and _known_path(state, self.path)

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None

        new_state = state.copy()
        labels = list(self.labels) if self.labels is not None else []
        if len(labels) != len(self.path):
            # Keep breadcrumb labels of the shared prefix, keys for the rest
            labels = [
                state.zoom_labels[i]
                if i < state.zoom_depth and state.zoom_path[i] == segment
                else segment.key
                for i, segment in enumerate(self.path)
            ]
        new_state.zoom_path = self.path
        new_state.zoom_labels = labels
        return new_state

    def describe(self) -> str:
        return f"Zoom into {format_path(self.path)}"


@dataclass
class NavigateToLevelAction(CubeAction):
    """Keep the first `level` zoom segments (0 = back to the root)."""
    level: int

    @property
    def action_type(self) -> ActionType:
        return ActionType.NAVIGATE

    def is_applicable(self, state: CubeState) -> bool:
        return 0 <= self.level <= state.zoom_depth

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None
        new_state = state.copy()
        new_state.truncate_zoom(self.level)
        return new_state

    def describe(self) -> str:
        if self.level == 0:
            return "Navigate to root"
        return f"Navigate to level {self.level}"


@dataclass
class ToggleExpandAction(CubeAction):
    """Flip the expanded flag of one node."""
    path: NodePath

    def __post_init__(self):
        self.path = as_path(self.path)

    @property
    def action_type(self) -> ActionType:
        return ActionType.TOGGLE_EXPAND

    def is_applicable(self, state: CubeState) -> bool:
        return bool(self.path)

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None
        new_state = state.copy()
        config = new_state.config
        if config.node_states is None:
            config.node_states = NodeStateMap()
        expanded = config.node_states.is_expanded(self.path)
        config.node_states.set(self.path, NodeState(is_expanded=not expanded))
        return new_state

    def describe(self) -> str:
        return f"Toggle {format_path(self.path)}"


@dataclass
class ExpandAllAction(CubeAction):
    """Mark the given branch paths as expanded."""
    paths: List[NodePath]

    def __post_init__(self):
        self.paths = [as_path(p) for p in self.paths]

    @property
    def action_type(self) -> ActionType:
        return ActionType.EXPAND_ALL

    def is_applicable(self, state: CubeState) -> bool:
        return True

    def apply(self, state: CubeState) -> Optional[CubeState]:
        new_state = state.copy()
        config = new_state.config
        if config.node_states is None:
            config.node_states = NodeStateMap()
        for path in self.paths:
            config.node_states.set(path, NodeState(is_expanded=True))
        return new_state

    def describe(self) -> str:
        return f"Expand {len(self.paths)} nodes"


@dataclass
class CollapseAllAction(CubeAction):
    """Forget every node state."""

    @property
    def action_type(self) -> ActionType:
        return ActionType.COLLAPSE_ALL

    def is_applicable(self, state: CubeState) -> bool:
        return True

    def apply(self, state: CubeState) -> Optional[CubeState]:
        new_state = state.copy()
        new_state.config.node_states = NodeStateMap()
        return new_state

    def describe(self) -> str:
        return "Collapse all"


@dataclass
class AddFilterAction(CubeAction):
    """
    Add a filter, replacing any existing filter on the same dimension.
    """
    filter: Filter

    @property
    def action_type(self) -> ActionType:
        return ActionType.ADD_FILTER

    def is_applicable(self, state: CubeState) -> bool:
        return state.config.schema.get_dimension(self.filter.dimension_id) is not None

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None
        new_state = state.copy()
        config = new_state.config
        config.filters = [
            f for f in config.filters if f.dimension_id != self.filter.dimension_id
        ] + [self.filter]
        return new_state

    def describe(self) -> str:
        return f"Filter {self.filter.describe()}"


@dataclass
class RemoveFilterAction(CubeAction):
    """Remove the filters on one dimension."""
    dimension_id: str

    @property
    def action_type(self) -> ActionType:
        return ActionType.REMOVE_FILTER

    def is_applicable(self, state: CubeState) -> bool:
        return any(f.dimension_id == self.dimension_id for f in state.config.filters)

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None
        new_state = state.copy()
        new_state.config.filters = [
            f for f in new_state.config.filters if f.dimension_id != self.dimension_id
        ]
        return new_state

    def describe(self) -> str:
        return f"Remove filter on {self.dimension_id}"


@dataclass
class ClearFiltersAction(CubeAction):
    """Remove every filter."""

    @property
    def action_type(self) -> ActionType:
        return ActionType.CLEAR_FILTERS

    def is_applicable(self, state: CubeState) -> bool:
        return bool(state.config.filters)

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None
        new_state = state.copy()
        new_state.config.filters = []
        return new_state

    def describe(self) -> str:
        return "Clear filters"


@dataclass
class SetActiveMeasuresAction(CubeAction):
    """Restrict computation to a measure subset (None = all)."""
    measure_ids: Optional[Sequence[str]]

    @property
    def action_type(self) -> ActionType:
        return ActionType.SET_MEASURES

    def is_applicable(self, state: CubeState) -> bool:
        if self.measure_ids is None:
            return True
        schema = state.config.schema
        return all(schema.get_measure(m) is not None for m in self.measure_ids)

    def apply(self, state: CubeState) -> Optional[CubeState]:
        if not self.is_applicable(state):
            return None
        new_state = state.copy()
        new_state.config.active_measures = (
            list(self.measure_ids) if self.measure_ids is not None else None
        )
        return new_state

    def describe(self) -> str:
        if self.measure_ids is None:
            return "Show all measures"
        return f"Show measures {', '.join(self.measure_ids)}"


@dataclass
class SelectItemAction(CubeAction):
    """Select a raw item for drill-through (None clears the selection)."""
    item: Optional[Any]

    @property
    def action_type(self) -> ActionType:
        return ActionType.SELECT_ITEM

    def is_applicable(self, state: CubeState) -> bool:
        return True

    def apply(self, state: CubeState) -> Optional[CubeState]:
        new_state = state.copy()
        new_state.selected_item = self.item
        return new_state

    def describe(self) -> str:
        return "Clear selection" if self.item is None else "Select item"
