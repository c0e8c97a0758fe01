"""
Cube module: Data structures and engine for multidimensional data cubes.
"""

from billcube.cube.schema import (
    CubeSchema, DimensionDescriptor, MeasureDescriptor, AggregateFunction, DataItem
)
from billcube.cube.paths import (
    PathSegment, PathTrie, BreakdownMap, NodeState, NodeStateMap, ROOT,
    format_path, parse_path
)
from billcube.cube.view import CubeConfig, Filter, FilterOperator, apply_filters
from billcube.cube.actions import (
    CubeAction, CubeState, ActionType,
    SetDimensionAtLevelAction, SetNodeBreakdownAction, ZoomInAction,
    NavigateToLevelAction, ToggleExpandAction, ExpandAllAction, CollapseAllAction,
    AddFilterAction, RemoveFilterAction, ClearFiltersAction,
    SetActiveMeasuresAction, SelectItemAction
)
from billcube.cube.engine import (
    CubeEngine, CubeCalculationOptions, CubeResult, CubeGroup, CubeCell,
    calculate_cube, get_cell_value, get_formatted_cell_value, find_groups,
    flatten_groups, find_group_by_path
)

__all__ = [
    "CubeSchema", "DimensionDescriptor", "MeasureDescriptor", "AggregateFunction", "DataItem",
    "PathSegment", "PathTrie", "BreakdownMap", "NodeState", "NodeStateMap", "ROOT",
    "format_path", "parse_path",
    "CubeConfig", "Filter", "FilterOperator", "apply_filters",
    "CubeAction", "CubeState", "ActionType",
    "SetDimensionAtLevelAction", "SetNodeBreakdownAction", "ZoomInAction",
    "NavigateToLevelAction", "ToggleExpandAction", "ExpandAllAction", "CollapseAllAction",
    "AddFilterAction", "RemoveFilterAction", "ClearFiltersAction",
    "SetActiveMeasuresAction", "SelectItemAction",
    "CubeEngine", "CubeCalculationOptions", "CubeResult", "CubeGroup", "CubeCell",
    "calculate_cube", "get_cell_value", "get_formatted_cell_value", "find_groups",
    "flatten_groups", "find_group_by_path",
]
