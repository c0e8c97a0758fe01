"""
Cube configuration and filter evaluation.

A cube configuration C = <data, S, φ, G, A> specifies:
- data: the full, unfiltered record set
- S: the dimension/measure catalog
- φ: selection predicates (filters), combined with AND
- G: the grouping spec - a uniform group_by order and/or a sparse breakdown map
- A: the active measures
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING
from enum import Enum

from billcube.cube.paths import (
    BreakdownMap, NodePath, NodeState, NodeStateMap, PathLike, PathTrie, ROOT,
    as_path
)
from billcube.cube.schema import (
    CubeSchema, DataItem, DimensionDescriptor, MeasureDescriptor, is_numeric
)
from billcube.errors import CubeConfigurationError, CubeErrorCode

if TYPE_CHECKING:
    from billcube.serialization.types import DataField


class FilterOperator(Enum):
    """Supported filter operators."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    ONE_OF = "oneOf"
    IN = "in"
    NOT_IN = "notIn"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"

    @property
    def takes_list(self) -> bool:
        return self in (FilterOperator.ONE_OF, FilterOperator.IN, FilterOperator.NOT_IN)


@dataclass
class Filter:
    """A selection predicate on a dimension's raw (pre-key) value."""
    dimension_id: str
    operator: FilterOperator
    value: Any

    def __post_init__(self):
        if not isinstance(self.operator, FilterOperator):
            try:
                self.operator = FilterOperator(self.operator)
            except ValueError:
                raise CubeConfigurationError(
                    f"Unknown filter operator '{self.operator}' on dimension "
                    f"'{self.dimension_id}'",
                    field="filters", value=self.operator,
                    code=CubeErrorCode.INVALID_FILTER
                ) from None
        if self.operator.takes_list and isinstance(self.value, (tuple, set, frozenset)):
            self.value = list(self.value)

    def matches(self, value: Any) -> bool:
        return evaluate_filter(value, self.operator, self.value)

    def describe(self) -> str:
        return f"{self.dimension_id} {self.operator.value} {self.value!r}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimensionId": self.dimension_id,
            "operator": self.operator.value,
            "value": self.value
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Filter":
        return cls(
            dimension_id=data["dimensionId"],
            operator=data["operator"],
            value=data.get("value")
        )


def evaluate_filter(value: Any, operator: FilterOperator, filter_value: Any) -> bool:
    """Evaluate a single filter condition against a raw dimension value."""
    if operator == FilterOperator.EQUALS:
        return value == filter_value
    elif operator == FilterOperator.NOT_EQUALS:
        return value != filter_value
    elif operator in (FilterOperator.ONE_OF, FilterOperator.IN):
        return isinstance(filter_value, list) and value in filter_value
    elif operator == FilterOperator.NOT_IN:
        return isinstance(filter_value, list) and value not in filter_value
    elif operator == FilterOperator.GREATER_THAN:
        return is_numeric(value) and is_numeric(filter_value) and value > filter_value
    elif operator == FilterOperator.LESS_THAN:
        return is_numeric(value) and is_numeric(filter_value) and value < filter_value
    elif operator == FilterOperator.GREATER_THAN_OR_EQUAL:
        return is_numeric(value) and is_numeric(filter_value) and value >= filter_value
    elif operator == FilterOperator.LESS_THAN_OR_EQUAL:
        return is_numeric(value) and is_numeric(filter_value) and value <= filter_value
    elif operator == FilterOperator.CONTAINS:
        return isinstance(value, str) and isinstance(filter_value, str) and filter_value in value
    elif operator == FilterOperator.STARTS_WITH:
        return isinstance(value, str) and isinstance(filter_value, str) and value.startswith(filter_value)
    elif operator == FilterOperator.ENDS_WITH:
        return isinstance(value, str) and isinstance(filter_value, str) and value.endswith(filter_value)
    raise CubeConfigurationError(
        f"Unsupported filter operator '{operator}'",
        field="filters", value=str(operator), code=CubeErrorCode.INVALID_FILTER
    )


def apply_filters(items: Sequence[DataItem],
                  filters: Sequence[Filter],
                  dimensions: Sequence[DimensionDescriptor]) -> List[DataItem]:
    """
    Keep the items passing every filter (logical AND).

    Raises:
        CubeConfigurationError: a filter names an unknown dimension
    """
    if not filters:
        return list(items)

    by_id = {d.id: d for d in dimensions}
    resolved = []
    for i, f in enumerate(filters):
        dim = by_id.get(f.dimension_id)
        if dim is None:
            raise CubeConfigurationError(
                f"Filter on unknown dimension '{f.dimension_id}'",
                field=f"filters[{i}]", value=f.dimension_id,
                code=CubeErrorCode.UNKNOWN_DIMENSION
            )
        resolved.append((dim, f))

    return [
        item for item in items
        if all(f.matches(dim.get_value(item)) for dim, f in resolved)
    ]


def filter_items_by_path(items: Sequence[DataItem], path: NodePath,
                         dimensions: Sequence[DimensionDescriptor]) -> List[DataItem]:
    """Keep the items whose dimension keys match every segment of path."""
    if not path:
        return list(items)
    by_id = {d.id: d for d in dimensions}
    resolved = []
    for segment in path:
        dim = by_id.get(segment.dimension_id)
        if dim is None:
            raise CubeConfigurationError(
                f"Path references unknown dimension '{segment.dimension_id}'",
                field="path", value=segment.dimension_id,
                code=CubeErrorCode.UNKNOWN_DIMENSION
            )
        resolved.append((dim, segment.key))
    return [
        item for item in items
        if all(dim.key_for_item(item) == key for dim, key in resolved)
    ]


@dataclass
class CubeConfig:
    """
    The complete specification of one cube computation.

    Attributes:
        data: Full, unfiltered record set (never mutated by the engine)
        dimensions: Dimension catalog
        measures: Measure catalog
        active_measures: Measure ids to compute (None = all, catalog order)
        filters: Selection predicates, combined with AND
        group_by: Uniform dimension order applied by depth
        breakdown_map: Sparse per-branch override of the next dimension
        node_states: Expand/collapse state per path (presentational)
        root_path: Absolute path of this config's root when it was zoomed
        data_schema: Field schema carried through a serialization round trip
    """
    data: List[DataItem]
    dimensions: List[DimensionDescriptor]
    measures: List[MeasureDescriptor]
    active_measures: Optional[List[str]] = None
    filters: List[Filter] = field(default_factory=list)
    group_by: Optional[List[str]] = None
    breakdown_map: Optional[BreakdownMap] = None
    node_states: Optional[NodeStateMap] = None
    root_path: NodePath = ROOT
    data_schema: Optional[List["DataField"]] = None

    def __post_init__(self):
        self.filters = [
            f if isinstance(f, Filter) else Filter.from_dict(f)
            for f in (self.filters or [])
        ]
        if self.group_by is not None:
            self.group_by = list(self.group_by)
        if self.breakdown_map is not None and not isinstance(self.breakdown_map, BreakdownMap):
            self.breakdown_map = _to_breakdown_map(self.breakdown_map)
        if self.node_states is not None and not isinstance(self.node_states, NodeStateMap):
            self.node_states = _to_node_state_map(self.node_states)
        self.root_path = as_path(self.root_path)

    @property
    def schema(self) -> CubeSchema:
        return CubeSchema(dimensions=self.dimensions, measures=self.measures)

    def resolve_active_measures(self) -> List[MeasureDescriptor]:
        """Active measures in catalog order."""
        schema = self.schema
        if self.active_measures is None:
            return list(self.measures)
        for measure_id in self.active_measures:
            schema.require_measure(measure_id, field_name="active_measures")
        active = set(self.active_measures)
        return [m for m in self.measures if m.id in active]

    def validate(self) -> None:
        """
        Check every id referenced by the configuration.

        Raises:
            CubeConfigurationError: naming the first offending id
        """
        schema = self.schema
        for i, f in enumerate(self.filters):
            schema.require_dimension(f.dimension_id, field_name=f"filters[{i}]")
            if f.operator.takes_list and not isinstance(f.value, list):
                raise CubeConfigurationError(
                    f"Filter '{f.operator.value}' on '{f.dimension_id}' "
                    f"requires a list value",
                    field=f"filters[{i}]", value=f.value,
                    code=CubeErrorCode.INVALID_FILTER
                )
        for i, dimension_id in enumerate(self.group_by or []):
            schema.require_dimension(dimension_id, field_name=f"group_by[{i}]")
        if self.breakdown_map is not None:
            for path, dimension_id in self.breakdown_map.items():
                for segment in path:
                    schema.require_dimension(segment.dimension_id, field_name="breakdown_map")
                if dimension_id is not None:
                    schema.require_dimension(dimension_id, field_name="breakdown_map")
        self.resolve_active_measures()

    def zoom(self, path: PathLike) -> "CubeConfig":
        """
        Re-root the configuration at path.

        The filtered items under path become the data, breakdown entries below
        path become the breakdown map with the prefix stripped, and group_by
        is shifted by the path depth.
        """
        path = as_path(path)
        if not path:
            return self
        schema = self.schema
        for segment in path:
            schema.require_dimension(segment.dimension_id, field_name="zoom_path")

        items = apply_filters(self.data, self.filters, self.dimensions)
        items = filter_items_by_path(items, path, self.dimensions)
        return replace(
            self,
            data=items,
            group_by=self.group_by[len(path):] if self.group_by is not None else None,
            breakdown_map=(
                self.breakdown_map.subtree(path)
                if self.breakdown_map is not None else None
            ),
            node_states=(
                self.node_states.subtree(path)
                if self.node_states is not None else None
            ),
            root_path=self.root_path + path,
        )

    def copy(self) -> "CubeConfig":
        """Copy of the mutable parts; data and descriptors are shared."""
        return replace(
            self,
            active_measures=list(self.active_measures) if self.active_measures is not None else None,
            filters=[Filter(f.dimension_id, f.operator, f.value) for f in self.filters],
            group_by=list(self.group_by) if self.group_by is not None else None,
            breakdown_map=self.breakdown_map.copy() if self.breakdown_map is not None else None,
            node_states=self.node_states.copy() if self.node_states is not None else None,
        )

    def describe(self) -> str:
        """Generate human-readable description of the configuration."""
        parts = []
        if self.group_by:
            parts.append(f"Grouped by: {' > '.join(self.group_by)}")
        if self.breakdown_map:
            parts.append(f"Breakdown overrides: {len(self.breakdown_map)}")
        if not self.group_by and not self.breakdown_map:
            parts.append("Aggregated to total (no grouping)")
        if self.filters:
            parts.append(f"Filtered: {', '.join(f.describe() for f in self.filters)}")
        measures = [m.id for m in self.resolve_active_measures()]
        parts.append(f"Measures: {', '.join(measures)}")
        return "; ".join(parts)


def _to_breakdown_map(value: Any) -> BreakdownMap:
    if isinstance(value, PathTrie):
        return BreakdownMap(value.items())
    if isinstance(value, Mapping):
        return BreakdownMap.from_mapping(value)
    return BreakdownMap.from_pairs(value)


def _to_node_state_map(value: Any) -> NodeStateMap:
    pairs = value.items() if isinstance(value, (Mapping, PathTrie)) else value
    result = NodeStateMap()
    for path, state in pairs:
        if not isinstance(state, NodeState):
            state = NodeState.from_dict(state)
        result.set(path, state)
    return result
