"""
Cube Engine: groups records hierarchically and aggregates measures.

This module handles all numerical computations including:
- Filtering (a single pass over the data, AND-combined)
- Recursive grouping along the grouping spec (group_by / breakdown map)
- Cell aggregation at every node, combining child cells for associative
  measure kinds and rescanning raw items for all others
- Grand totals over the whole filtered item set

The engine is synchronous and pure: it never mutates its inputs and returns
an immutable snapshot that callers discard and recompute on every change.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

import pandas as pd

from billcube.cube.paths import (
    NodePath, PathLike, PathSegment, ROOT, as_path, format_path,
    resolve_child_dimension
)
from billcube.cube.schema import (
    AggregateFunction, DataItem, DimensionDescriptor, MeasureDescriptor
)
from billcube.cube.view import CubeConfig, apply_filters
from billcube.errors import CubeComputationError, CubeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass
class CubeCalculationOptions:
    """
    Options for cube calculation.

    Attributes:
        include_items: Attach raw items to leaf groups (drill-through)
        max_depth: Maximum number of grouping levels below the root
        skip_empty_groups: Omit groups without items
        zoom_path: Compute the cube as if this sub-path were the root
    """
    include_items: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH
    skip_empty_groups: bool = False
    zoom_path: NodePath = ROOT

    def __post_init__(self):
        self.zoom_path = as_path(self.zoom_path)
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")


@dataclass
class CubeCell:
    """
    One aggregated measure value.

    Attributes:
        measure_id: The measure this cell belongs to
        value: Aggregated value (NaN/inf from custom aggregators are kept as is)
        formatted_value: Display string
        sample_size: Number of numeric contributions aggregated
    """
    measure_id: str
    value: Any
    formatted_value: str
    sample_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "measureId": self.measure_id,
            "value": self.value,
            "formattedValue": self.formatted_value,
            "sampleSize": self.sample_size
        }


@dataclass
class CubeGroup:
    """
    A node of the cube tree.

    Attributes:
        dimension_id: The dimension this group splits on
        dimension_key: Grouping key
        dimension_value: Raw value of the first item in the group
        dimension_label: Formatted display value
        item_count: Number of filtered items under this group
        cells: One cell per active measure
        path: Absolute node path ("dim:key|dim:key")
        depth: Level below the result root (0 = top-level group)
        sub_groups: Child groups, None for a leaf
        items: Raw items of a leaf (only with include_items)
        child_dimension_id: Dimension the children are grouped by
    """
    dimension_id: str
    dimension_key: str
    dimension_value: Any
    dimension_label: str
    item_count: int
    cells: List[CubeCell]
    path: str
    depth: int = 0
    sub_groups: Optional[List["CubeGroup"]] = None
    items: Optional[List[DataItem]] = None
    child_dimension_id: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return self.sub_groups is None

    def get_cell(self, measure_id: str) -> Optional[CubeCell]:
        for cell in self.cells:
            if cell.measure_id == measure_id:
                return cell
        return None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "dimensionId": self.dimension_id,
            "dimensionKey": self.dimension_key,
            "dimensionLabel": self.dimension_label,
            "itemCount": self.item_count,
            "path": self.path,
            "cells": [c.to_dict() for c in self.cells],
        }
        if self.sub_groups is not None:
            result["childDimensionId"] = self.child_dimension_id
            result["subGroups"] = [g.to_dict() for g in self.sub_groups]
        return result


@dataclass
class CubeResult:
    """
    Result of one cube computation.

    Attributes:
        groups: Top-level groups (empty when the root is a leaf)
        total_items: Number of items after filtering
        grand_totals: Cells aggregated over all filtered items
        root_path: Absolute path of the result root ("" unless zoomed)
        child_dimension_id: Dimension the top-level groups split on
        items: Filtered items (only with include_items)
    """
    groups: List[CubeGroup]
    total_items: int
    grand_totals: List[CubeCell]
    root_path: str = ""
    child_dimension_id: Optional[str] = None
    items: Optional[List[DataItem]] = field(default=None, repr=False)

    def get_grand_total(self, measure_id: str) -> Optional[CubeCell]:
        for cell in self.grand_totals:
            if cell.measure_id == measure_id:
                return cell
        return None

    def flatten(self) -> List[CubeGroup]:
        return flatten_groups(self.groups)

    def get_summary(self) -> Dict[str, Any]:
        """Compact summary for logging and export headers."""
        return {
            "total_items": self.total_items,
            "top_level_groups": len(self.groups),
            "total_groups": len(self.flatten()),
            "grouping": self.child_dimension_id,
            "root_path": self.root_path,
            "grand_totals": {c.measure_id: c.value for c in self.grand_totals},
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per group in depth-first order, one column per measure."""
        measure_ids = [c.measure_id for c in self.grand_totals]
        columns = ["path", "depth", "dimension_id", "dimension_key",
                   "dimension_label", "item_count"] + measure_ids
        rows = []
        for group in self.flatten():
            row = {
                "path": group.path,
                "depth": group.depth,
                "dimension_id": group.dimension_id,
                "dimension_key": group.dimension_key,
                "dimension_label": group.dimension_label,
                "item_count": group.item_count,
            }
            for cell in group.cells:
                row[cell.measure_id] = cell.value
            rows.append(row)
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "totalItems": self.total_items,
            "grandTotals": [c.to_dict() for c in self.grand_totals],
            "rootPath": self.root_path,
            "childDimensionId": self.child_dimension_id,
        }


class CubeEngine:
    """
    In-memory cube engine over lists of dict records.

    Suitable for interactive use on datasets of up to tens of thousands of rows.
    """

    def __init__(self, options: Optional[CubeCalculationOptions] = None):
        self.options = options or CubeCalculationOptions()

    def calculate(self, config: CubeConfig) -> CubeResult:
        """
        Compute the cube for a configuration.

        Raises:
            CubeConfigurationError: unknown ids or malformed grouping/filter spec
            CubeComputationError: a descriptor function raised; the original
                exception is chained as __cause__
        """
        config.validate()
        try:
            return self._calculate(config)
        except CubeError:
            raise
        except Exception as e:
            logger.error(f"Cube calculation failed: {type(e).__name__}: {e}")
            raise CubeComputationError(
                f"Cube calculation failed: {type(e).__name__}: {e}"
            ) from e

    def _calculate(self, config: CubeConfig) -> CubeResult:
        options = self.options
        if options.zoom_path:
            config = config.zoom(options.zoom_path)

        items = apply_filters(config.data, config.filters, config.dimensions)
        builder = _TreeBuilder(config, options)

        child_dimension_id = None
        groups = None
        if options.max_depth > 0:
            child_dimension_id = builder.child_dimension(ROOT)
            if child_dimension_id is not None:
                groups = builder.build_groups(items, child_dimension_id, ROOT, 0)

        result = CubeResult(
            groups=groups or [],
            total_items=len(items),
            grand_totals=builder.cells(items, groups),
            root_path=format_path(config.root_path),
            child_dimension_id=child_dimension_id,
            items=list(items) if options.include_items else None,
        )
        logger.debug(
            f"Calculated cube: {result.total_items} items, "
            f"{len(result.groups)} top-level groups by {child_dimension_id}"
        )
        return result


class _TreeBuilder:
    """Recursive grouping for one computation."""

    def __init__(self, config: CubeConfig, options: CubeCalculationOptions):
        self.config = config
        self.options = options
        self.dimensions: Dict[str, DimensionDescriptor] = {
            d.id: d for d in config.dimensions
        }
        self.measures: List[MeasureDescriptor] = config.resolve_active_measures()

    def child_dimension(self, path: NodePath) -> Optional[str]:
        return resolve_child_dimension(
            path, self.config.breakdown_map, self.config.group_by
        )

    def build_groups(self, items: Sequence[DataItem], dimension_id: str,
                     parent_path: NodePath, depth: int) -> List[CubeGroup]:
        dimension = self.dimensions[dimension_id]

        # First-seen order: buckets are not sorted by key or value
        buckets: Dict[str, List[DataItem]] = {}
        first_values: Dict[str, Any] = {}
        for item in items:
            value = dimension.get_value(item)
            key = dimension.key_of(value)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = []
                first_values[key] = value
            bucket.append(item)

        groups = []
        for key, bucket in buckets.items():
            if self.options.skip_empty_groups and not bucket:
                continue

            path = parent_path + (PathSegment(dimension_id, key),)
            child_dimension_id = None
            if depth + 1 < self.options.max_depth:
                child_dimension_id = self.child_dimension(path)

            sub_groups = None
            if child_dimension_id is not None:
                sub_groups = self.build_groups(bucket, child_dimension_id, path, depth + 1)

            raw_value = first_values[key]
            groups.append(CubeGroup(
                dimension_id=dimension_id,
                dimension_key=key,
                dimension_value=raw_value,
                dimension_label=dimension.label_of(raw_value),
                item_count=len(bucket),
                cells=self.cells(bucket, sub_groups),
                path=format_path(self.config.root_path + path),
                depth=depth,
                sub_groups=sub_groups,
                items=list(bucket) if self.options.include_items and sub_groups is None else None,
                child_dimension_id=child_dimension_id,
            ))
        return groups

    def cells(self, items: Sequence[DataItem],
              sub_groups: Optional[List[CubeGroup]]) -> List[CubeCell]:
        cells = []
        for index, measure in enumerate(self.measures):
            if sub_groups and measure.is_combinable:
                cells.append(_combine_cells(measure, [g.cells[index] for g in sub_groups]))
            else:
                values = measure.numeric_values(items)
                value = measure.aggregate(values)
                cells.append(CubeCell(
                    measure_id=measure.id,
                    value=value,
                    formatted_value=measure.format(value),
                    sample_size=len(values),
                ))
        return cells


def _combine_cells(measure: MeasureDescriptor, child_cells: List[CubeCell]) -> CubeCell:
    """
    Parent cell of an associative measure derived from its children.

    Counts, minima and maxima are exact. A combined float sum is rounded once
    per level, so it can differ from a rescan of the items in the last bit.
    """
    contributing = [c for c in child_cells if c.sample_size > 0]
    if not contributing:
        value = measure.aggregate([])
    elif measure.aggregation == AggregateFunction.COUNT:
        value = sum(c.value for c in contributing)
    else:
        value = measure.aggregate([c.value for c in contributing])
    return CubeCell(
        measure_id=measure.id,
        value=value,
        formatted_value=measure.format(value),
        sample_size=sum(c.sample_size for c in contributing),
    )


def calculate_cube(config: CubeConfig,
                   options: Optional[CubeCalculationOptions] = None) -> CubeResult:
    """Calculate a multidimensional cube from raw data."""
    return CubeEngine(options).calculate(config)


def get_cell_value(group: CubeGroup, measure_id: str) -> Any:
    cell = group.get_cell(measure_id)
    return cell.value if cell is not None else None


def get_formatted_cell_value(group: CubeGroup, measure_id: str) -> Optional[str]:
    cell = group.get_cell(measure_id)
    return cell.formatted_value if cell is not None else None


def find_groups(groups: Sequence[CubeGroup],
                predicate: Callable[[CubeGroup], bool],
                recursive: bool = True) -> List[CubeGroup]:
    """Groups matching predicate, depth-first."""
    results = []
    for group in groups:
        if predicate(group):
            results.append(group)
        if recursive and group.sub_groups:
            results.extend(find_groups(group.sub_groups, predicate, recursive))
    return results


def flatten_groups(groups: Sequence[CubeGroup]) -> List[CubeGroup]:
    """Flatten nested groups into a depth-first list."""
    return find_groups(groups, lambda group: True)


def find_group_by_path(groups: Sequence[CubeGroup], path: PathLike) -> Optional[CubeGroup]:
    """Group with the given absolute path, if materialized."""
    target = format_path(as_path(path))
    for group in groups:
        if group.path == target:
            return group
        if group.sub_groups and target.startswith(group.path + "|"):
            return find_group_by_path(group.sub_groups, target)
    return None
