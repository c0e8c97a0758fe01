"""
Report export: paged, pre-calculated cube views for a PDF/email renderer.

Each page groups the cube by a primary and an optional secondary dimension,
restricted to a measure subset and sorted by measure values. Pages are
computed by re-running the cube engine with a page-specific breakdown map;
the renderer only ever sees finished results and flat DataFrames.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence
from enum import Enum
import logging

import pandas as pd

from billcube.cube.engine import (
    CubeCalculationOptions, CubeGroup, CubeResult, calculate_cube, get_cell_value
)
from billcube.cube.paths import BreakdownMap, PathSegment, ROOT, WILDCARD
from billcube.cube.schema import is_numeric
from billcube.cube.view import CubeConfig
from billcube.errors import CubeConfigurationError

logger = logging.getLogger(__name__)


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class PageSorting:
    """Sort primary/secondary groups by a measure value (None keeps data order)."""
    primary_sort_by: Optional[str] = None
    primary_sort_order: SortOrder = SortOrder.DESC
    secondary_sort_by: Optional[str] = None
    secondary_sort_order: SortOrder = SortOrder.DESC

    def __post_init__(self):
        self.primary_sort_order = SortOrder(self.primary_sort_order)
        self.secondary_sort_order = SortOrder(self.secondary_sort_order)


@dataclass
class PageConfig:
    """
    Configuration for a single report page.

    Attributes:
        id: Unique page identifier
        primary_dimension_id: Dimension of the top-level groups
        secondary_dimension_id: Dimension of the sub-groups, if any
        measure_ids: Measures shown on the page (None = config's active measures)
        sorting: Sorting of primary and secondary groups
        order: Position of the page in the report
        title: Page title (defaults to the dimension names)
    """
    id: str
    primary_dimension_id: str
    secondary_dimension_id: Optional[str] = None
    measure_ids: Optional[List[str]] = None
    sorting: PageSorting = field(default_factory=PageSorting)
    order: int = 0
    title: Optional[str] = None


def build_page_breakdown_map(page: PageConfig) -> BreakdownMap:
    """Root -> primary, every primary group -> secondary, secondary groups -> leaf."""
    breakdown = BreakdownMap()
    breakdown.set(ROOT, page.primary_dimension_id)
    primary_any = (PathSegment(page.primary_dimension_id, WILDCARD),)
    breakdown.set(primary_any, page.secondary_dimension_id)
    if page.secondary_dimension_id is not None:
        breakdown.set(primary_any + (PathSegment(page.secondary_dimension_id, WILDCARD),), None)
    return breakdown


def _sort_key(measure_id: str):
    def key(group: CubeGroup):
        value = get_cell_value(group, measure_id)
        return value if is_numeric(value) else float("-inf")
    return key


def sort_groups(groups: Sequence[CubeGroup], sorting: PageSorting) -> List[CubeGroup]:
    """Sorted copies of the groups; results are never mutated in place."""
    sorted_groups = list(groups)
    if sorting.primary_sort_by is not None:
        sorted_groups.sort(
            key=_sort_key(sorting.primary_sort_by),
            reverse=sorting.primary_sort_order == SortOrder.DESC
        )
    if sorting.secondary_sort_by is None:
        return sorted_groups

    result = []
    for group in sorted_groups:
        if group.sub_groups:
            sub_groups = sorted(
                group.sub_groups,
                key=_sort_key(sorting.secondary_sort_by),
                reverse=sorting.secondary_sort_order == SortOrder.DESC
            )
            group = replace(group, sub_groups=sub_groups)
        result.append(group)
    return result


def calculate_page(config: CubeConfig, page: PageConfig,
                   options: Optional[CubeCalculationOptions] = None) -> CubeResult:
    """
    Re-run the engine with the page's breakdown map and measure subset.

    Raises:
        CubeConfigurationError: unknown page dimension or measure
    """
    schema = config.schema
    schema.require_dimension(page.primary_dimension_id, field_name="page.primary_dimension_id")
    if page.secondary_dimension_id is not None:
        schema.require_dimension(page.secondary_dimension_id,
                                 field_name="page.secondary_dimension_id")

    page_config = replace(
        config,
        group_by=None,
        breakdown_map=build_page_breakdown_map(page),
        node_states=None,
        active_measures=(
            list(page.measure_ids) if page.measure_ids is not None else config.active_measures
        ),
    )
    result = calculate_cube(page_config, options)
    return replace(result, groups=sort_groups(result.groups, page.sorting))


def flatten_page(result: CubeResult) -> pd.DataFrame:
    """
    One row per primary and secondary group plus a total row.

    Columns: level, primary, secondary, item_count, then the raw value and
    the formatted value ("<measure>_formatted") of every measure.
    """
    measure_ids = [c.measure_id for c in result.grand_totals]
    columns = ["level", "primary", "secondary", "item_count"]
    for measure_id in measure_ids:
        columns += [measure_id, f"{measure_id}_formatted"]

    def row(level: str, primary: Optional[str], secondary: Optional[str],
            item_count: int, cells) -> Dict[str, Any]:
        values = {"level": level, "primary": primary, "secondary": secondary,
                  "item_count": item_count}
        for cell in cells:
            values[cell.measure_id] = cell.value
            values[f"{cell.measure_id}_formatted"] = cell.formatted_value
        return values

    rows = []
    for group in result.groups:
        rows.append(row("primary", group.dimension_label, None, group.item_count, group.cells))
        for sub in group.sub_groups or []:
            rows.append(row("secondary", group.dimension_label, sub.dimension_label,
                            sub.item_count, sub.cells))
    rows.append(row("total", None, None, result.total_items, result.grand_totals))
    return pd.DataFrame(rows, columns=columns)


@dataclass
class MeasureTotal:
    id: str
    name: str
    total_value: Any
    formatted_value: str


@dataclass
class PageData:
    """A page with its pre-calculated cube."""
    config: PageConfig
    title: str
    description: str
    result: CubeResult
    total_groups: int
    total_sub_groups: int
    total_items: int
    measures: List[MeasureTotal]

    def to_dataframe(self) -> pd.DataFrame:
        return flatten_page(self.result)


def create_page_data(config: CubeConfig, page: PageConfig,
                     options: Optional[CubeCalculationOptions] = None) -> PageData:
    """Calculate a page and summarize it."""
    result = calculate_page(config, page, options)
    schema = config.schema

    primary = schema.require_dimension(page.primary_dimension_id)
    secondary = (
        schema.require_dimension(page.secondary_dimension_id)
        if page.secondary_dimension_id is not None else None
    )
    title = page.title or (
        f"{primary.name} / {secondary.name}" if secondary is not None else primary.name
    )
    description = f"Grouped by {primary.name}"
    if secondary is not None:
        description += f", then by {secondary.name}"

    measures = []
    for cell in result.grand_totals:
        measure = schema.require_measure(cell.measure_id)
        measures.append(MeasureTotal(
            id=cell.measure_id,
            name=measure.name,
            total_value=cell.value,
            formatted_value=cell.formatted_value,
        ))

    return PageData(
        config=page,
        title=title,
        description=description,
        result=result,
        total_groups=len(result.groups),
        total_sub_groups=sum(len(g.sub_groups or []) for g in result.groups),
        total_items=result.total_items,
        measures=measures,
    )


@dataclass
class CubeDateRange:
    start: pd.Timestamp
    end: pd.Timestamp

    def describe(self) -> str:
        return f"{self.start:%m/%d/%Y} - {self.end:%m/%d/%Y}"


@dataclass
class ReportMetadata:
    title: str
    company_name: str
    date_range: Optional[CubeDateRange] = None
    description: Optional[str] = None
    creator_name: Optional[str] = None
    creator_email: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class ReportModel:
    metadata: ReportMetadata
    pages: List[PageData]
    overall_summary: Dict[str, Any]


class ReportModelBuilder:
    """
    Assembles pages into a report model.

    Example:
        report = (ReportModelBuilder(config)
                  .set_metadata(ReportMetadata("Hours", "ACME"))
                  .add_page_config(PageConfig("p1", "project", "contractor"))
                  .build())
    """

    def __init__(self, config: Optional[CubeConfig] = None,
                 options: Optional[CubeCalculationOptions] = None):
        self.config = config
        self.options = options
        self._metadata: Optional[ReportMetadata] = None
        self._pages: List[PageData] = []

    def set_metadata(self, metadata: ReportMetadata) -> "ReportModelBuilder":
        self._metadata = metadata
        return self

    def add_page(self, page_data: PageData) -> "ReportModelBuilder":
        self._pages.append(page_data)
        return self

    def add_page_config(self, page: PageConfig) -> "ReportModelBuilder":
        """Calculate a page against the builder's cube config and add it."""
        if self.config is None:
            raise CubeConfigurationError(
                "add_page_config requires a builder created with a cube config",
                field="config"
            )
        return self.add_page(create_page_data(self.config, page, self.options))

    def build(self) -> ReportModel:
        if self._metadata is None:
            raise CubeConfigurationError("Report metadata is required", field="metadata")
        if not self._pages:
            raise CubeConfigurationError("At least one page is required", field="pages")

        pages = sorted(self._pages, key=lambda p: p.config.order)
        date_range = self._metadata.date_range
        overall_summary = {
            "total_pages": len(pages),
            "total_groups": sum(p.total_groups for p in pages),
            "total_items": sum(p.total_items for p in pages),
            "date_range": date_range.describe() if date_range is not None else "",
        }
        logger.info(
            f"Built report '{self._metadata.title}': {len(pages)} pages, "
            f"{overall_summary['total_groups']} groups"
        )
        return ReportModel(metadata=self._metadata, pages=pages,
                           overall_summary=overall_summary)


# --- date range -------------------------------------------------------------------

def _parse_date(value: Any) -> Optional[pd.Timestamp]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if is_numeric(value):
        ts = pd.to_datetime(value, unit="ms", errors="coerce")
    else:
        ts = pd.to_datetime(value, errors="coerce")
    return None if pd.isna(ts) else ts


def _first_date(candidate: Mapping, keys: Sequence[str]) -> Optional[pd.Timestamp]:
    for key in keys:
        parsed = _parse_date(candidate.get(key))
        if parsed is not None:
            return parsed
    return None


def _parse_candidate(candidate: Any) -> Optional[CubeDateRange]:
    if not isinstance(candidate, Mapping):
        return None
    start = _first_date(candidate, ("start", "begin", "from"))
    end = _first_date(candidate, ("end", "finish", "to"))
    if start is not None and end is not None:
        return CubeDateRange(start=start, end=end)
    return None


def _get(source: Any, key: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def get_cube_date_range(source: Any) -> Optional[CubeDateRange]:
    """
    Covered date range of a serialized cube.

    Looks for an explicit {start, end} range in the source, its metadata or
    its config; otherwise spans the min/max startAt of the data rows.
    """
    if source is None:
        return None
    if isinstance(source, CubeConfig):
        source = {"data": source.data}
    elif not isinstance(source, Mapping) and hasattr(source, "to_dict"):
        source = source.to_dict()

    containers = [source, _get(source, "meta"), _get(source, "metadata"), _get(source, "config")]
    config = _get(source, "config")
    if config is not None:
        containers.append(_get(config, "meta"))
    for container in containers:
        if container is None:
            continue
        for key in ("dateRange", "range"):
            parsed = _parse_candidate(_get(container, key))
            if parsed is not None:
                return parsed

    data = _get(source, "data")
    if not isinstance(data, list) and config is not None:
        data = _get(config, "data")
    if not isinstance(data, list) or not data:
        return None

    dates = [
        d for d in (_parse_date(item.get("startAt", item.get("start_at"))) for item in data)
        if d is not None
    ]
    if not dates:
        return None
    return CubeDateRange(start=min(dates), end=max(dates))
