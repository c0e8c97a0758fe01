"""
Report module: Paged cube exports for PDF and email renderers.
"""

from billcube.report.pages import (
    PageConfig, PageSorting, SortOrder, PageData, ReportMetadata, ReportModel,
    ReportModelBuilder, CubeDateRange, build_page_breakdown_map, calculate_page,
    create_page_data, flatten_page, get_cube_date_range
)

__all__ = [
    "PageConfig", "PageSorting", "SortOrder", "PageData", "ReportMetadata", "ReportModel",
    "ReportModelBuilder", "CubeDateRange", "build_page_breakdown_map", "calculate_page",
    "create_page_data", "flatten_page", "get_cube_date_range",
]
