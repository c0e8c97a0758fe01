#!/usr/bin/env python3
"""
Example: Exploring a time-tracking cube interactively.

This script demonstrates how to:
1. Build a cube from a serialized definition and sample data
2. Drive a CubeSession: regroup, zoom, filter, expand
3. Save the session configuration and reopen it
4. Export a paged report as DataFrames
"""

import logging
import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pandas as pd

from billcube.cube.engine import CubeCalculationOptions, CubeGroup
from billcube.nav.session import CubeSession
from billcube.report.pages import (
    PageConfig, PageSorting, ReportMetadata, ReportModelBuilder, get_cube_date_range
)
from billcube.serialization.registry import create_default_registry
from configs.cubes import build_sample_cube


def print_groups(groups, indent: int = 0, max_depth: int = 2):
    for group in groups:
        cells = ", ".join(f"{c.measure_id}={c.formatted_value}" for c in group.cells)
        print(f"{'  ' * indent}- {group.dimension_label} ({group.item_count} items): {cells}")
        if group.sub_groups and indent + 1 < max_depth:
            print_groups(group.sub_groups, indent + 1, max_depth)


def print_totals(session: CubeSession):
    totals = ", ".join(f"{c.measure_id}={c.formatted_value}" for c in session.cube.grand_totals)
    print(f"Total ({session.cube.total_items} items): {totals}")


def run_demo():
    """Run a demonstration exploration session."""
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")

    print("=" * 60)
    print("billcube Demo: Interactive Cube Exploration")
    print("=" * 60)

    # Setup
    print("\n1. Building the time-tracking cube...")
    registry = create_default_registry()
    config = build_sample_cube("time_tracking", registry)
    session = CubeSession(config, CubeCalculationOptions(include_items=True))
    print(config.describe())
    print_totals(session)
    print_groups(session.display_groups)

    # Regroup the top level by contractor
    print("\n2. Grouping the top level by contractor...")
    session.on_dimension_change("contractor", 0)
    print_groups(session.display_groups, max_depth=1)

    # Zoom into the first contractor, then back out
    print("\n3. Zooming into the first contractor...")
    first: CubeGroup = session.display_groups[0]
    session.on_zoom_in(first)
    print(f"Breadcrumbs: {' > '.join(['All'] + session.breadcrumbs)}")
    print_groups(session.display_groups, max_depth=1)
    session.reset_zoom()

    # Filter and expand
    print("\n4. Filtering to Development and Testing...")
    session.add_filter("category", "oneOf", ["Development", "Testing"])
    session.expand_all()
    print(f"Visible rows after expand all: {len(session.visible_groups())}")
    print_totals(session)

    # Persist and reopen
    print("\n5. Saving and reopening the session configuration...")
    os.makedirs("logs", exist_ok=True)
    session.save("logs/demo_cube.json", registry, name="Demo cube")
    reopened = CubeSession.load("logs/demo_cube.json", registry=registry)
    same = reopened.cube.grand_totals == session.cube.grand_totals
    print(f"Reopened cube matches: {same}")

    # Export
    print("\n6. Exporting a two-page report...")
    builder = ReportModelBuilder(session.config)
    builder.set_metadata(ReportMetadata(
        title="Monthly hours",
        company_name="ACME Consulting",
        date_range=get_cube_date_range(session.config),
    ))
    builder.add_page_config(PageConfig(
        id="by-project", primary_dimension_id="project",
        secondary_dimension_id="contractor", order=1,
        sorting=PageSorting(primary_sort_by="totalHours"),
    ))
    builder.add_page_config(PageConfig(
        id="by-category", primary_dimension_id="category",
        measure_ids=["billing"], order=2,
    ))
    report = builder.build()
    print(report.overall_summary)
    with pd.option_context("display.width", 120):
        for page in report.pages:
            print(f"\n{page.title}")
            print(page.to_dataframe())

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    run_demo()
