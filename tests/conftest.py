"""
Shared fixtures for the billcube test suite.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billcube.cube.view import CubeConfig
from billcube.serialization.registry import create_default_registry


@pytest.fixture
def registry():
    """A fresh function registry with the built-in kinds."""
    return create_default_registry()


@pytest.fixture
def region_items():
    """Three sales rows across two regions."""
    return [
        {"region": "North", "revenue": 100},
        {"region": "North", "revenue": 50},
        {"region": "South", "revenue": 30},
    ]


@pytest.fixture
def region_config(registry, region_items):
    """Revenue by region, built from registry-backed descriptors."""
    return CubeConfig(
        data=region_items,
        dimensions=[registry.dimension("region", "Region", "region")],
        measures=[registry.measure("revenue", "Revenue", "revenue", "sum")],
        group_by=["region"],
    )


@pytest.fixture
def billing_items():
    """Time entries: project > contractor, with a missing and a bad hours value."""
    return [
        {"project": "Alpha", "contractor": "John", "hours": 4.0, "amount": 380.0, "date": "2024-01-15"},
        {"project": "Alpha", "contractor": "Jane", "hours": 2.5, "amount": 275.0, "date": "2024-01-15"},
        {"project": "Alpha", "contractor": "John", "hours": 3.0, "amount": 285.0, "date": "2024-01-16"},
        {"project": "Beta", "contractor": "Jane", "hours": 6.0, "amount": 660.0, "date": "2024-01-16"},
        {"project": "Beta", "contractor": "Bob", "hours": None, "amount": 0.0, "date": "2024-01-17"},
        {"project": "Gamma", "contractor": "Bob", "hours": "n/a", "amount": 120.0, "date": "2024-01-18"},
    ]


@pytest.fixture
def billing_config(registry, billing_items):
    """Project > contractor cube with hours, billing and an average."""
    return CubeConfig(
        data=billing_items,
        dimensions=[
            registry.dimension("project", "Project", "project"),
            registry.dimension("contractor", "Contractor", "contractor"),
            registry.dimension("date", "Date", "date",
                               format_function={"type": "date", "parameters": {"format": "short"}}),
        ],
        measures=[
            registry.measure("hours", "Hours", "hours", "sum",
                             format_function={"type": "number",
                                              "parameters": {"decimals": 1, "suffix": " h"}}),
            registry.measure("billing", "Billing", "amount", "sum",
                             format_function={"type": "currency",
                                              "parameters": {"currency": "EUR", "decimals": 2}}),
            registry.measure("avgHours", "Average Hours", "hours", "average"),
            registry.measure("maxHours", "Max Hours", "hours", "max"),
            registry.measure("entries", "Entries", "hours", "count"),
        ],
        group_by=["project", "contractor"],
    )
