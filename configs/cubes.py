"""
Serialized cube definitions for the two sample report types.

- TimeTrackingCube: contractor time entries, billed per hour
- SalesCube: sales transactions by region, product and channel

Definitions are declarative (SerializableCubeConfig) so they can be stored
and rebuilt in any process through a FunctionRegistry.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import numpy as np

from billcube.cube.view import CubeConfig
from billcube.serialization.codec import (
    create_serializable_cube_config, deserialize_cube_config
)
from billcube.serialization.registry import FunctionRegistry
from billcube.serialization.types import (
    DataField, DataType, DimensionSpec, MeasureSpec, SerializableCubeConfig
)


def create_time_tracking_cube_config() -> SerializableCubeConfig:
    """
    TimeTrackingCube.

    Dimensions: project, category, contractor, date
    Measures: totalHours, billing (EUR), entries, avgHours

    Projects break down by category first; everything else follows groupBy.
    """
    data_schema = [
        DataField("date", DataType.DATE, description="Day of the time entry"),
        DataField("startAt", DataType.DATE_TIME, description="Start of the time entry"),
        DataField("numHours", DataType.NUMBER, default_value=0, description="Hours tracked"),
        DataField("billableAmount", DataType.NUMBER, default_value=0,
                  description="Hours times the contractor rate"),
        DataField("count", DataType.NUMBER, default_value=0, description="Number of entries"),
        DataField("projectId", DataType.STRING, nullable=True),
        DataField("projectName", DataType.STRING, nullable=True),
        DataField("categoryName", DataType.STRING, nullable=True),
        DataField("contractorName", DataType.STRING, nullable=True),
    ]

    dimensions = [
        DimensionSpec("project", "Project", "projectName", icon="📁",
                      description="Project name"),
        DimensionSpec("category", "Category", "categoryName", icon="🏷️"),
        DimensionSpec("contractor", "Contractor", "contractorName", icon="👤"),
        DimensionSpec("date", "Date", "date", icon="📅",
                      format_function={"type": "date", "parameters": {"format": "short"}}),
    ]

    measures = [
        MeasureSpec("totalHours", "Total Hours", "numHours", "sum",
                    format_function={"type": "number",
                                     "parameters": {"decimals": 2, "suffix": " h"}}),
        MeasureSpec("billing", "Billing", "billableAmount", "sum",
                    format_function={"type": "currency",
                                     "parameters": {"currency": "EUR", "decimals": 2}}),
        MeasureSpec("entries", "Entries", "count", "sum",
                    format_function={"type": "number", "parameters": {"decimals": 0}}),
        MeasureSpec("avgHours", "Average Hours", "numHours", "average",
                    format_function={"type": "number", "parameters": {"decimals": 2}}),
    ]

    return create_serializable_cube_config(
        "Time Tracking Cube",
        data_schema,
        dimensions,
        measures,
        group_by=["project", "category", "contractor", "date"],
        breakdown_map={"": "project", "project:*": "category"},
        active_measures=["totalHours", "billing", "entries"],
        description="Hours and billing per project, category and contractor",
    )


def create_sales_cube_config() -> SerializableCubeConfig:
    """
    SalesCube.

    Dimensions: region, product, channel
    Measures: revenue (USD), units, avgPrice, maxOrder
    """
    data_schema = [
        DataField("region", DataType.STRING),
        DataField("product", DataType.STRING),
        DataField("channel", DataType.STRING, nullable=True),
        DataField("revenue", DataType.NUMBER, default_value=0),
        DataField("units", DataType.NUMBER, default_value=0),
        DataField("unitPrice", DataType.NUMBER, nullable=True),
        DataField("startAt", DataType.DATE_TIME),
    ]

    dimensions = [
        DimensionSpec("region", "Region", "region"),
        DimensionSpec("product", "Product", "product"),
        DimensionSpec("channel", "Channel", "channel",
                      label_mapping={"web": "Online shop", "store": "Retail store",
                                     "partner": "Partner network"}),
    ]

    measures = [
        MeasureSpec("revenue", "Revenue", "revenue", "sum",
                    format_function={"type": "currency",
                                     "parameters": {"currency": "USD", "decimals": 2}}),
        MeasureSpec("units", "Units", "units", "sum",
                    format_function={"type": "number", "parameters": {"decimals": 0}}),
        MeasureSpec("avgPrice", "Average Price", "unitPrice", "average",
                    format_function={"type": "currency",
                                     "parameters": {"currency": "USD", "decimals": 2}}),
        MeasureSpec("maxOrder", "Largest Order", "revenue", "max",
                    format_function={"type": "currency",
                                     "parameters": {"currency": "USD", "decimals": 0}}),
    ]

    return create_serializable_cube_config(
        "Sales Cube",
        data_schema,
        dimensions,
        measures,
        group_by=["region", "product", "channel"],
        description="Revenue and units per region, product and channel",
    )


def create_sample_time_tracking_data(days: int = 30, seed: int = 42,
                                     start: date = date(2024, 1, 1)) -> List[Dict[str, Any]]:
    """Time entries for `days` consecutive days; 1-5 entries per day."""
    rng = np.random.RandomState(seed)
    projects = ["Project Alpha", "Project Beta", "Project Gamma"]
    categories = ["Development", "Testing", "Design", "Planning"]
    contractors = {"John Doe": 95.0, "Jane Smith": 110.0, "Bob Johnson": 80.0}
    names = list(contractors)

    records = []
    for day in range(days):
        current = start + timedelta(days=day)
        for j in range(rng.randint(1, 6)):
            hours = round(float(rng.uniform(0.5, 8.5)), 2)
            contractor = names[j % len(names)]
            records.append({
                "date": current.isoformat(),
                "startAt": datetime(current.year, current.month, current.day,
                                    8 + j).isoformat(),
                "numHours": hours,
                "billableAmount": round(hours * contractors[contractor], 2),
                "count": 1,
                "projectId": f"project_{j % len(projects) + 1}",
                "projectName": projects[j % len(projects)],
                "categoryName": categories[j % len(categories)],
                "contractorName": contractor,
            })
    return records


def create_sample_sales_data(n: int = 200, seed: int = 7) -> List[Dict[str, Any]]:
    """Sales transactions with a handful of rows lacking a channel or price."""
    rng = np.random.RandomState(seed)
    regions = ["North", "South", "East", "West"]
    products = {"Widget": 12.5, "Gadget": 40.0, "Gizmo": 99.0}
    channels = ["web", "store", "partner", None]

    records = []
    for i in range(n):
        product = list(products)[rng.randint(len(products))]
        units = int(rng.randint(1, 20))
        price = products[product]
        records.append({
            "region": regions[rng.randint(len(regions))],
            "product": product,
            "channel": channels[rng.randint(len(channels))],
            "revenue": round(units * price, 2),
            "units": units,
            "unitPrice": price if i % 25 else None,
            "startAt": (datetime(2024, 1, 1) + timedelta(hours=int(i) * 7)).isoformat(),
        })
    return records


# Cube registry
CUBE_CONFIGS = {
    "time_tracking": (create_time_tracking_cube_config, create_sample_time_tracking_data),
    "sales": (create_sales_cube_config, create_sample_sales_data),
}


def get_cube_config(name: str) -> SerializableCubeConfig:
    """Get serialized cube definition by name."""
    if name not in CUBE_CONFIGS:
        raise ValueError(f"Unknown cube: {name}. Available: {list(CUBE_CONFIGS.keys())}")
    return CUBE_CONFIGS[name][0]()


def build_sample_cube(name: str, registry: Optional[FunctionRegistry] = None,
                      data: Optional[List[Dict[str, Any]]] = None) -> CubeConfig:
    """Live CubeConfig for a named cube, with its sample data unless data is given."""
    serialized = get_cube_config(name)
    if data is None:
        data = CUBE_CONFIGS[name][1]()
    return deserialize_cube_config(serialized, data, registry)
