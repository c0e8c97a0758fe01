"""
billcube: Multidimensional cube engine for billing and time-tracking reports

Groups flat line-item records hierarchically by runtime-selectable
dimensions, aggregates measures at every node, supports zoomed views and
expand/collapse state, and round-trips whole cube configurations through a
declarative, JSON-safe format.
"""

__version__ = "0.1.0"
__author__ = "billcube Team"

from billcube.cube.schema import CubeSchema, DimensionDescriptor, MeasureDescriptor
from billcube.cube.view import CubeConfig, Filter
from billcube.cube.engine import CubeCalculationOptions, CubeResult, calculate_cube
from billcube.nav.session import CubeSession
from billcube.serialization.registry import FunctionRegistry, create_default_registry
from billcube.serialization.codec import deserialize_cube_config, serialize_cube_state
from billcube.errors import (
    CubeError, CubeConfigurationError, CubeComputationError, SerializationError
)

__all__ = [
    "CubeSchema",
    "DimensionDescriptor",
    "MeasureDescriptor",
    "CubeConfig",
    "Filter",
    "CubeCalculationOptions",
    "CubeResult",
    "calculate_cube",
    "CubeSession",
    "FunctionRegistry",
    "create_default_registry",
    "serialize_cube_state",
    "deserialize_cube_config",
    "CubeError",
    "CubeConfigurationError",
    "CubeComputationError",
    "SerializationError",
]
