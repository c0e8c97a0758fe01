"""
Serialization module: Declarative cube configs, function-kind registry and codec.
"""

from billcube.serialization.types import (
    DataType, DataField, FunctionSpec, DimensionSpec, MeasureSpec,
    CubeMetadata, SerializableCubeConfig, SCHEMA_VERSION
)
from billcube.serialization.registry import FunctionRegistry, create_default_registry
from billcube.serialization.codec import (
    serialize_cube_state, deserialize_cube_config,
    validate_serializable_cube_config, create_serializable_cube_config
)
from billcube.serialization.data_schema import (
    infer_data_schema, convert_to_data_type, get_default_value,
    validate_data_item, convert_data_to_schema
)

__all__ = [
    "DataType", "DataField", "FunctionSpec", "DimensionSpec", "MeasureSpec",
    "CubeMetadata", "SerializableCubeConfig", "SCHEMA_VERSION",
    "FunctionRegistry", "create_default_registry",
    "serialize_cube_state", "deserialize_cube_config",
    "validate_serializable_cube_config", "create_serializable_cube_config",
    "infer_data_schema", "convert_to_data_type", "get_default_value",
    "validate_data_item", "convert_data_to_schema",
]
