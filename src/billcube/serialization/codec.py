"""
Serialization codec: CubeConfig <-> SerializableCubeConfig.

Only descriptors built from a FunctionRegistry carry a declarative spec and
can be serialized; anything else is rejected at serialize time. Deserializing
rebuilds live descriptors through the receiving process's registry, coerces
the data rows against the data schema and validates the result, so every
failure surfaces here, before any cube math runs.
"""

from typing import Any, Dict, List, Optional, Sequence, Union
import logging

from billcube.cube.paths import BreakdownMap, NodeState, NodeStateMap
from billcube.cube.schema import DataItem
from billcube.cube.view import CubeConfig, Filter
from billcube.errors import (
    CubeConfigurationError, CubeErrorCode, SerializationError
)
from billcube.serialization.data_schema import (
    convert_data_to_schema, infer_data_schema, to_json_safe
)
from billcube.serialization.registry import FunctionRegistry, create_default_registry
from billcube.serialization.types import (
    CubeMetadata, DataField, DEFAULT_CONFIG_NAME, DimensionSpec, MeasureSpec,
    SerializableCubeConfig
)

logger = logging.getLogger(__name__)

SerializedInput = Union[SerializableCubeConfig, Dict[str, Any], str]


def serialize_cube_state(config: CubeConfig,
                         registry: Optional[FunctionRegistry] = None,
                         name: str = DEFAULT_CONFIG_NAME,
                         description: Optional[str] = None,
                         include_data: bool = True) -> SerializableCubeConfig:
    """
    Convert a live configuration to its declarative twin.

    Raises:
        SerializationError: a descriptor was not built from a registry
        UnsupportedFunctionKindError: a descriptor uses a kind `registry` lacks
    """
    registry = registry or create_default_registry()

    dimensions = []
    for dim in config.dimensions:
        if dim.spec is None:
            raise SerializationError(
                f"Dimension '{dim.id}' has custom functions and cannot be serialized; "
                f"build it with FunctionRegistry.dimension()",
                field="dimensions", value=dim.id, code=CubeErrorCode.NOT_SERIALIZABLE
            )
        if dim.spec.format_function is not None:
            registry.check_format(dim.spec.format_function)
        dimensions.append(dim.spec)

    measures = []
    for measure in config.measures:
        if measure.spec is None:
            raise SerializationError(
                f"Measure '{measure.id}' has custom functions and cannot be serialized; "
                f"build it with FunctionRegistry.measure()",
                field="measures", value=measure.id, code=CubeErrorCode.NOT_SERIALIZABLE
            )
        registry.check_aggregation(measure.spec.aggregation_function)
        if measure.spec.format_function is not None:
            registry.check_format(measure.spec.format_function)
        measures.append(measure.spec)

    data_schema = config.data_schema or infer_data_schema(config.data)

    serialized = SerializableCubeConfig(
        metadata=CubeMetadata(name=name, description=description),
        data_schema=list(data_schema),
        dimensions=list(dimensions),
        measures=list(measures),
        active_measures=list(config.active_measures) if config.active_measures is not None else None,
        filters=[to_json_safe(f.to_dict()) for f in config.filters],
        group_by=list(config.group_by) if config.group_by is not None else None,
        data=to_json_safe(config.data) if include_data else None,
        node_states=(
            [[path, state.to_dict()] for path, state in config.node_states.to_pairs()]
            if config.node_states is not None else None
        ),
        breakdown_map=config.breakdown_map.to_pairs() if config.breakdown_map is not None else None,
    )
    logger.info(
        f"Serialized cube '{name}': {len(dimensions)} dimensions, "
        f"{len(measures)} measures, {len(config.data)} rows"
    )
    return serialized


def _as_serializable(serialized: SerializedInput) -> SerializableCubeConfig:
    if isinstance(serialized, SerializableCubeConfig):
        return serialized
    if isinstance(serialized, str):
        return SerializableCubeConfig.from_json(serialized)
    return SerializableCubeConfig.from_dict(serialized)


def deserialize_cube_config(serialized: SerializedInput,
                            data: Optional[Sequence[DataItem]] = None,
                            registry: Optional[FunctionRegistry] = None,
                            coerce_data: bool = True) -> CubeConfig:
    """
    Rebuild a live configuration.

    Args:
        serialized: SerializableCubeConfig, its dict form or its JSON text
        data: Data rows; defaults to the rows carried in `serialized`
        registry: Function registry of the receiving process
        coerce_data: Coerce rows against the data schema

    Raises:
        SerializationError: malformed config, missing fieldName, invalid
            parameters, or ids that do not resolve
        UnsupportedFunctionKindError: unknown format or aggregation kind
    """
    registry = registry or create_default_registry()
    cfg = _as_serializable(serialized)

    dimensions = [registry.build_dimension(spec) for spec in cfg.dimensions]
    measures = [registry.build_measure(spec) for spec in cfg.measures]

    rows = list(data) if data is not None else list(cfg.data or [])
    if coerce_data and cfg.data_schema:
        rows, _ = convert_data_to_schema(rows, cfg.data_schema)

    try:
        config = CubeConfig(
            data=rows,
            dimensions=dimensions,
            measures=measures,
            active_measures=cfg.active_measures,
            filters=[Filter.from_dict(f) for f in cfg.filters],
            group_by=cfg.group_by,
            breakdown_map=(
                BreakdownMap.from_pairs(cfg.breakdown_map)
                if cfg.breakdown_map is not None else None
            ),
            node_states=(
                NodeStateMap((path, NodeState.from_dict(state)) for path, state in cfg.node_states)
                if cfg.node_states is not None else None
            ),
            data_schema=list(cfg.data_schema) or None,
        )
        config.validate()
    except (CubeConfigurationError, KeyError, ValueError) as e:
        raise SerializationError(
            f"Cube config '{cfg.name}' cannot be restored: {e}",
            value=cfg.name
        ) from e

    logger.info(
        f"Deserialized cube '{cfg.name}': {len(dimensions)} dimensions, "
        f"{len(measures)} measures, {len(rows)} rows"
    )
    return config


def validate_serializable_cube_config(cfg: SerializedInput,
                                      registry: Optional[FunctionRegistry] = None) -> List[str]:
    """
    Structural problems of a serialized config; empty when it is usable.

    With a registry, function kinds it does not provide are reported too.
    """
    if not isinstance(cfg, SerializableCubeConfig):
        try:
            cfg = _as_serializable(cfg)
        except SerializationError as e:
            return [e.message]

    errors = []
    if not cfg.metadata.version:
        errors.append("Missing metadata.version")
    if not cfg.metadata.name:
        errors.append("Missing metadata.name")
    if not cfg.data_schema:
        errors.append("Missing or empty dataSchema.fields")

    if not cfg.dimensions:
        errors.append("Missing or empty dimensions")
    if not cfg.measures:
        errors.append("Missing or empty measures")

    field_names = {f.name for f in cfg.data_schema}
    dimension_ids = set()
    for index, dim in enumerate(cfg.dimensions):
        if not dim.id:
            errors.append(f"Dimension {index}: missing id")
        dimension_ids.add(dim.id)
        if field_names and dim.field_name not in field_names:
            errors.append(
                f"Dimension {index}: fieldName '{dim.field_name}' not found in data schema"
            )

    measure_ids = set()
    for index, measure in enumerate(cfg.measures):
        if not measure.id:
            errors.append(f"Measure {index}: missing id")
        measure_ids.add(measure.id)
        if field_names and measure.field_name not in field_names:
            errors.append(
                f"Measure {index}: fieldName '{measure.field_name}' not found in data schema"
            )

    if registry is not None:
        errors.extend(_unsupported_kinds(cfg, registry))

    for dimension_id in cfg.group_by or []:
        if dimension_id not in dimension_ids:
            errors.append(f"groupBy references unknown dimension '{dimension_id}'")
    for measure_id in cfg.active_measures or []:
        if measure_id not in measure_ids:
            errors.append(f"activeMeasures references unknown measure '{measure_id}'")
    for index, f in enumerate(cfg.filters):
        if f.get("dimensionId") not in dimension_ids:
            errors.append(f"Filter {index}: unknown dimension '{f.get('dimensionId')}'")
    return errors


def _unsupported_kinds(cfg: SerializableCubeConfig, registry: FunctionRegistry) -> List[str]:
    errors = []
    for index, dim in enumerate(cfg.dimensions):
        if dim.format_function is not None and not registry.has_format(dim.format_function.type):
            errors.append(f"Dimension {index}: unknown format kind '{dim.format_function.type}'")
    for index, measure in enumerate(cfg.measures):
        if not registry.has_aggregation(measure.aggregation_function):
            errors.append(
                f"Measure {index}: unknown aggregation kind '{measure.aggregation_function}'"
            )
        if measure.format_function is not None and not registry.has_format(measure.format_function.type):
            errors.append(f"Measure {index}: unknown format kind '{measure.format_function.type}'")
    return errors


def create_serializable_cube_config(name: str,
                                    data_schema: Sequence[DataField],
                                    dimensions: Sequence[DimensionSpec],
                                    measures: Sequence[MeasureSpec],
                                    group_by: Optional[Sequence[str]] = None,
                                    breakdown_map: Optional[Dict[str, Optional[str]]] = None,
                                    active_measures: Optional[Sequence[str]] = None,
                                    filters: Optional[Sequence[Dict[str, Any]]] = None,
                                    description: Optional[str] = None) -> SerializableCubeConfig:
    """Declare a serializable config from scratch, without live descriptors."""
    return SerializableCubeConfig(
        metadata=CubeMetadata(name=name, description=description),
        data_schema=list(data_schema),
        dimensions=list(dimensions),
        measures=list(measures),
        active_measures=list(active_measures) if active_measures is not None else None,
        filters=[dict(f) for f in filters or []],
        group_by=list(group_by) if group_by is not None else None,
        breakdown_map=(
            [[path, dim] for path, dim in breakdown_map.items()]
            if breakdown_map is not None else None
        ),
    )
