"""
Declarative, JSON-safe cube configuration types.

These are the persistence twins of the live descriptors in billcube.cube:
dimensions and measures reference named function kinds with parameters
instead of executable closures. The wire format uses camelCase keys.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
from enum import Enum
import json
import logging

from billcube.errors import SerializationError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"

# Oldest first; unknown or missing versions are read as the oldest one
SUPPORTED_VERSIONS = ("1.0.0",)

DEFAULT_CONFIG_NAME = "Cube Configuration"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataType(Enum):
    """Field types of a serialized data schema."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATE_TIME = "dateTime"
    TIME = "time"


@dataclass
class DataField:
    """
    One field of the data schema describing the shape of data rows.

    A mixed field holds values of several types; coercion keeps its present
    values as they are.
    """
    name: str
    type: DataType
    nullable: bool = False
    default_value: Any = None
    description: Optional[str] = None
    mixed: bool = False

    def __post_init__(self):
        if not isinstance(self.type, DataType):
            try:
                self.type = DataType(self.type)
            except ValueError:
                raise SerializationError(
                    f"Unknown data type '{self.type}' for field '{self.name}'",
                    field="dataSchema.fields", value=self.type
                ) from None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "name": self.name,
            "type": self.type.value,
            "nullable": self.nullable,
        }
        if self.default_value is not None:
            result["defaultValue"] = self.default_value
        if self.description is not None:
            result["description"] = self.description
        if self.mixed:
            result["mixed"] = True
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DataField":
        if not data.get("name"):
            raise SerializationError(
                "Data schema field without a name", field="dataSchema.fields"
            )
        return cls(
            name=data["name"],
            type=data.get("type", DataType.STRING.value),
            nullable=bool(data.get("nullable", False)),
            default_value=data.get("defaultValue"),
            description=data.get("description"),
            mixed=bool(data.get("mixed", False)),
        )


@dataclass
class FunctionSpec:
    """A named function kind plus its parameters, e.g. currency{EUR, 2}."""
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.parameters:
            result["parameters"] = dict(self.parameters)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FunctionSpec":
        if not isinstance(data, Mapping) or not data.get("type"):
            raise SerializationError(
                f"Function spec without a type: {data!r}", field="formatFunction"
            )
        return cls(type=data["type"], parameters=dict(data.get("parameters") or {}))

    @classmethod
    def coerce(cls, value: Any) -> Optional["FunctionSpec"]:
        """Accept a FunctionSpec, a {"type", "parameters"} dict, a kind name or None."""
        if value is None or isinstance(value, FunctionSpec):
            return value
        if isinstance(value, str):
            return cls(type=value)
        return cls.from_dict(value)


def _require_field_name(data: Mapping[str, Any], kind: str) -> str:
    field_name = data.get("fieldName")
    if not field_name:
        raise SerializationError(
            f"{kind.capitalize()} '{data.get('id', '?')}' is missing fieldName",
            field=f"{kind}s.fieldName", value=data.get("id")
        )
    return field_name


@dataclass
class DimensionSpec:
    """
    Declarative dimension.

    Attributes:
        id: Unique identifier
        name: Display label
        field_name: Data row field holding the raw value
        key_field_name: Sub-field of a structured raw value used as the key
        format_function: Named format kind for labels
        label_mapping: Static raw key -> label lookup; wins over format_function
    """
    id: str
    name: str
    field_name: str
    icon: Optional[str] = None
    description: Optional[str] = None
    key_field_name: Optional[str] = None
    format_function: Optional[FunctionSpec] = None
    label_mapping: Optional[Dict[str, str]] = None

    def __post_init__(self):
        self.format_function = FunctionSpec.coerce(self.format_function)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "fieldName": self.field_name,
        }
        if self.icon is not None:
            result["icon"] = self.icon
        if self.description is not None:
            result["description"] = self.description
        if self.key_field_name is not None:
            result["keyFieldName"] = self.key_field_name
        if self.format_function is not None:
            result["formatFunction"] = self.format_function.to_dict()
        if self.label_mapping is not None:
            result["labelMapping"] = dict(self.label_mapping)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DimensionSpec":
        return cls(
            id=data.get("id"),
            name=data.get("name") or data.get("id"),
            field_name=_require_field_name(data, "dimension"),
            icon=data.get("icon"),
            description=data.get("description"),
            key_field_name=data.get("keyFieldName"),
            format_function=data.get("formatFunction"),
            label_mapping=data.get("labelMapping"),
        )


@dataclass
class MeasureSpec:
    """Declarative measure: a data field reduced by a named aggregation kind."""
    id: str
    name: str
    field_name: str
    aggregation_function: str = "sum"
    icon: Optional[str] = None
    description: Optional[str] = None
    format_function: Optional[FunctionSpec] = None

    def __post_init__(self):
        self.format_function = FunctionSpec.coerce(self.format_function)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "fieldName": self.field_name,
            "aggregationFunction": self.aggregation_function,
        }
        if self.icon is not None:
            result["icon"] = self.icon
        if self.description is not None:
            result["description"] = self.description
        if self.format_function is not None:
            result["formatFunction"] = self.format_function.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MeasureSpec":
        field_name = _require_field_name(data, "measure")
        if not data.get("aggregationFunction"):
            raise SerializationError(
                f"Measure '{data.get('id', '?')}' is missing aggregationFunction",
                field="measures.aggregationFunction", value=data.get("id")
            )
        return cls(
            id=data.get("id"),
            name=data.get("name") or data.get("id"),
            field_name=field_name,
            aggregation_function=data["aggregationFunction"],
            icon=data.get("icon"),
            description=data.get("description"),
            format_function=data.get("formatFunction"),
        )


@dataclass
class CubeMetadata:
    name: str = DEFAULT_CONFIG_NAME
    version: str = SCHEMA_VERSION
    created_at: str = field(default_factory=utc_now_iso)
    modified_at: str = field(default_factory=utc_now_iso)
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "version": self.version,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "name": self.name,
        }
        if self.description is not None:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CubeMetadata":
        version = data.get("version")
        if version not in SUPPORTED_VERSIONS:
            fallback = SUPPORTED_VERSIONS[0]
            logger.warning(
                f"Unrecognized cube config version {version!r}, reading as {fallback}"
            )
            version = fallback
        now = utc_now_iso()
        return cls(
            name=data.get("name") or DEFAULT_CONFIG_NAME,
            version=version,
            created_at=data.get("createdAt") or now,
            modified_at=data.get("modifiedAt") or now,
            description=data.get("description"),
        )


def _pairs(value: Any, key: str) -> Optional[List[List[Any]]]:
    """Path-keyed entries as [path, value] pairs; legacy object form is accepted."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return [[path, entry] for path, entry in value.items()]
    pairs = []
    for entry in value:
        if not isinstance(entry, Sequence) or isinstance(entry, str) or len(entry) != 2:
            raise SerializationError(
                f"Malformed {key} entry {entry!r}; expected [path, value]",
                field=key, value=entry
            )
        pairs.append([entry[0], entry[1]])
    return pairs


@dataclass
class SerializableCubeConfig:
    """
    The declarative, JSON-safe twin of CubeConfig.

    Attributes:
        metadata: Version, timestamps and name
        data_schema: Field-level schema of the data rows
        dimensions: Declarative dimensions
        measures: Declarative measures
        active_measures: Measure ids to compute (None = all)
        filters: Filters in wire form ({dimensionId, operator, value})
        group_by: Uniform grouping order
        data: Data rows, when carried
        node_states: [path, {isExpanded}] pairs
        breakdown_map: [path, dimensionId | None] pairs
    """
    metadata: CubeMetadata
    data_schema: List[DataField]
    dimensions: List[DimensionSpec]
    measures: List[MeasureSpec]
    active_measures: Optional[List[str]] = None
    filters: List[Dict[str, Any]] = field(default_factory=list)
    group_by: Optional[List[str]] = None
    data: Optional[List[Dict[str, Any]]] = field(default=None, repr=False)
    node_states: Optional[List[List[Any]]] = None
    breakdown_map: Optional[List[List[Any]]] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "metadata": self.metadata.to_dict(),
            "dataSchema": {"fields": [f.to_dict() for f in self.data_schema]},
            "dimensions": [d.to_dict() for d in self.dimensions],
            "measures": [m.to_dict() for m in self.measures],
            "activeMeasures": self.active_measures,
            "filters": list(self.filters),
            "groupBy": self.group_by,
            "data": self.data,
        }
        if self.node_states is not None:
            result["nodeStates"] = self.node_states
        if self.breakdown_map is not None:
            result["breakdownMap"] = self.breakdown_map
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SerializableCubeConfig":
        """
        Parse the wire form, migrating legacy keys.

        Raises:
            SerializationError: malformed structure or a descriptor without fieldName
        """
        if not isinstance(data, Mapping):
            raise SerializationError(
                f"Cube config must be an object, got {type(data).__name__}"
            )

        schema = data.get("dataSchema") or {}
        fields = schema.get("fields", []) if isinstance(schema, Mapping) else schema

        group_by = data.get("groupBy")
        for legacy_key in ("defaultDimensionSequence", "initialGrouping"):
            if group_by is None and data.get(legacy_key) is not None:
                logger.info(f"Migrating legacy key '{legacy_key}' to groupBy")
                group_by = data[legacy_key]

        return cls(
            metadata=CubeMetadata.from_dict(data.get("metadata") or {}),
            data_schema=[DataField.from_dict(f) for f in fields],
            dimensions=[DimensionSpec.from_dict(d) for d in data.get("dimensions") or []],
            measures=[MeasureSpec.from_dict(m) for m in data.get("measures") or []],
            active_measures=(
                list(data["activeMeasures"]) if data.get("activeMeasures") is not None else None
            ),
            filters=[dict(f) for f in data.get("filters") or []],
            group_by=list(group_by) if group_by is not None else None,
            data=data.get("data"),
            node_states=_pairs(data.get("nodeStates"), "nodeStates"),
            breakdown_map=_pairs(data.get("breakdownMap"), "breakdownMap"),
        )

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "SerializableCubeConfig":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Invalid cube config JSON: {e}") from e
        return cls.from_dict(data)
