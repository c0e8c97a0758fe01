"""
Data schema inference and row coercion.

The serialized config carries a field-level schema of the data rows. It is
inferred at serialize time when the config has none, and used at
deserialize time to coerce rows:
- missing values of non-nullable fields get the field's default
- numeric and boolean strings are parsed
- temporal values are validated but kept as they are
Values that cannot be coerced are kept unchanged and reported. Present values
of mixed fields, and None/NaN in nullable fields, are never rewritten.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import logging
import numbers
import re

import numpy as np
import pandas as pd

from billcube.cube.schema import DataItem
from billcube.serialization.types import DataField, DataType

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_TIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")
_TIME_RE = re.compile(r"^\d{2}:\d{2}(:\d{2}(\.\d+)?)?$")

# Most specific first
_TYPE_PRIORITY = (
    DataType.NUMBER, DataType.BOOLEAN, DataType.DATE_TIME, DataType.DATE,
    DataType.TIME, DataType.STRING,
)

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no", ""}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, float) and np.isnan(value)


def _parses_as_datetime(text: str) -> bool:
    return not pd.isna(pd.to_datetime(text, errors="coerce"))


def infer_data_type(value: Any) -> Optional[DataType]:
    """Data type of a single value; None for a missing value."""
    if _is_missing(value):
        return None
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, numbers.Real):
        return DataType.NUMBER
    if isinstance(value, datetime):
        return DataType.DATE_TIME
    if isinstance(value, date):
        return DataType.DATE
    if isinstance(value, time):
        return DataType.TIME
    if isinstance(value, str):
        if _DATE_RE.match(value) and _parses_as_datetime(value):
            return DataType.DATE
        if _DATE_TIME_RE.match(value) and _parses_as_datetime(value):
            return DataType.DATE_TIME
        if _TIME_RE.match(value):
            return DataType.TIME
    return DataType.STRING


def infer_data_schema(items: Sequence[DataItem]) -> List[DataField]:
    """
    Infer one field per key, in first-seen order.

    A field is nullable when any row lacks it, holds None/NaN for it, or
    mixes value types. Mixed fields take the most specific type seen and are
    flagged so that coercion leaves their values alone.
    """
    seen: Dict[str, Set[DataType]] = {}
    nullable: Set[str] = set()
    for item in items:
        for name, value in item.items():
            types = seen.setdefault(name, set())
            data_type = infer_data_type(value)
            if data_type is None:
                nullable.add(name)
            else:
                types.add(data_type)

    fields = []
    for name, types in seen.items():
        present_everywhere = all(name in item for item in items)
        if not present_everywhere or len(types) > 1:
            nullable.add(name)
        data_type = next((t for t in _TYPE_PRIORITY if t in types), DataType.STRING)
        fields.append(DataField(name=name, type=data_type, nullable=name in nullable,
                                mixed=len(types) > 1))
    return fields


def get_default_value(data_type: DataType) -> Any:
    """Default for a missing value of a non-nullable field."""
    if data_type == DataType.STRING:
        return ""
    if data_type == DataType.NUMBER:
        return 0
    if data_type == DataType.BOOLEAN:
        return False
    if data_type == DataType.DATE:
        return date.today().isoformat()
    if data_type == DataType.DATE_TIME:
        return datetime.now().isoformat()
    if data_type == DataType.TIME:
        return "00:00:00"
    return None


def convert_to_data_type(value: Any, data_type: DataType, nullable: bool = False,
                         default_value: Any = None) -> Any:
    """
    Coerce a value to a schema type.

    Raises:
        ValueError: the value cannot be read as data_type
    """
    if _is_missing(value):
        if nullable:
            return None
        return default_value if default_value is not None else get_default_value(data_type)

    if data_type == DataType.STRING:
        return value if isinstance(value, str) else str(value)

    if data_type == DataType.NUMBER:
        if isinstance(value, bool):
            raise ValueError(f"Boolean {value!r} is not a number")
        if isinstance(value, numbers.Real):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                return float(text)
        raise ValueError(f"{value!r} is not a number")

    if data_type == DataType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(f"{value!r} is not a boolean")
        if isinstance(value, numbers.Real):
            return bool(value)
        raise ValueError(f"{value!r} is not a boolean")

    if data_type in (DataType.DATE, DataType.DATE_TIME):
        if isinstance(value, (date, pd.Timestamp)):
            return value
        if isinstance(value, str) and _parses_as_datetime(value):
            return value
        raise ValueError(f"{value!r} is not a {data_type.value}")

    if data_type == DataType.TIME:
        if isinstance(value, (time, datetime)):
            return value
        if isinstance(value, str) and _TIME_RE.match(value):
            return value
        raise ValueError(f"{value!r} is not a time of day")

    return value


@dataclass
class DataValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    converted_item: Optional[DataItem] = None


def validate_data_item(item: DataItem, schema: Sequence[DataField],
                       strict: bool = False,
                       convert_types: bool = True) -> DataValidationResult:
    """
    Validate one row against the schema.

    With convert_types, converted_item holds the coerced row. Fields not in
    the schema are copied as is, or reported in strict mode.
    """
    errors = []
    converted: DataItem = {}
    names = set()

    for data_field in schema:
        names.add(data_field.name)
        if data_field.name not in item and data_field.nullable:
            continue
        value = item.get(data_field.name)
        if _is_missing(value):
            if data_field.nullable:
                converted[data_field.name] = value
                continue
            errors.append(f"Field '{data_field.name}' is required but missing")
        elif data_field.mixed:
            converted[data_field.name] = value
            continue
        try:
            converted[data_field.name] = convert_to_data_type(
                value, data_field.type, data_field.nullable, data_field.default_value
            )
        except ValueError as e:
            errors.append(f"Field '{data_field.name}': {e}")
            converted[data_field.name] = value

    for key, value in item.items():
        if key in names:
            continue
        if strict:
            errors.append(f"Unexpected field '{key}' found in data")
        converted[key] = value

    return DataValidationResult(
        valid=not errors,
        errors=errors,
        converted_item=converted if convert_types else None,
    )


def convert_data_to_schema(items: Sequence[DataItem], schema: Sequence[DataField],
                           strict: bool = False) -> Tuple[List[DataItem], List[Dict[str, Any]]]:
    """
    Coerce every row.

    Returns:
        (converted rows, [{"index": i, "errors": [...]}] for rows with problems)
    """
    converted = []
    errors = []
    for index, item in enumerate(items):
        result = validate_data_item(item, schema, strict=strict, convert_types=True)
        if not result.valid:
            errors.append({"index": index, "errors": result.errors})
        converted.append(result.converted_item)
    if errors:
        logger.warning(
            f"{len(errors)} of {len(items)} data rows did not match the data schema"
        )
    return converted, errors


def to_json_safe(value: Any) -> Any:
    """Recursively convert dates, numpy scalars and tuples to JSON-encodable values."""
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, (datetime, date, time, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, np.generic):
        return value.item()
    return value
