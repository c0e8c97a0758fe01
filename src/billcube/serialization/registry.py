"""
Function-kind registry for formatting and aggregation.

Formatting and aggregation are restricted, at the serialization boundary, to
a closed set of named kinds with parameters. The registry turns declarative
DimensionSpec / MeasureSpec objects into live descriptors by closing over the
kind's parameters. It is an explicit object: build one with
create_default_registry() and pass it to the codec.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging
import math
import numbers

import numpy as np
import pandas as pd

from billcube.cube.schema import (
    AggregateFunction, DataItem, DimensionDescriptor, MeasureDescriptor,
    default_key, is_numeric
)
from billcube.errors import SerializationError, UnsupportedFunctionKindError
from billcube.serialization.types import DimensionSpec, FunctionSpec, MeasureSpec

logger = logging.getLogger(__name__)

FormatFn = Callable[[Any, Mapping[str, Any]], str]
ParamsValidator = Callable[[Mapping[str, Any]], Optional[str]]
AggregateFn = Callable[[List[Any]], Any]

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}


@dataclass
class FormatKind:
    """A named formatter. validate returns an error message or None."""
    name: str
    format: FormatFn
    validate: Optional[ParamsValidator] = None


@dataclass
class AggregationKind:
    """A named aggregator; `aggregation` marks the built-in kind it implements."""
    name: str
    aggregate: AggregateFn
    aggregation: Optional[AggregateFunction] = None


# --- built-in formatters --------------------------------------------------

def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _decimals(params: Mapping[str, Any], default: int) -> int:
    decimals = params.get("decimals")
    return default if decimals is None else int(decimals)


def format_number(value: Any, params: Mapping[str, Any]) -> str:
    if value is None:
        return ""
    num = _to_number(value)
    if num is None:
        return str(value)
    return f"{num:.{_decimals(params, 2)}f}{params.get('suffix', '')}"


def format_currency(value: Any, params: Mapping[str, Any]) -> str:
    """en-US style currency: -€1,234.50"""
    if value is None:
        return ""
    num = _to_number(value)
    if num is None:
        return str(value)
    code = params.get("currency", "USD")
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    decimals = _decimals(params, 2)
    sign = "-" if num < 0 else ""
    return f"{sign}{symbol}{abs(num):,.{decimals}f}"


def format_percentage(value: Any, params: Mapping[str, Any]) -> str:
    if value is None:
        return ""
    num = _to_number(value)
    if num is None:
        return str(value)
    return f"{num * 100:.{_decimals(params, 1)}f}%"


def format_date(value: Any, params: Mapping[str, Any]) -> str:
    """'short' -> 1/15/24, 'long' -> January 15, 2024, otherwise a strftime pattern."""
    if value is None or value == "":
        return ""
    if isinstance(value, float) and np.isnan(value):
        return ""
    if is_numeric(value):
        ts = pd.to_datetime(value, unit="ms", errors="coerce")
    else:
        ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return str(value)
    style = params.get("format", "short")
    if style == "short":
        return f"{ts.month}/{ts.day}/{ts.year % 100:02d}"
    if style == "long":
        return f"{ts.strftime('%B')} {ts.day}, {ts.year}"
    return ts.strftime(style)


def format_uppercase(value: Any, params: Mapping[str, Any]) -> str:
    return default_key(value).upper()


def format_lowercase(value: Any, params: Mapping[str, Any]) -> str:
    return default_key(value).lower()


def _check_decimals(params: Mapping[str, Any]) -> Optional[str]:
    decimals = params.get("decimals")
    if decimals is None:
        return None
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
        return f"decimals must be a non-negative integer, got {decimals!r}"
    return None


def _validate_number(params: Mapping[str, Any]) -> Optional[str]:
    suffix = params.get("suffix")
    if suffix is not None and not isinstance(suffix, str):
        return f"suffix must be a string, got {suffix!r}"
    return _check_decimals(params)


def _validate_currency(params: Mapping[str, Any]) -> Optional[str]:
    currency = params.get("currency")
    if currency is not None and (not isinstance(currency, str) or not currency):
        return f"currency must be a currency code, got {currency!r}"
    return _check_decimals(params)


def _validate_date(params: Mapping[str, Any]) -> Optional[str]:
    style = params.get("format")
    if style is not None and not isinstance(style, str):
        return f"format must be a string, got {style!r}"
    return None


# --- built-in aggregators -------------------------------------------------

def aggregate_sum(values: List[Any]) -> float:
    return math.fsum(values) if values else 0.0


def aggregate_count(values: List[Any]) -> int:
    return len(values)


def aggregate_average(values: List[Any]) -> float:
    return float(np.mean(values)) if values else 0.0


def aggregate_min(values: List[Any]) -> float:
    return float(np.min(values)) if values else 0.0


def aggregate_max(values: List[Any]) -> float:
    return float(np.max(values)) if values else 0.0


def aggregate_first(values: List[Any]) -> Any:
    return values[0] if values else None


def aggregate_last(values: List[Any]) -> Any:
    return values[-1] if values else None


def aggregate_distinct_count(values: List[Any]) -> int:
    return len(set(values))


class FunctionRegistry:
    """
    Registry of named format and aggregation kinds.

    Example:
        registry = create_default_registry()
        hours = registry.measure("hours", "Hours", "numHours", "sum",
                                 format_function={"type": "number",
                                                  "parameters": {"decimals": 1, "suffix": "h"}})
    """

    def __init__(self):
        self._formats: Dict[str, FormatKind] = {}
        self._aggregations: Dict[str, AggregationKind] = {}

    # --- registration -------------------------------------------------------

    def register_format(self, name: str, format_fn: FormatFn,
                        validate: Optional[ParamsValidator] = None) -> None:
        if name in self._formats:
            logger.debug(f"Replacing format kind '{name}'")
        self._formats[name] = FormatKind(name=name, format=format_fn, validate=validate)

    def register_aggregation(self, name: str, aggregate_fn: AggregateFn,
                             aggregation: Optional[AggregateFunction] = None) -> None:
        """
        Register an aggregation kind.

        Pass `aggregation` only when the function computes that built-in kind;
        associative kinds let the engine combine child cells.
        """
        if name in self._aggregations:
            logger.debug(f"Replacing aggregation kind '{name}'")
        self._aggregations[name] = AggregationKind(
            name=name, aggregate=aggregate_fn, aggregation=aggregation
        )

    @property
    def format_kinds(self) -> List[str]:
        return list(self._formats)

    @property
    def aggregation_kinds(self) -> List[str]:
        return list(self._aggregations)

    def has_format(self, name: str) -> bool:
        return name in self._formats

    def has_aggregation(self, name: str) -> bool:
        return name in self._aggregations

    def copy(self) -> "FunctionRegistry":
        registry = FunctionRegistry()
        registry._formats = dict(self._formats)
        registry._aggregations = dict(self._aggregations)
        return registry

    # --- resolution ---------------------------------------------------------

    def _format_kind(self, name: str) -> FormatKind:
        kind = self._formats.get(name)
        if kind is None:
            raise UnsupportedFunctionKindError(
                f"Unsupported format kind '{name}'. Available: {self.format_kinds}",
                field="formatFunction.type", value=name
            )
        return kind

    def _aggregation_kind(self, name: str) -> AggregationKind:
        kind = self._aggregations.get(name)
        if kind is None:
            raise UnsupportedFunctionKindError(
                f"Unsupported aggregation kind '{name}'. "
                f"Available: {self.aggregation_kinds}",
                field="aggregationFunction", value=name
            )
        return kind

    def check_format(self, spec: FunctionSpec) -> None:
        """
        Raises:
            UnsupportedFunctionKindError: the kind is not registered
            SerializationError: the parameters are invalid for the kind
        """
        kind = self._format_kind(spec.type)
        if kind.validate is not None:
            problem = kind.validate(spec.parameters)
            if problem:
                raise SerializationError(
                    f"Invalid parameters for format kind '{spec.type}': {problem}",
                    field="formatFunction.parameters", value=spec.parameters
                )

    def check_aggregation(self, name: str) -> None:
        self._aggregation_kind(name)

    def formatter(self, spec: Any) -> Callable[[Any], str]:
        """Format function closing over the spec's parameters."""
        spec = FunctionSpec.coerce(spec)
        self.check_format(spec)
        kind = self._format_kind(spec.type)
        params = dict(spec.parameters)
        return lambda value: kind.format(value, params)

    def aggregator(self, name: str) -> AggregateFn:
        return self._aggregation_kind(name).aggregate

    # --- descriptor construction -------------------------------------------

    def build_dimension(self, spec: DimensionSpec) -> DimensionDescriptor:
        """Live dimension for a declarative one."""
        if not spec.field_name:
            raise SerializationError(
                f"Dimension '{spec.id}' is missing fieldName",
                field="dimensions.fieldName", value=spec.id
            )
        field_name = spec.field_name
        formatter = self.formatter(spec.format_function) if spec.format_function else None
        label_mapping = dict(spec.label_mapping) if spec.label_mapping else None

        def get_value(item: DataItem) -> Any:
            return item.get(field_name)

        get_key = None
        if spec.key_field_name:
            key_field = spec.key_field_name

            def get_key(value: Any) -> str:
                if isinstance(value, Mapping):
                    return default_key(value.get(key_field))
                return default_key(value)

        format_value = None
        if formatter is not None or label_mapping is not None:
            def format_value(value: Any) -> str:
                if label_mapping is not None:
                    label = label_mapping.get(default_key(value))
                    if label is not None:
                        return label
                if formatter is not None:
                    return formatter(value)
                return default_key(value)

        return DimensionDescriptor(
            id=spec.id,
            name=spec.name,
            get_value=get_value,
            get_key=get_key,
            format_value=format_value,
            icon=spec.icon,
            description=spec.description,
            spec=spec,
        )

    def build_measure(self, spec: MeasureSpec) -> MeasureDescriptor:
        """Live measure for a declarative one."""
        if not spec.field_name:
            raise SerializationError(
                f"Measure '{spec.id}' is missing fieldName",
                field="measures.fieldName", value=spec.id
            )
        field_name = spec.field_name
        kind = self._aggregation_kind(spec.aggregation_function)
        formatter = self.formatter(spec.format_function) if spec.format_function else None

        def get_value(item: DataItem) -> Any:
            return item.get(field_name)

        return MeasureDescriptor(
            id=spec.id,
            name=spec.name,
            get_value=get_value,
            aggregate=kind.aggregate,
            format_value=formatter,
            aggregation=kind.aggregation,
            icon=spec.icon,
            description=spec.description,
            spec=spec,
        )

    def dimension(self, id: str, name: str, field_name: str,
                  format_function: Any = None,
                  label_mapping: Optional[Dict[str, str]] = None,
                  key_field_name: Optional[str] = None,
                  icon: Optional[str] = None,
                  description: Optional[str] = None) -> DimensionDescriptor:
        """Shortcut: declare and build a dimension in one call."""
        return self.build_dimension(DimensionSpec(
            id=id, name=name, field_name=field_name,
            format_function=format_function, label_mapping=label_mapping,
            key_field_name=key_field_name, icon=icon, description=description,
        ))

    def measure(self, id: str, name: str, field_name: str,
                aggregation: str = "sum",
                format_function: Any = None,
                icon: Optional[str] = None,
                description: Optional[str] = None) -> MeasureDescriptor:
        """Shortcut: declare and build a measure in one call."""
        return self.build_measure(MeasureSpec(
            id=id, name=name, field_name=field_name,
            aggregation_function=aggregation, format_function=format_function,
            icon=icon, description=description,
        ))


def create_default_registry() -> FunctionRegistry:
    """Registry with the built-in format and aggregation kinds."""
    registry = FunctionRegistry()

    registry.register_format("number", format_number, _validate_number)
    registry.register_format("currency", format_currency, _validate_currency)
    registry.register_format("percentage", format_percentage, _check_decimals)
    registry.register_format("date", format_date, _validate_date)
    registry.register_format("uppercase", format_uppercase)
    registry.register_format("lowercase", format_lowercase)

    registry.register_aggregation("sum", aggregate_sum, AggregateFunction.SUM)
    registry.register_aggregation("count", aggregate_count, AggregateFunction.COUNT)
    registry.register_aggregation("average", aggregate_average, AggregateFunction.AVERAGE)
    registry.register_aggregation("min", aggregate_min, AggregateFunction.MIN)
    registry.register_aggregation("max", aggregate_max, AggregateFunction.MAX)
    registry.register_aggregation("first", aggregate_first, AggregateFunction.FIRST)
    registry.register_aggregation("last", aggregate_last, AggregateFunction.LAST)
    registry.register_aggregation("distinctCount", aggregate_distinct_count,
                                  AggregateFunction.DISTINCT_COUNT)
    return registry
