"""
Cube schema definitions: dimension and measure descriptors.

A cube schema S = <D, M> is a catalog of dimensions D (categorical axes used
for grouping and filtering) and measures M (numeric quantities aggregated per
group). Descriptors carry executable functions; only descriptors built from a
FunctionRegistry also carry the declarative spec needed for serialization.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING
from enum import Enum
import math
import numbers

import pandas as pd

from billcube.errors import CubeConfigurationError, CubeErrorCode

if TYPE_CHECKING:
    from billcube.serialization.types import DimensionSpec, MeasureSpec


DataItem = Dict[str, Any]

NULL_KEY = "null"


class AggregateFunction(Enum):
    """Aggregation kinds understood by the engine and the function registry."""
    SUM = "sum"
    COUNT = "count"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    FIRST = "first"
    LAST = "last"
    DISTINCT_COUNT = "distinctCount"

    @property
    def is_associative(self) -> bool:
        """Whether a parent value can be derived from child aggregates."""
        return self in (AggregateFunction.SUM, AggregateFunction.COUNT,
                        AggregateFunction.MIN, AggregateFunction.MAX)


def is_numeric(value: Any) -> bool:
    """True for real numbers that can contribute to an aggregate."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return not pd.isna(value)


def default_key(value: Any) -> str:
    """
    String coercion used when a dimension has no get_key.

    None and NaN share the null key. Datetimes use their ISO form, which is
    also how they are written to JSON.
    """
    if value is None or value is pd.NaT:
        return NULL_KEY
    if isinstance(value, float) and math.isnan(value):
        return NULL_KEY
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class DimensionDescriptor:
    """
    A grouping axis.

    Attributes:
        id: Unique identifier (e.g., 'project', 'contractor')
        name: Display label
        get_value: Extracts the raw grouping value from a data item
        get_key: Canonical grouping key; must be a pure function of the raw value
        format_value: Display label for a group
        icon: Optional icon or emoji for UI
        description: Optional description
        spec: Declarative twin, set when built from a FunctionRegistry
    """
    id: str
    name: str
    get_value: Callable[[DataItem], Any]
    get_key: Optional[Callable[[Any], str]] = None
    format_value: Optional[Callable[[Any], str]] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    spec: Optional["DimensionSpec"] = field(default=None, repr=False)

    def key_of(self, value: Any) -> str:
        """Grouping key for a raw value."""
        if self.get_key is not None:
            return self.get_key(value)
        return default_key(value)

    def key_for_item(self, item: DataItem) -> str:
        return self.key_of(self.get_value(item))

    def label_of(self, value: Any) -> str:
        """Display label for a raw value."""
        if self.format_value is not None:
            return self.format_value(value)
        return default_key(value)


@dataclass
class MeasureDescriptor:
    """
    An aggregatable numeric value.

    Attributes:
        id: Unique identifier (e.g., 'hours', 'billing')
        name: Display label
        get_value: Numeric contribution of one item (None when not applicable)
        aggregate: Reduces the numeric contributions of a group to one value;
            must accept an empty list
        format_value: Display formatting of the aggregated value
        aggregation: Aggregation kind, when known. Only associative kinds let
            the engine combine child cells instead of rescanning items.
        icon: Optional icon or emoji for UI
        description: Optional description
        spec: Declarative twin, set when built from a FunctionRegistry
    """
    id: str
    name: str
    get_value: Callable[[DataItem], Any]
    aggregate: Callable[[List[Any]], Any]
    format_value: Optional[Callable[[Any], str]] = None
    aggregation: Optional[AggregateFunction] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    spec: Optional["MeasureSpec"] = field(default=None, repr=False)

    @property
    def is_combinable(self) -> bool:
        return self.aggregation is not None and self.aggregation.is_associative

    def numeric_values(self, items: Sequence[DataItem]) -> List[Any]:
        """Numeric contributions of items; None/NaN/non-numbers are skipped."""
        values = []
        for item in items:
            value = self.get_value(item)
            if is_numeric(value):
                values.append(value)
        return values

    def format(self, value: Any) -> str:
        if self.format_value is not None:
            return self.format_value(value)
        return str(value)


@dataclass
class CubeSchema:
    """
    Catalog of available dimensions and measures.

    Not every catalog entry needs to be active in a given computation.
    """
    dimensions: List[DimensionDescriptor]
    measures: List[MeasureDescriptor]

    def __post_init__(self):
        for kind, entries in (("dimension", self.dimensions), ("measure", self.measures)):
            seen = set()
            for entry in entries:
                if entry.id in seen:
                    raise CubeConfigurationError(
                        f"Duplicate {kind} id '{entry.id}'",
                        field=f"{kind}s", value=entry.id
                    )
                seen.add(entry.id)

    def get_dimension(self, dimension_id: str) -> Optional[DimensionDescriptor]:
        """Get dimension by id."""
        for dim in self.dimensions:
            if dim.id == dimension_id:
                return dim
        return None

    def get_measure(self, measure_id: str) -> Optional[MeasureDescriptor]:
        """Get measure by id."""
        for m in self.measures:
            if m.id == measure_id:
                return m
        return None

    def require_dimension(self, dimension_id: str,
                          field_name: str = "dimensions") -> DimensionDescriptor:
        dim = self.get_dimension(dimension_id)
        if dim is None:
            raise CubeConfigurationError(
                f"Unknown dimension '{dimension_id}'. "
                f"Available: {self.dimension_ids}",
                field=field_name, value=dimension_id,
                code=CubeErrorCode.UNKNOWN_DIMENSION
            )
        return dim

    def require_measure(self, measure_id: str,
                        field_name: str = "measures") -> MeasureDescriptor:
        measure = self.get_measure(measure_id)
        if measure is None:
            raise CubeConfigurationError(
                f"Unknown measure '{measure_id}'. "
                f"Available: {self.measure_ids}",
                field=field_name, value=measure_id,
                code=CubeErrorCode.UNKNOWN_MEASURE
            )
        return measure

    @property
    def dimension_ids(self) -> List[str]:
        """Return list of dimension ids."""
        return [d.id for d in self.dimensions]

    @property
    def measure_ids(self) -> List[str]:
        """Return list of measure ids."""
        return [m.id for m in self.measures]
