"""
Unit tests for the serialization module.
"""

import json
import logging
from dataclasses import replace
from datetime import date, datetime

import numpy as np
import pytest

from billcube.cube.engine import calculate_cube, flatten_groups
from billcube.cube.paths import NodeState
from billcube.cube.schema import AggregateFunction, DimensionDescriptor
from billcube.cube.view import CubeConfig, Filter
from billcube.errors import CubeErrorCode, SerializationError, UnsupportedFunctionKindError
from billcube.serialization.codec import (
    create_serializable_cube_config, deserialize_cube_config, serialize_cube_state,
    validate_serializable_cube_config
)
from billcube.serialization.data_schema import (
    convert_data_to_schema, convert_to_data_type, get_default_value, infer_data_schema,
    to_json_safe, validate_data_item
)
from billcube.serialization.registry import (
    FunctionRegistry, format_currency, format_date, format_number, format_percentage
)
from billcube.serialization.types import (
    DataField, DataType, DimensionSpec, FunctionSpec, MeasureSpec, SCHEMA_VERSION,
    SerializableCubeConfig
)


@pytest.fixture
def wire_config():
    """Minimal serialized config in its JSON-dict form."""
    return {
        "metadata": {"version": "1.0.0", "name": "Regions"},
        "dataSchema": {"fields": [
            {"name": "region", "type": "string", "nullable": False},
            {"name": "revenue", "type": "number", "nullable": False},
        ]},
        "dimensions": [{"id": "region", "name": "Region", "fieldName": "region"}],
        "measures": [{
            "id": "revenue", "name": "Revenue", "fieldName": "revenue",
            "aggregationFunction": "sum",
            "formatFunction": {"type": "currency", "parameters": {"currency": "EUR", "decimals": 2}},
        }],
        "activeMeasures": None,
        "filters": [],
        "groupBy": ["region"],
        "data": [
            {"region": "North", "revenue": 100},
            {"region": "North", "revenue": 50},
            {"region": "South", "revenue": 30},
        ],
    }


class TestRoundTrip:
    def test_round_trip_equivalence(self, billing_config, registry):
        billing_config.filters = [Filter("project", "notEquals", "Gamma")]
        serialized = serialize_cube_state(billing_config, registry)
        restored = deserialize_cube_config(serialized, billing_config.data, registry)

        assert calculate_cube(restored) == calculate_cube(billing_config)

    def test_round_trip_through_json(self, billing_config, registry):
        config = replace(billing_config, breakdown_map={"project:Alpha": "date"})
        text = serialize_cube_state(config, registry, name="Billing").to_json()
        restored = deserialize_cube_config(text, registry=registry)

        assert restored.group_by == ["project", "contractor"]
        assert restored.breakdown_map.to_dict() == {"project:Alpha": "date"}
        assert calculate_cube(restored) == calculate_cube(config)

    def test_currency_format_survives(self, registry):
        config = CubeConfig(
            data=[{"amount": 150}],
            dimensions=[],
            measures=[registry.measure(
                "billing", "Billing", "amount", "sum",
                format_function={"type": "currency",
                                 "parameters": {"currency": "EUR", "decimals": 2}}
            )],
        )
        restored = deserialize_cube_config(serialize_cube_state(config, registry), registry=registry)

        assert config.measures[0].format(150) == "€150.00"
        assert restored.measures[0].format(150) == "€150.00"

    def test_node_states_and_breakdowns_preserved(self, region_config, registry):
        config = CubeConfig(
            data=region_config.data,
            dimensions=region_config.dimensions,
            measures=region_config.measures,
            breakdown_map={"": "region", "region:North": None},
            node_states={"region:North": NodeState(is_expanded=True)},
        )
        serialized = serialize_cube_state(config, registry)
        assert serialized.breakdown_map == [["", "region"], ["region:North", None]]
        assert serialized.node_states == [["region:North", {"isExpanded": True}]]

        restored = deserialize_cube_config(serialized.to_dict(), registry=registry)
        assert restored.breakdown_map == config.breakdown_map
        assert restored.node_states.is_expanded("region:North")

    def test_without_data(self, region_config, registry):
        serialized = serialize_cube_state(region_config, registry, include_data=False)
        assert serialized.data is None
        assert [f.name for f in serialized.data_schema] == ["region", "revenue"]

        restored = deserialize_cube_config(serialized, region_config.data, registry)
        assert calculate_cube(restored).total_items == 3

    def test_numeric_strings_are_not_parsed(self, registry):
        config = CubeConfig(
            data=[{"region": "North", "revenue": 100}, {"region": "North", "revenue": "50"}],
            dimensions=[registry.dimension("region", "Region", "region")],
            measures=[registry.measure("revenue", "Revenue", "revenue", "sum")],
            group_by=["region"],
        )
        serialized = serialize_cube_state(config, registry)
        restored = deserialize_cube_config(serialized, config.data, registry)

        assert restored.data == config.data
        assert calculate_cube(restored).get_grand_total("revenue").value == 100.0
        assert calculate_cube(restored) == calculate_cube(config)

    @pytest.mark.parametrize("rows", [
        [{"region": "North", "revenue": 100}, {"region": "North", "revenue": "50"},
         {"region": "South", "revenue": "7.5"}],
        [{"region": "North", "revenue": 100}, {"region": "North", "revenue": True},
         {"region": "South", "revenue": 2}],
        [{"region": float("nan"), "revenue": 1}, {"region": "A", "revenue": 2},
         {"region": None, "revenue": 4}],
        [{"region": datetime(2024, 1, 15, 8, 30), "revenue": 1},
         {"region": datetime(2024, 1, 15, 8, 30), "revenue": 2},
         {"region": datetime(2024, 1, 16, 9, 0), "revenue": 3}],
    ], ids=["numeric-strings", "booleans-and-numbers", "nan-keys", "datetime-keys"])
    def test_heterogeneous_data(self, registry, rows):
        config = CubeConfig(
            data=rows,
            dimensions=[registry.dimension("region", "Region", "region")],
            measures=[
                registry.measure("revenue", "Revenue", "revenue", "sum"),
                registry.measure("entries", "Entries", "revenue", "count"),
            ],
            group_by=["region"],
        )
        expected = _outline(calculate_cube(config))
        serialized = serialize_cube_state(config, registry)

        with_data = deserialize_cube_config(serialized, config.data, registry)
        through_json = deserialize_cube_config(serialized.to_json(), registry=registry)

        assert _outline(calculate_cube(with_data)) == expected
        assert _outline(calculate_cube(through_json)) == expected


def _outline(result):
    """Keys, labels and cells of every group, without the raw dimension values."""
    groups = [
        (g.path, g.dimension_label, g.item_count,
         [(c.measure_id, c.value, c.formatted_value, c.sample_size) for c in g.cells])
        for g in flatten_groups(result.groups)
    ]
    totals = [(c.measure_id, c.value, c.sample_size) for c in result.grand_totals]
    return groups, totals


class TestCodecFailures:
    def test_custom_descriptor_not_serializable(self, region_config, registry):
        region_config.dimensions = [
            DimensionDescriptor("region", "Region", lambda item: item["region"].upper())
        ]
        with pytest.raises(SerializationError) as exc_info:
            serialize_cube_state(region_config, registry)
        assert exc_info.value.ERROR_CODE == CubeErrorCode.NOT_SERIALIZABLE
        assert exc_info.value.value == "region"

    def test_kind_missing_from_registry(self, region_config):
        minimal = FunctionRegistry()
        with pytest.raises(UnsupportedFunctionKindError):
            serialize_cube_state(region_config, minimal)

    def test_unknown_aggregation_kind(self, wire_config, registry):
        wire_config["measures"][0]["aggregationFunction"] = "median"
        with pytest.raises(UnsupportedFunctionKindError) as exc_info:
            deserialize_cube_config(wire_config, registry=registry)
        assert exc_info.value.value == "median"

    def test_unknown_format_kind(self, wire_config, registry):
        wire_config["measures"][0]["formatFunction"] = {"type": "roman"}
        with pytest.raises(UnsupportedFunctionKindError):
            deserialize_cube_config(wire_config, registry=registry)

    def test_missing_field_name(self, wire_config, registry):
        del wire_config["dimensions"][0]["fieldName"]
        with pytest.raises(SerializationError) as exc_info:
            deserialize_cube_config(wire_config, registry=registry)
        assert "fieldName" in exc_info.value.message

    def test_invalid_parameters(self, wire_config, registry):
        wire_config["measures"][0]["formatFunction"]["parameters"]["decimals"] = -1
        with pytest.raises(SerializationError) as exc_info:
            deserialize_cube_config(wire_config, registry=registry)
        assert not isinstance(exc_info.value, UnsupportedFunctionKindError)

    def test_unresolved_ids_wrapped(self, wire_config, registry):
        wire_config["groupBy"] = ["country"]
        with pytest.raises(SerializationError) as exc_info:
            deserialize_cube_config(wire_config, registry=registry)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_invalid_json(self, registry):
        with pytest.raises(SerializationError):
            deserialize_cube_config("{not json", registry=registry)

    def test_malformed_pairs(self, wire_config):
        wire_config["breakdownMap"] = [["region:North"]]
        with pytest.raises(SerializationError):
            SerializableCubeConfig.from_dict(wire_config)


class TestWireFormat:
    def test_camel_case_keys(self, region_config, registry):
        data = serialize_cube_state(region_config, registry).to_dict()
        assert set(data) >= {"metadata", "dataSchema", "dimensions", "measures",
                             "activeMeasures", "filters", "groupBy", "data"}
        assert data["metadata"]["version"] == SCHEMA_VERSION
        assert data["measures"][0]["aggregationFunction"] == "sum"
        assert data["dimensions"][0]["fieldName"] == "region"
        json.dumps(data)

    def test_unknown_version_falls_back(self, wire_config, caplog):
        wire_config["metadata"]["version"] = "0.1"
        with caplog.at_level(logging.WARNING):
            cfg = SerializableCubeConfig.from_dict(wire_config)
        assert cfg.metadata.version == "1.0.0"
        assert "0.1" in caplog.text

    def test_missing_metadata(self, wire_config):
        del wire_config["metadata"]
        cfg = SerializableCubeConfig.from_dict(wire_config)
        assert cfg.metadata.version == "1.0.0"
        assert cfg.name == "Cube Configuration"

    def test_legacy_keys_migrated(self, wire_config, registry):
        del wire_config["groupBy"]
        wire_config["defaultDimensionSequence"] = ["region"]
        wire_config["breakdownMap"] = {"": "region"}
        cfg = SerializableCubeConfig.from_dict(wire_config)

        assert cfg.group_by == ["region"]
        assert cfg.breakdown_map == [["", "region"]]
        assert len(calculate_cube(deserialize_cube_config(cfg, registry=registry)).groups) == 2

    def test_initial_grouping_migrated(self, wire_config):
        del wire_config["groupBy"]
        wire_config["initialGrouping"] = ["region"]
        assert SerializableCubeConfig.from_dict(wire_config).group_by == ["region"]

    def test_label_mapping_wins(self, registry):
        spec = DimensionSpec("channel", "Channel", "channel",
                             format_function="uppercase",
                             label_mapping={"web": "Online shop"})
        dim = registry.build_dimension(spec)
        assert dim.label_of("web") == "Online shop"
        assert dim.label_of("store") == "STORE"
        assert DimensionSpec.from_dict(spec.to_dict()) == spec

    def test_key_field_name(self, registry):
        dim = registry.dimension("client", "Client", "client", key_field_name="id")
        assert dim.key_for_item({"client": {"id": 7, "name": "ACME"}}) == "7"
        assert dim.key_for_item({"client": None}) == "null"

    def test_create_serializable_cube_config(self, registry):
        cfg = create_serializable_cube_config(
            "Regions",
            [DataField("region", DataType.STRING), DataField("revenue", "number")],
            [DimensionSpec("region", "Region", "region")],
            [MeasureSpec("revenue", "Revenue", "revenue", "sum")],
            group_by=["region"],
            breakdown_map={"": "region"},
        )
        assert cfg.breakdown_map == [["", "region"]]
        assert validate_serializable_cube_config(cfg) == []

        config = deserialize_cube_config(cfg, [{"region": "North", "revenue": "12.5"}], registry)
        assert config.data[0]["revenue"] == 12.5


class TestValidateSerializableConfig:
    def test_empty(self):
        errors = validate_serializable_cube_config({})
        assert "Missing or empty dimensions" in errors
        assert "Missing or empty measures" in errors
        assert "Missing or empty dataSchema.fields" in errors

    def test_unknown_references(self, wire_config):
        wire_config["groupBy"] = ["country"]
        wire_config["activeMeasures"] = ["profit"]
        wire_config["filters"] = [{"dimensionId": "country", "operator": "equals", "value": "DK"}]
        wire_config["measures"][0]["fieldName"] = "turnover"
        errors = validate_serializable_cube_config(wire_config)

        assert "groupBy references unknown dimension 'country'" in errors
        assert "activeMeasures references unknown measure 'profit'" in errors
        assert any("Filter 0" in e for e in errors)
        assert any("turnover" in e for e in errors)

    def test_malformed_input_reported(self):
        errors = validate_serializable_cube_config("[1, 2")
        assert len(errors) == 1

    def test_valid(self, wire_config):
        assert validate_serializable_cube_config(wire_config) == []

    def test_kinds_checked_against_registry(self, wire_config):
        wire_config["measures"][0]["aggregationFunction"] = "median"
        wire_config["dimensions"][0]["formatFunction"] = {"type": "titlecase"}

        assert validate_serializable_cube_config(wire_config) == []
        errors = validate_serializable_cube_config(wire_config, FunctionRegistry())
        assert "Measure 0: unknown aggregation kind 'median'" in errors
        assert "Measure 0: unknown format kind 'currency'" in errors
        assert "Dimension 0: unknown format kind 'titlecase'" in errors

    def test_default_registry_accepts_built_in_kinds(self, wire_config, registry):
        assert validate_serializable_cube_config(wire_config, registry) == []


class TestFunctionRegistry:
    def test_default_kinds(self, registry):
        assert set(registry.format_kinds) == {
            "number", "currency", "percentage", "date", "uppercase", "lowercase"
        }
        assert set(registry.aggregation_kinds) == {
            "sum", "count", "average", "min", "max", "first", "last", "distinctCount"
        }

    def test_custom_aggregation(self, registry):
        registry.register_aggregation("median", lambda values: sorted(values)[len(values) // 2])
        measure = registry.measure("p50", "Median", "hours", "median")
        assert measure.aggregation is None
        assert not measure.is_combinable
        assert measure.aggregate([3, 1, 2]) == 2

    def test_copy_is_independent(self, registry):
        copied = registry.copy()
        copied.register_format("shout", lambda value, params: f"{value}!")
        assert copied.has_format("shout")
        assert not registry.has_format("shout")

    def test_builtin_aggregators(self, registry):
        assert registry.aggregator("sum")([]) == 0.0
        assert registry.aggregator("average")([1, 2, 3, 4]) == 2.5
        assert registry.aggregator("first")([]) is None
        assert registry.aggregator("last")([1, 2]) == 2
        assert registry.aggregator("distinctCount")([1, 1, 2]) == 2
        assert registry.build_measure(MeasureSpec("n", "N", "x", "count")).aggregation \
            == AggregateFunction.COUNT

    def test_function_spec_coerce(self):
        assert FunctionSpec.coerce(None) is None
        assert FunctionSpec.coerce("uppercase") == FunctionSpec("uppercase")
        with pytest.raises(SerializationError):
            FunctionSpec.coerce({"parameters": {}})


class TestFormatters:
    def test_number(self):
        assert format_number(1234.5, {}) == "1234.50"
        assert format_number(7.26, {"decimals": 1, "suffix": " h"}) == "7.3 h"
        assert format_number(None, {}) == ""

    def test_currency(self):
        assert format_currency(150, {"currency": "EUR", "decimals": 2}) == "€150.00"
        assert format_currency(-1234.5, {"currency": "USD"}) == "-$1,234.50"
        assert format_currency(1500, {"currency": "JPY", "decimals": 0}) == "¥1,500"
        assert format_currency(10, {"currency": "CHF"}) == "CHF 10.00"
        assert format_currency("abc", {}) == "abc"

    def test_percentage(self):
        assert format_percentage(0.256, {}) == "25.6%"
        assert format_percentage(0.5, {"decimals": 0}) == "50%"

    def test_date(self):
        assert format_date("2024-01-15", {"format": "short"}) == "1/15/24"
        assert format_date("2024-01-15", {"format": "long"}) == "January 15, 2024"
        assert format_date("2024-01-15", {"format": "%Y/%m"}) == "2024/01"
        assert format_date("someday", {}) == "someday"
        assert format_date(None, {}) == ""
        assert format_date(float("nan"), {}) == ""


class TestDataSchema:
    def test_infer(self):
        fields = infer_data_schema([
            {"name": "a", "hours": 1.5, "billable": True, "day": "2024-01-15", "note": None},
            {"name": "b", "hours": "2", "billable": False, "day": "2024-01-16", "note": None},
            {"name": "c", "hours": 3, "billable": True, "day": "2024-01-17T09:00:00"},
        ])
        by_name = {f.name: f for f in fields}

        assert by_name["name"].type == DataType.STRING
        assert not by_name["name"].nullable
        assert by_name["hours"].type == DataType.NUMBER
        assert by_name["hours"].nullable
        assert by_name["hours"].mixed
        assert by_name["billable"].type == DataType.BOOLEAN
        assert by_name["day"].type == DataType.DATE_TIME
        assert by_name["note"].nullable

    def test_mixed_fields_keep_present_values(self):
        fields = infer_data_schema([{"hours": 1.5}, {"hours": "2"}, {"hours": True}])
        assert fields[0].mixed
        assert fields[0].to_dict()["mixed"] is True
        assert DataField.from_dict(fields[0].to_dict()) == fields[0]

        rows, errors = convert_data_to_schema([{"hours": "2"}, {"hours": True}, {}], fields)
        assert rows == [{"hours": "2"}, {"hours": True}, {}]
        assert errors == []

    def test_single_type_fields_are_not_mixed(self):
        fields = infer_data_schema([{"hours": 1.5}, {"hours": None}])
        assert not fields[0].mixed
        assert "mixed" not in fields[0].to_dict()

    def test_nullable_nan_is_kept(self):
        schema = [DataField("client", DataType.STRING, nullable=True)]
        result = validate_data_item({"client": float("nan")}, schema)
        assert result.valid
        assert np.isnan(result.converted_item["client"])

    def test_convert(self):
        assert convert_to_data_type("42", DataType.NUMBER) == 42
        assert convert_to_data_type("2.5", DataType.NUMBER) == 2.5
        assert convert_to_data_type("yes", DataType.BOOLEAN) is True
        assert convert_to_data_type(12, DataType.STRING) == "12"
        assert convert_to_data_type("2024-01-15", DataType.DATE) == "2024-01-15"
        assert convert_to_data_type(None, DataType.NUMBER, nullable=True) is None
        assert convert_to_data_type(None, DataType.NUMBER, default_value=8) == 8
        assert convert_to_data_type(float("nan"), DataType.TIME) == "00:00:00"

    @pytest.mark.parametrize("value,data_type", [
        ("abc", DataType.NUMBER),
        (True, DataType.NUMBER),
        ("maybe", DataType.BOOLEAN),
        ("not a date", DataType.DATE),
        ("25 o'clock", DataType.TIME),
    ])
    def test_convert_failures(self, value, data_type):
        with pytest.raises(ValueError):
            convert_to_data_type(value, data_type)

    def test_default_values(self):
        assert get_default_value(DataType.STRING) == ""
        assert get_default_value(DataType.NUMBER) == 0
        assert get_default_value(DataType.BOOLEAN) is False
        assert len(get_default_value(DataType.DATE)) == 10

    def test_validate_item(self):
        schema = [
            DataField("hours", DataType.NUMBER),
            DataField("note", DataType.STRING, nullable=True),
        ]
        result = validate_data_item({"hours": "3", "extra": 1}, schema)
        assert result.valid
        assert result.converted_item == {"hours": 3, "extra": 1}

        strict = validate_data_item({"hours": 3, "extra": 1}, schema, strict=True)
        assert not strict.valid
        assert "Unexpected field 'extra' found in data" in strict.errors

        missing = validate_data_item({}, schema)
        assert not missing.valid
        assert missing.converted_item == {"hours": 0}

    def test_convert_rows_keeps_bad_values(self, caplog):
        schema = [DataField("hours", DataType.NUMBER, nullable=True)]
        with caplog.at_level(logging.WARNING):
            rows, errors = convert_data_to_schema(
                [{"hours": "1.5"}, {"hours": "n/a"}, {}], schema
            )
        assert rows == [{"hours": 1.5}, {"hours": "n/a"}, {}]
        assert [e["index"] for e in errors] == [1]
        assert "1 of 3 data rows" in caplog.text

    def test_to_json_safe(self):
        assert to_json_safe({"d": date(2024, 1, 15), "n": np.int64(3), "t": (1, 2)}) == {
            "d": "2024-01-15", "n": 3, "t": [1, 2]
        }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
