from __future__ import annotations

import json
import logging

import pytest

from stagestore.codec import (
    PROPERTY_RULES,
    PropertyKind,
    PropertyRule,
    decode_chunk,
    decode_metadata,
    decode_object,
    encode_chunk,
    encode_metadata,
    encode_object,
)
from stagestore.errors import DecodeError
from stagestore.models import (
    BuildDataItem,
    Color3,
    Material,
    PartType,
    PermissionOverride,
    SurfaceType,
    Vector3,
)
from tests.factories import make_chunk, make_metadata


def test_metadata_round_trip_uses_camel_case_record() -> None:
    metadata = make_metadata(
        description="desc",
        permission_overrides=[PermissionOverride(stage_delete=False)],
    )

    raw = encode_metadata(metadata)
    record = json.loads(raw)

    assert set(record) == {
        "id",
        "permissionOverrides",
        "name",
        "timeCreated",
        "timeUpdated",
        "description",
        "isPublished",
        "members",
    }
    assert record["permissionOverrides"] == [{"stage.delete": False}]
    assert record["members"] == [{"id": 42, "role": "Admin"}]
    assert decode_metadata(raw) == metadata


def test_metadata_without_description_omits_the_field() -> None:
    metadata = make_metadata()

    raw = encode_metadata(metadata)

    assert "description" not in json.loads(raw)
    assert decode_metadata(raw) == metadata


def test_decode_metadata_prefers_key_over_stored_id() -> None:
    raw = encode_metadata(make_metadata("stored"))

    assert decode_metadata(raw, stage_id="from-key").id == "from-key"


@pytest.mark.parametrize(
    "raw",
    ["not json", "[1, 2]", json.dumps({"id": "s1", "name": "x"})],
)
def test_decode_metadata_rejects_malformed_records(raw: str) -> None:
    with pytest.raises(DecodeError):
        decode_metadata(raw, key="s1")


def test_chunk_round_trip() -> None:
    chunk = make_chunk("a", "b")
    chunk[0].attributes["BaseDurability"] = 3

    assert decode_chunk(encode_chunk(chunk)) == chunk


@pytest.mark.parametrize("raw", ["{}", "[{\"properties\": {}}]", "oops"])
def test_decode_chunk_rejects_bad_structure(raw: str) -> None:
    with pytest.raises(DecodeError):
        decode_chunk(raw, key="s1/1")


def test_decode_object_decodes_each_property_kind() -> None:
    item = BuildDataItem(
        type="Part",
        properties={
            "Size": {"X": 4, "Y": 1, "Z": 2},
            "Position": {"X": 0, "Y": 10.5, "Z": -3},
            "Color": "#ff8000",
            "Material": 512,
            "Shape": 2,
            "TopSurface": 3,
            "Transparency": 0.25,
            "CanCollide": False,
            "Name": "Floor",
        },
    )

    descriptor = decode_object(item)

    assert descriptor.type == "Part"
    assert descriptor.properties["Size"] == Vector3(4.0, 1.0, 2.0)
    assert descriptor.properties["Position"] == Vector3(0.0, 10.5, -3.0)
    assert descriptor.properties["Color"] == Color3(1.0, 128 / 255, 0.0)
    assert descriptor.properties["Material"] is Material.Wood
    assert descriptor.properties["Shape"] is PartType.Cylinder
    assert descriptor.properties["TopSurface"] is SurfaceType.Studs
    assert descriptor.properties["Transparency"] == 0.25
    assert descriptor.properties["CanCollide"] is False
    assert descriptor.properties["Anchored"] is True
    assert descriptor.skipped == ()


def test_unknown_property_is_skipped_with_warning(caplog) -> None:
    caplog.set_level(logging.WARNING)
    item = BuildDataItem(type="Part", properties={"FooBarBaz": 1, "Name": "x"})

    descriptor = decode_object(item)

    assert "FooBarBaz" not in descriptor.properties
    assert descriptor.skipped == ("FooBarBaz",)
    assert descriptor.properties["Name"] == "x"
    assert any("FooBarBaz" in r.getMessage() for r in caplog.records)


def test_unmatched_enum_value_is_skipped() -> None:
    descriptor = decode_object(BuildDataItem(type="Part", properties={"Material": 7}))

    assert "Material" not in descriptor.properties
    assert descriptor.skipped == ("Material",)


@pytest.mark.parametrize(
    "properties",
    [{"Size": {"X": 1, "Y": 2}}, {"Color": "zzzzzz"}, {"Color": 12}, {"Position": [1, 2, 3]}],
)
def test_malformed_known_property_fails(properties) -> None:
    with pytest.raises(DecodeError):
        decode_object(BuildDataItem(type="Part", properties=properties))


def test_base_durability_synthesizes_current_durability() -> None:
    item = BuildDataItem(type="Part", attributes={"BaseDurability": 5, "Team": "red"})

    descriptor = decode_object(item)

    assert descriptor.attributes == {"BaseDurability": 5, "CurrentDurability": 5, "Team": "red"}
    assert "CurrentDurability" not in item.attributes


def test_encode_object_restores_wire_form() -> None:
    item = BuildDataItem(
        type="WedgePart",
        properties={
            "Orientation": {"X": 0.0, "Y": 90.0, "Z": 0.0},
            "Color": "0a0b0c",
            "BackSurface": 0,
            "Anchored": False,
        },
        attributes={"BaseDurability": 2},
    )

    assert encode_object(decode_object(item)) == item


def test_boolean_enum_values_are_skipped(caplog) -> None:
    caplog.set_level(logging.WARNING)
    item = BuildDataItem(type="Part", properties={"Name": "flag", "Shape": True, "TopSurface": False})

    descriptor = decode_object(item)

    assert "Shape" not in descriptor.properties
    assert "TopSurface" not in descriptor.properties
    assert descriptor.skipped == ("Shape", "TopSurface")
    assert any("Shape" in r.getMessage() for r in caplog.records)


def test_enum_property_rule_requires_domain() -> None:
    with pytest.raises(ValueError):
        PropertyRule(PropertyKind.ENUM)
    assert PROPERTY_RULES["Shape"].domain is PartType
