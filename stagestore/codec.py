"""Encoding of stage records and decoding of stored spatial objects.

Metadata and chunk records are stored as JSON text. Chunk items keep their
properties in wire form (vectors as ``{"X", "Y", "Z"}`` records, colors as
hex strings, enum values as integers); :func:`decode_object` turns them into
typed values using the property rule table below.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Type

from pydantic import TypeAdapter, ValidationError

from .errors import DecodeError
from .models import (
    BuildData,
    BuildDataItem,
    Chunk,
    Color3,
    Material,
    PartType,
    SceneObjectDescriptor,
    StageMetadata,
    SurfaceType,
    Vector3,
)

logger = logging.getLogger(__name__)

BASE_DURABILITY = "BaseDurability"
CURRENT_DURABILITY = "CurrentDurability"

_CHUNK_ADAPTER: TypeAdapter[List[BuildDataItem]] = TypeAdapter(List[BuildDataItem])


class PropertyKind(Enum):
    SCALAR = "scalar"
    VECTOR3 = "vector3"
    COLOR_HEX = "color_hex"
    ENUM = "enum"


@dataclass(frozen=True)
class PropertyRule:
    kind: PropertyKind
    domain: Optional[Type[IntEnum]] = None

    def __post_init__(self) -> None:
        if self.kind is PropertyKind.ENUM and self.domain is None:
            raise ValueError("enum property rules need a domain")


_SCALAR = PropertyRule(PropertyKind.SCALAR)
_VECTOR = PropertyRule(PropertyKind.VECTOR3)
_SURFACE = PropertyRule(PropertyKind.ENUM, SurfaceType)

PROPERTY_RULES: Mapping[str, PropertyRule] = MappingProxyType(
    {
        "Size": _VECTOR,
        "Position": _VECTOR,
        "Orientation": _VECTOR,
        "Color": PropertyRule(PropertyKind.COLOR_HEX),
        "Material": PropertyRule(PropertyKind.ENUM, Material),
        "Shape": PropertyRule(PropertyKind.ENUM, PartType),
        "BackSurface": _SURFACE,
        "BottomSurface": _SURFACE,
        "FrontSurface": _SURFACE,
        "LeftSurface": _SURFACE,
        "RightSurface": _SURFACE,
        "TopSurface": _SURFACE,
        "Transparency": _SCALAR,
        "Reflectance": _SCALAR,
        "Name": _SCALAR,
        "CastShadow": _SCALAR,
        "Anchored": _SCALAR,
        "CanCollide": _SCALAR,
    }
)


class _Unresolved:
    pass


_UNRESOLVED = _Unresolved()


def _load_json(raw: str | bytes, key: str | None) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"malformed JSON record: {exc}", key=key) from exc


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def encode_metadata(metadata: StageMetadata) -> str:
    return metadata.model_dump_json(by_alias=True, exclude_none=True)


def decode_metadata(
    raw: str | bytes, *, key: str | None = None, stage_id: str | None = None
) -> StageMetadata:
    """Decode a metadata record.

    When ``stage_id`` is given it replaces whatever ``id`` the record carries,
    since the store key is authoritative.
    """
    data = _load_json(raw, key)
    if not isinstance(data, dict):
        raise DecodeError("metadata record must be a JSON object", key=key)
    if stage_id is not None:
        data["id"] = stage_id
    try:
        return StageMetadata.model_validate(data)
    except ValidationError as exc:
        raise DecodeError(f"invalid metadata record: {exc}", key=key) from exc


def encode_chunk(chunk: Chunk) -> str:
    return json.dumps([item.model_dump(mode="json") for item in chunk])


def decode_chunk(raw: str | bytes, *, key: str | None = None) -> Chunk:
    data = _load_json(raw, key)
    if not isinstance(data, list):
        raise DecodeError("chunk record must be a JSON array", key=key)
    try:
        return _CHUNK_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise DecodeError(f"invalid chunk record: {exc}", key=key) from exc


# ---------------------------------------------------------------------------
# Spatial objects
# ---------------------------------------------------------------------------


def _decode_vector(value: Any) -> Vector3:
    return Vector3(float(value["X"]), float(value["Y"]), float(value["Z"]))


def _decode_color(value: Any) -> Color3:
    if not isinstance(value, str):
        raise TypeError("color must be a hex string")
    return Color3.from_hex(value)


def _decode_value(rule: PropertyRule, value: Any) -> Any:
    if rule.kind is PropertyKind.VECTOR3:
        return _decode_vector(value)
    if rule.kind is PropertyKind.COLOR_HEX:
        return _decode_color(value)
    if rule.kind is PropertyKind.ENUM and rule.domain is not None:
        # booleans are ints in Python but never name an enum item
        if isinstance(value, bool):
            return _UNRESOLVED
        try:
            return rule.domain(value)
        except ValueError:
            return _UNRESOLVED
    return value


def decode_object(item: BuildDataItem) -> SceneObjectDescriptor:
    """Return the typed descriptor for ``item``.

    Unknown properties and enum values without a named constant are logged
    and skipped. A malformed value for a known property raises
    :class:`DecodeError`.
    """

    properties: Dict[str, Any] = {"Anchored": True}
    skipped: List[str] = []
    for name, value in item.properties.items():
        rule = PROPERTY_RULES.get(name)
        if rule is None:
            logger.warning("Unknown property: %s", name)
            skipped.append(name)
            continue
        try:
            decoded = _decode_value(rule, value)
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"invalid {item.type}.{name} value {value!r}") from exc
        if decoded is _UNRESOLVED:
            logger.warning(
                "No %s value matches %r for property %s",
                rule.domain.__name__ if rule.domain else "enum",
                value,
                name,
            )
            skipped.append(name)
            continue
        properties[name] = decoded

    attributes = dict(item.attributes)
    base = attributes.get(BASE_DURABILITY)
    if base is not None:
        attributes[CURRENT_DURABILITY] = base
    return SceneObjectDescriptor(
        type=item.type,
        properties=properties,
        attributes=attributes,
        skipped=tuple(skipped),
    )


def _encode_value(value: Any) -> Any:
    if isinstance(value, Vector3):
        return {"X": value.x, "Y": value.y, "Z": value.z}
    if isinstance(value, Color3):
        return value.to_hex()
    if isinstance(value, IntEnum):
        return int(value)
    return value


def encode_object(descriptor: SceneObjectDescriptor) -> BuildDataItem:
    """Return the stored form of ``descriptor``.

    The derived current durability is dropped when a base durability is
    present, since decoding synthesizes it again.
    """

    attributes = dict(descriptor.attributes)
    if BASE_DURABILITY in attributes:
        attributes.pop(CURRENT_DURABILITY, None)
    return BuildDataItem(
        type=descriptor.type,
        properties={name: _encode_value(v) for name, v in descriptor.properties.items()},
        attributes=attributes,
    )


def iter_objects(
    build_data: BuildData,
    decode: Callable[[BuildDataItem], SceneObjectDescriptor] = decode_object,
) -> Iterator[SceneObjectDescriptor]:
    """Yield decoded objects chunk by chunk, preserving stored order."""

    for chunk in build_data:
        for item in chunk:
            yield decode(item)


def count_objects(build_data: BuildData) -> int:
    return sum(len(chunk) for chunk in build_data)


__all__ = [
    "PROPERTY_RULES",
    "PropertyKind",
    "PropertyRule",
    "count_objects",
    "decode_chunk",
    "decode_metadata",
    "decode_object",
    "encode_chunk",
    "encode_metadata",
    "encode_object",
    "iter_objects",
]
