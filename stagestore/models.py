from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class StageMember(BaseModel):
    id: int
    role: str = "Admin"


class PermissionOverride(BaseModel):
    """Sparse set of permission flags; unset flags fall back to the role default."""

    model_config = ConfigDict(populate_by_name=True)

    stage_delete: Optional[bool] = Field(default=None, alias="stage.delete")
    stage_save: Optional[bool] = Field(default=None, alias="stage.save")


class StageMetadata(BaseModel):
    """Stage metadata record as persisted in the metadata store."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    permission_overrides: List[PermissionOverride] = Field(
        default_factory=list, alias="permissionOverrides"
    )
    name: str
    time_created: int = Field(alias="timeCreated")
    time_updated: int = Field(alias="timeUpdated")
    description: Optional[str] = None
    is_published: bool = Field(default=False, alias="isPublished")
    members: List[StageMember] = Field(default_factory=list)


class BuildDataItem(BaseModel):
    """One stored spatial object, with properties still in their wire form."""

    type: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)


Chunk = List[BuildDataItem]
BuildData = List[Chunk]


@dataclass(frozen=True)
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class Color3:
    """RGB color with channels in ``[0, 1]``."""

    r: float = 0.0
    g: float = 0.0
    b: float = 0.0

    @classmethod
    def from_hex(cls, value: str) -> "Color3":
        text = value[1:] if value.startswith("#") else value
        if len(text) != 6:
            raise ValueError(f"invalid hex color: {value!r}")
        channels = [int(text[i : i + 2], 16) for i in (0, 2, 4)]
        return cls(*(c / 255 for c in channels))

    def to_hex(self) -> str:
        return "".join(f"{round(c * 255):02x}" for c in (self.r, self.g, self.b))


class Material(IntEnum):
    Plastic = 256
    SmoothPlastic = 272
    Neon = 288
    Wood = 512
    WoodPlanks = 528
    Marble = 784
    Basalt = 788
    Slate = 800
    CrackedLava = 804
    Concrete = 816
    Limestone = 820
    Granite = 832
    Pavement = 836
    Brick = 848
    Pebble = 864
    Cobblestone = 880
    Rock = 896
    Sandstone = 912
    CorrodedMetal = 1040
    DiamondPlate = 1056
    Foil = 1072
    Metal = 1088
    Grass = 1280
    LeafyGrass = 1284
    Sand = 1296
    Fabric = 1312
    Snow = 1328
    Mud = 1344
    Ground = 1360
    Asphalt = 1376
    Salt = 1392
    Ice = 1536
    Glacier = 1552
    Glass = 1568
    ForceField = 1584
    Air = 1792
    Water = 2048


class PartType(IntEnum):
    Ball = 0
    Block = 1
    Cylinder = 2
    Wedge = 3
    CornerWedge = 4


class SurfaceType(IntEnum):
    Smooth = 0
    Glue = 1
    Weld = 2
    Studs = 3
    Inlet = 4
    Universal = 5
    Hinge = 6
    Motor = 7
    SteppingMotor = 8
    SmoothNoOutlines = 10


@dataclass
class SceneObjectDescriptor:
    """A spatial object decoded from a :class:`BuildDataItem`.

    ``skipped`` names the stored properties that could not be decoded and
    were left out of ``properties``.
    """

    type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    skipped: Tuple[str, ...] = ()


__all__ = [
    "BuildData",
    "BuildDataItem",
    "Chunk",
    "Color3",
    "Material",
    "PartType",
    "PermissionOverride",
    "SceneObjectDescriptor",
    "StageMember",
    "StageMetadata",
    "SurfaceType",
    "Vector3",
]
