"""Persistence of user-authored stages over a key-value store."""

from __future__ import annotations

from .chunks import ChunkStore
from .config import (
    NamespaceConfig,
    StageStoreConfig,
    StageStores,
    build_stores,
    find_config_file,
    load_config,
)
from .errors import (
    AlreadyPublishedError,
    AlreadyUnpublishedError,
    DecodeError,
    IDGenerationError,
    NoPublishedStagesError,
    NotFoundError,
    StageNotFoundError,
    StageStoreError,
    StoreContentionError,
    StoreUnavailableError,
)
from .events import Signal, StageEvents
from .materialize import DescriptorCollector, SceneBuilder
from .metadata import MetadataManager
from .models import (
    BuildData,
    BuildDataItem,
    Chunk,
    Color3,
    Material,
    PartType,
    PermissionOverride,
    SceneObjectDescriptor,
    StageMember,
    StageMetadata,
    SurfaceType,
    Vector3,
)
from .ownership import OwnershipIndex
from .published import PublishedIndex
from .stage import Stage, StageService

__all__ = [
    "AlreadyPublishedError",
    "AlreadyUnpublishedError",
    "BuildData",
    "BuildDataItem",
    "Chunk",
    "ChunkStore",
    "Color3",
    "DecodeError",
    "DescriptorCollector",
    "IDGenerationError",
    "Material",
    "MetadataManager",
    "NamespaceConfig",
    "NoPublishedStagesError",
    "NotFoundError",
    "OwnershipIndex",
    "PartType",
    "PermissionOverride",
    "PublishedIndex",
    "SceneBuilder",
    "SceneObjectDescriptor",
    "Signal",
    "Stage",
    "StageEvents",
    "StageMember",
    "StageMetadata",
    "StageNotFoundError",
    "StageService",
    "StageStoreConfig",
    "StageStoreError",
    "StageStores",
    "StoreContentionError",
    "StoreUnavailableError",
    "SurfaceType",
    "Vector3",
    "build_stores",
    "find_config_file",
    "load_config",
]
