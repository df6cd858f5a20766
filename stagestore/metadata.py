"""Read-modify-write access to stage metadata records."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from .codec import decode_metadata, encode_metadata
from .errors import DecodeError, StageNotFoundError
from .models import StageMetadata
from .store import KeyValueStore

logger = logging.getLogger(__name__)

_FIELD_ADAPTERS: Dict[str, TypeAdapter[Any]] = {
    name: TypeAdapter(info.annotation) for name, info in StageMetadata.model_fields.items()
}


def _alias(name: str) -> str:
    return StageMetadata.model_fields[name].alias or name


def validate_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a partial metadata update keyed by attribute name.

    Raises :class:`ValueError` for unknown attributes or invalid values.
    """

    validated: Dict[str, Any] = {}
    for name, value in fields.items():
        adapter = _FIELD_ADAPTERS.get(name)
        if adapter is None:
            raise ValueError(f"unknown stage metadata field: {name}")
        try:
            validated[name] = adapter.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"invalid value for {name}: {exc}") from exc
    return validated


class MetadataManager:
    """Manages stage metadata records in a :class:`KeyValueStore`.

    Updates are shallow per-field overlays merged against the value currently
    stored, so concurrent writers touching different fields do not clobber
    each other.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def get(self, stage_id: str) -> StageMetadata:
        raw = await self._store.get(stage_id)
        if raw is None:
            raise StageNotFoundError(stage_id)
        return decode_metadata(raw, key=stage_id, stage_id=stage_id)

    async def exists(self, stage_id: str) -> bool:
        return await self._store.get(stage_id) is not None

    async def create(self, metadata: StageMetadata) -> None:
        await self._store.set(metadata.id, encode_metadata(metadata))

    async def update(self, stage_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Overlay ``fields`` onto the stored record and return the validated fields."""

        if "id" in fields and fields["id"] != stage_id:
            raise ValueError("stage id is immutable")
        validated = validate_fields(fields)
        encoded = {
            _alias(name): _FIELD_ADAPTERS[name].dump_python(
                value, mode="json", by_alias=True, exclude_none=True
            )
            for name, value in validated.items()
        }

        def merge(current: Optional[str]) -> str:
            if current is None:
                record: Dict[str, Any] = {}
            else:
                try:
                    record = json.loads(current)
                except ValueError as exc:
                    raise DecodeError("malformed metadata record", key=stage_id) from exc
                if not isinstance(record, dict):
                    raise DecodeError("metadata record must be a JSON object", key=stage_id)
            for key, value in encoded.items():
                if value is None:
                    record.pop(key, None)
                else:
                    record[key] = value
            return json.dumps(record)

        await self._store.update(stage_id, merge)
        logger.debug("Updated stage %s metadata fields %s", stage_id, sorted(validated))
        return validated

    async def remove(self, stage_id: str) -> None:
        await self._store.remove(stage_id)


__all__ = ["MetadataManager", "validate_fields"]
