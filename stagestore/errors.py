"""Exception hierarchy shared by the stage persistence layer."""

from __future__ import annotations


class StageStoreError(Exception):
    """Base exception for stage storage failures."""


class NotFoundError(StageStoreError):
    """Raised when a key, record or index entry is absent."""


class StageNotFoundError(NotFoundError):
    """Raised when a stage metadata record does not exist."""

    def __init__(self, stage_id: str) -> None:
        super().__init__(f"Stage {stage_id} doesn't exist.")
        self.stage_id = stage_id


class AlreadyPublishedError(StageStoreError):
    """Raised when publishing a stage that is already published."""


class AlreadyUnpublishedError(StageStoreError):
    """Raised when unpublishing a stage that is not published."""


class NoPublishedStagesError(StageStoreError):
    """Raised when random sampling finds no resolvable published stage."""


class DecodeError(StageStoreError):
    """Raised when a stored record cannot be decoded."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        if key is not None:
            message = f"{key}: {message}"
        super().__init__(message)
        self.key = key


class StoreUnavailableError(StageStoreError):
    """Raised when the backing store keeps failing after retries."""


class StoreContentionError(StoreUnavailableError):
    """Raised when an atomic update could not commit within its attempt budget."""


class IDGenerationError(StageStoreError):
    """Raised when no unused stage ID could be generated."""


__all__ = [
    "AlreadyPublishedError",
    "AlreadyUnpublishedError",
    "DecodeError",
    "IDGenerationError",
    "NoPublishedStagesError",
    "NotFoundError",
    "StageNotFoundError",
    "StageStoreError",
    "StoreContentionError",
    "StoreUnavailableError",
]
