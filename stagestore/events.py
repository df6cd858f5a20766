"""Synchronous observer signals for stage lifecycle notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Signal:
    """Ordered list of listeners invoked synchronously by :meth:`fire`.

    A listener that raises is logged and does not prevent delivery to the
    remaining listeners.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Listener] = []

    def connect(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    def disconnect(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %s failed", self.name)


@dataclass
class StageEvents:
    """Signals exposed by a stage handle."""

    # (fields) -> None, fields are the changed metadata attributes
    metadata_updated: Signal = field(default_factory=lambda: Signal("metadata_updated"))
    build_data_updated: Signal = field(default_factory=lambda: Signal("build_data_updated"))
    # (chunks_written, total_chunks)
    build_data_progress: Signal = field(default_factory=lambda: Signal("build_data_progress"))
    # (objects_processed, total_objects)
    download_progress: Signal = field(default_factory=lambda: Signal("download_progress"))
    deleted: Signal = field(default_factory=lambda: Signal("deleted"))


__all__ = ["Listener", "Signal", "StageEvents"]
