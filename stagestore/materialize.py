"""Collaborator interface for turning decoded objects into a host scene."""

from __future__ import annotations

from typing import Any, List, Protocol

from .models import SceneObjectDescriptor


class SceneBuilder(Protocol):
    """Receives decoded objects in stored order and produces the host scene."""

    def add_object(self, descriptor: SceneObjectDescriptor) -> None:  # pragma: no cover - interface
        ...

    def build(self) -> Any:  # pragma: no cover - interface
        ...


class DescriptorCollector:
    """Builder that just keeps the descriptors, in the order they were added."""

    def __init__(self) -> None:
        self.objects: List[SceneObjectDescriptor] = []

    def add_object(self, descriptor: SceneObjectDescriptor) -> None:
        self.objects.append(descriptor)

    def build(self) -> List[SceneObjectDescriptor]:
        return list(self.objects)


__all__ = ["DescriptorCollector", "SceneBuilder"]
