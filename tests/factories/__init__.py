"""Shared test factories for the stagestore test suite."""

from .stage import make_chunk, make_item, make_metadata

__all__ = ["make_chunk", "make_item", "make_metadata"]
