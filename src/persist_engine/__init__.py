"""Atomic and sequential content persistence."""

from .persist_engine import PersistEngine

__all__ = ["PersistEngine"]
