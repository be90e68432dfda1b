"""Tree listing and sha resolution."""

from .tree_resolver import TreeResolver

__all__ = ["TreeResolver"]
