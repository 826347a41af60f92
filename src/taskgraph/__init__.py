"""Dependency graph integrity and reorganization for hierarchical task lists."""

__version__ = "0.1.0"
