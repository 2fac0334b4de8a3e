"""Taskboard core: task ordering, dependency graph and requirement versioning."""

__version__ = "1.0.0"
