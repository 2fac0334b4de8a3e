"""API routers for Taskboard Core."""

from . import users, workspaces, projects, lists, tasks, dependencies, tracking, comments, requirements

__all__ = [
    "users", "workspaces", "projects", "lists", "tasks",
    "dependencies", "tracking", "comments", "requirements",
]
