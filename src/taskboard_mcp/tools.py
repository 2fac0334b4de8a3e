"""MCP tool definitions for Taskboard."""

from mcp.types import Tool


def get_tools() -> list[Tool]:
    """Get the list of all MCP tools for the task board."""
    return [
        # ============================================================================
        # Dependency Graph Tools
        # ============================================================================
        Tool(
            name="get_ready_tasks",
            description="List tasks that can be started now: not done or cancelled, and every task they depend on "
                       "is done or cancelled. Ordered urgent first, then oldest first. "
                       "Common pattern: get_ready_tasks() → pick the first → update it to in_progress.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": {
                        "type": "string",
                        "description": "UUID of the project"
                    }
                },
                "required": ["project_id"]
            }
        ),
        Tool(
            name="get_blocked_tasks",
            description="List tasks waiting on unfinished work, each with the tasks that block it.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": {
                        "type": "string",
                        "description": "UUID of the project"
                    }
                },
                "required": ["project_id"]
            }
        ),
        Tool(
            name="get_dependency_chain",
            description="Show everything a task transitively depends on, breadth first. "
                       "The task itself is listed at depth 0.",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "UUID of the task"
                    },
                    "max_depth": {
                        "type": "integer",
                        "description": "Maximum traversal depth (default: 10)"
                    }
                },
                "required": ["task_id"]
            }
        ),
        Tool(
            name="add_task_dependency",
            description="Make a task depend on another task. "
                       "Errors: 400 (would create a cycle; the cycle is shown), 404 (task not found), "
                       "409 (dependency already exists), 403 (no write access).",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "UUID of the task that waits"
                    },
                    "depends_on_id": {
                        "type": "string",
                        "description": "UUID of the task being waited on"
                    },
                    "type": {
                        "type": "string",
                        "enum": ["finish_to_start", "start_to_start", "finish_to_finish", "start_to_finish"],
                        "description": "Scheduling relation (default: finish_to_start)"
                    }
                },
                "required": ["task_id", "depends_on_id"]
            }
        ),
        Tool(
            name="remove_task_dependency",
            description="Remove a dependency between two tasks. Errors: 404 (no such dependency).",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "UUID of the task that waits"
                    },
                    "depends_on_id": {
                        "type": "string",
                        "description": "UUID of the task being waited on"
                    }
                },
                "required": ["task_id", "depends_on_id"]
            }
        ),
        Tool(
            name="check_circular_dependency",
            description="Check whether adding a dependency would create a cycle, without adding it.",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "UUID of the task that would wait"
                    },
                    "depends_on_id": {
                        "type": "string",
                        "description": "UUID of the candidate task to depend on"
                    }
                },
                "required": ["task_id", "depends_on_id"]
            }
        ),
        # ============================================================================
        # Board Tools
        # ============================================================================
        Tool(
            name="reorder_tasks",
            description="Set the order of every task in a list. ordered_ids must contain exactly the list's "
                       "task ids; missing, extra or repeated ids are rejected with 400.",
            inputSchema={
                "type": "object",
                "properties": {
                    "list_id": {
                        "type": "string",
                        "description": "UUID of the list"
                    },
                    "ordered_ids": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Every task id of the list in the desired order"
                    }
                },
                "required": ["list_id", "ordered_ids"]
            }
        ),
        # ============================================================================
        # Requirement Tools
        # ============================================================================
        Tool(
            name="analyze_requirement",
            description="Score a requirement's quality (0-100) and list issues and suggestions. "
                       "The score is stored on the requirement.",
            inputSchema={
                "type": "object",
                "properties": {
                    "requirement_id": {
                        "type": "string",
                        "description": "UUID of the requirement"
                    }
                },
                "required": ["requirement_id"]
            }
        ),
        Tool(
            name="get_requirement_history",
            description="View the change history of a requirement, newest version first. "
                       "Each entry shows the fields that changed with their old and new values.",
            inputSchema={
                "type": "object",
                "properties": {
                    "requirement_id": {
                        "type": "string",
                        "description": "UUID of the requirement"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum entries to return (default: 50)"
                    }
                },
                "required": ["requirement_id"]
            }
        ),
        Tool(
            name="get_requirement_coverage",
            description="Report how many of a project's requirements are implemented and have test cases.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": {
                        "type": "string",
                        "description": "UUID of the project"
                    }
                },
                "required": ["project_id"]
            }
        ),
    ]
