"""MCP tool handlers.

All handlers follow a consistent pattern:
- Accept: arguments dict and an httpx.AsyncClient bound to the API
- Return: list[TextContent]
- Raise httpx errors; the server turns them into error text

Handlers never talk to the database; everything goes through the HTTP API
so access checks apply.
"""
import logging

import httpx
from mcp.types import TextContent

from . import formatters

logger = logging.getLogger("taskboard-mcp.handlers")


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


# ============================================================================
# Dependency Graph Handlers
# ============================================================================

async def handle_get_ready_tasks(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    """List tasks that can be started now.

    COMMON PATTERNS:
    • Pick next work: get_ready_tasks() → first task is the most urgent, oldest
    """
    project_id = arguments["project_id"]
    response = await client.get(f"/projects/{project_id}/ready-tasks")
    response.raise_for_status()
    result = response.json()
    logger.info(f"Found {len(result)} ready tasks in project {project_id}")

    if not result:
        return _text("No tasks are ready. Everything open is waiting on unfinished work.")
    items_text = "\n".join(f"- {formatters.format_task(task)}" for task in result)
    return _text(f"Ready tasks ({len(result)}):\n\n{items_text}")


async def handle_get_blocked_tasks(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    project_id = arguments["project_id"]
    response = await client.get(f"/projects/{project_id}/blocked-tasks")
    response.raise_for_status()
    result = response.json()
    logger.info(f"Found {len(result)} blocked tasks in project {project_id}")

    if not result:
        return _text("No blocked tasks.")
    items_text = "\n".join(formatters.format_blocked_task(entry) for entry in result)
    return _text(f"Blocked tasks ({len(result)}):\n\n{items_text}")


async def handle_get_dependency_chain(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    task_id = arguments["task_id"]
    params = {}
    if arguments.get("max_depth") is not None:
        params["max_depth"] = arguments["max_depth"]
    response = await client.get(f"/tasks/{task_id}/dependency-chain", params=params)
    response.raise_for_status()
    chain = response.json()

    if len(chain) <= 1:
        return _text(f"{formatters.format_task(chain[0]['task'])}\n\nThis task has no dependencies.")
    return _text(f"Dependency chain ({len(chain) - 1} dependencies):\n\n{formatters.format_dependency_chain(chain)}")


async def handle_add_task_dependency(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    """Make a task depend on another.

    A 400 response means the edge would close a cycle; the detail carries
    the cycle path.
    """
    task_id = arguments["task_id"]
    payload = {"depends_on_id": arguments["depends_on_id"]}
    if arguments.get("type"):
        payload["type"] = arguments["type"]
    response = await client.post(f"/tasks/{task_id}/dependencies", json=payload)
    response.raise_for_status()
    edge = response.json()
    logger.info(f"Added dependency {task_id} -> {arguments['depends_on_id']}")
    return _text(f"Dependency added: {formatters.format_dependency(edge)}")


async def handle_remove_task_dependency(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    task_id = arguments["task_id"]
    depends_on_id = arguments["depends_on_id"]
    response = await client.delete(f"/tasks/{task_id}/dependencies/{depends_on_id}")
    response.raise_for_status()
    logger.info(f"Removed dependency {task_id} -> {depends_on_id}")
    return _text(f"Dependency removed: {task_id} no longer depends on {depends_on_id}")


async def handle_check_circular_dependency(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    task_id = arguments["task_id"]
    response = await client.get(
        f"/tasks/{task_id}/dependencies/check",
        params={"depends_on_id": arguments["depends_on_id"]},
    )
    response.raise_for_status()
    result = response.json()
    if result["would_create_cycle"]:
        return _text(
            f"Adding this dependency WOULD create a circular dependency: "
            f"{result['depends_on_id']} already depends on {result['dependent_id']} (directly or transitively)."
        )
    return _text("Safe to add: no circular dependency would be created.")


# ============================================================================
# Board Handlers
# ============================================================================

async def handle_reorder_tasks(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    list_id = arguments["list_id"]
    response = await client.put(
        f"/lists/{list_id}/tasks/reorder",
        json={"ordered_ids": arguments["ordered_ids"]},
    )
    response.raise_for_status()
    tasks = response.json()
    logger.info(f"Reordered {len(tasks)} tasks in list {list_id}")
    items_text = "\n".join(f"{task['position']}. {formatters.format_task(task)}" for task in tasks)
    return _text(f"New order:\n\n{items_text}")


# ============================================================================
# Requirement Handlers
# ============================================================================

async def handle_analyze_requirement(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    requirement_id = arguments["requirement_id"]
    response = await client.post(f"/requirements/{requirement_id}/analyze")
    response.raise_for_status()
    return _text(formatters.format_quality_analysis(response.json()))


async def handle_get_requirement_history(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    """View the change history of a requirement (audit trail).

    COMMON PATTERNS:
    • Audit trail: see who changed what and when
    • Before editing: check the current version to send as expected_version
    """
    requirement_id = arguments["requirement_id"]
    limit = arguments.get("limit", 50)
    response = await client.get(f"/requirements/{requirement_id}/history", params={"limit": limit})
    response.raise_for_status()
    result = response.json()

    if not result:
        logger.info(f"No history found for requirement {requirement_id}")
        return _text("No history found for this requirement.")

    logger.info(f"Retrieved {len(result)} history entries for requirement {requirement_id}")
    history_text = "\n".join(formatters.format_history(item) for item in result)
    return _text(f"Change History:\n\n{history_text}")


async def handle_get_requirement_coverage(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.get("/requirements/coverage", params={"project_id": arguments["project_id"]})
    response.raise_for_status()
    return _text(formatters.format_coverage(response.json()))


HANDLERS = {
    "get_ready_tasks": handle_get_ready_tasks,
    "get_blocked_tasks": handle_get_blocked_tasks,
    "get_dependency_chain": handle_get_dependency_chain,
    "add_task_dependency": handle_add_task_dependency,
    "remove_task_dependency": handle_remove_task_dependency,
    "check_circular_dependency": handle_check_circular_dependency,
    "reorder_tasks": handle_reorder_tasks,
    "analyze_requirement": handle_analyze_requirement,
    "get_requirement_history": handle_get_requirement_history,
    "get_requirement_coverage": handle_get_requirement_coverage,
}
