"""Taskboard MCP Server - Expose the task board engines to AI assistants."""
import os
import sys
import asyncio
import logging
import traceback
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
    ImageContent,
    EmbeddedResource,
)

from . import formatters
from . import tools
from . import handlers


# Configure logging to stderr; stdout carries the MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr,
    force=True
)
logger = logging.getLogger("taskboard-mcp")

# API Configuration
API_BASE_URL = os.getenv("TASKBOARD_API_URL", "http://localhost:8000/api/v1")
TASKBOARD_USER_ID = os.getenv("TASKBOARD_USER_ID")

logger.info(f"MCP Server starting with TASKBOARD_API_URL: {API_BASE_URL}")
if not TASKBOARD_USER_ID:
    logger.warning("TASKBOARD_USER_ID is not set; API calls will be rejected with 401")


# MCP Server instance
app = Server("taskboard-mcp")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""
    return tools.get_tools()


def build_headers() -> dict:
    headers = {}
    if TASKBOARD_USER_ID:
        headers["X-User-Id"] = TASKBOARD_USER_ID
    return headers


async def dispatch(name: str, arguments: Any, client: httpx.AsyncClient) -> list[TextContent]:
    """Run one tool call; HTTP failures come back as error text, never as exceptions."""
    handler = handlers.HANDLERS.get(name)
    if not handler:
        logger.warning(f"Unknown tool requested: {name}")
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        return await handler(arguments or {}, client)

    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error during {name} call:")
        logger.error(f"  Status: {e.response.status_code}")
        logger.error(f"  URL: {e.request.url}")
        try:
            response_body = e.response.json()
            logger.error(f"  Response body: {response_body}")
            error_detail = formatters.format_error_detail(response_body.get("detail", str(e)))
        except ValueError:
            response_text = e.response.text
            logger.error(f"  Response text: {response_text}")
            error_detail = response_text or str(e)
        return [TextContent(type="text", text=f"Error ({e.response.status_code}): {error_detail}")]

    except httpx.RequestError as e:
        logger.error(f"Request error during {name} call:")
        logger.error(f"  Error type: {type(e).__name__}")
        logger.error(f"  Error message: {str(e)}")
        return [TextContent(type="text", text=f"Error: Connection failed - {str(e)}")]

    except KeyError as e:
        return [TextContent(type="text", text=f"Error: missing required argument {e}")]

    except Exception as e:
        logger.error(f"Unexpected error during {name} call:")
        logger.error(f"  Error type: {type(e).__name__}")
        logger.error(f"  Arguments: {arguments}")
        logger.error(f"  Traceback:\n{traceback.format_exc()}")
        return [TextContent(type="text", text=f"Error: {type(e).__name__}: {str(e)}")]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent | ImageContent | EmbeddedResource]:
    """Handle MCP tool calls by delegating to the handlers."""
    logger.info(f"Tool call: {name} with arguments: {arguments}")
    async with httpx.AsyncClient(base_url=API_BASE_URL, timeout=30.0, headers=build_headers()) as client:
        return await dispatch(name, arguments, client)


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
