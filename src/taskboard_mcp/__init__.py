"""Taskboard MCP Server - Model Context Protocol integration.

Exposes the dependency graph and requirement quality engines of Taskboard
Core to AI assistants over stdio.

Modules:
- server: stdio MCP server implementation
- formatters: Response formatting utilities
- tools: MCP tool definitions
- handlers: Tool implementation handlers
"""

__version__ = "1.0.0"

from . import formatters
from . import tools
from . import handlers

__all__ = ["formatters", "tools", "handlers", "__version__"]
