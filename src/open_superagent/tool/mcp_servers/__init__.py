# SPDX-FileCopyrightText: 2025 MiromindAI
#
# SPDX-License-Identifier: Apache-2.0
import importlib

from fastmcp import FastMCP

# tool group name -> module holding the FastMCP server of that group
SERVER_MODULES = {
    "searching": "open_superagent.tool.mcp_servers.searching_mcp_server",
    "media": "open_superagent.tool.mcp_servers.media_mcp_server",
    "browser": "open_superagent.tool.mcp_servers.browser_mcp_server",
    "workspace": "open_superagent.tool.mcp_servers.workspace_mcp_server",
    "research": "open_superagent.tool.mcp_servers.research_mcp_server",
    "slides": "open_superagent.tool.mcp_servers.slides_mcp_server",
    "code": "open_superagent.tool.mcp_servers.code_mcp_server",
}


def load_server(group: str) -> FastMCP:
    """Import a tool group's module on first use and return its FastMCP instance."""
    if group not in SERVER_MODULES:
        raise ValueError(f"Unknown tool group: {group}")
    return importlib.import_module(SERVER_MODULES[group]).mcp


__all__ = [
    'SERVER_MODULES',
    'load_server',
]
