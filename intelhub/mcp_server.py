"""MCP server for intelhub.

Exposes the entity reference graph, context assembly and the training
pipeline to AI coding agents via the Model Context Protocol.

Usage:
    intelhub serve [--db /path/to/intelhub.db]
    python -m intelhub.mcp_server [--db /path/to/intelhub.db]

Configure in Claude Code (~/.claude.json):
    {
      "mcpServers": {
        "intelhub": {
          "command": "intelhub",
          "args": ["serve"],
          "env": {"INTELHUB_DB_PATH": "/path/to/project/intelhub.db"}
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from intelhub.activity import log_tool_call
from intelhub.config import Config
from intelhub.storage.db import get_connection
from intelhub.tools.definitions import ALL_TOOLS
from intelhub.tools.handlers import ToolHandlers

logger = logging.getLogger(__name__)


def resolve_db_path(argv: list[str] | None = None, config: Config | None = None) -> Path:
    """Find the database, checking CLI args, then config (env var or default)."""
    argv = sys.argv if argv is None else argv
    for i, arg in enumerate(argv):
        if arg == "--db" and i + 1 < len(argv):
            return Path(argv[i + 1])
    return (config or Config.load()).db_path


def create_server(handlers: ToolHandlers) -> Server:
    server = Server("intelhub")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return ALL_TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        start = time.time()
        error: str | None = None
        try:
            result = handlers.dispatch(name, arguments)
            if not result.get("success"):
                error = result.get("error")
        except Exception as e:
            logger.exception(f"Unhandled error in tool {name}")
            error = str(e)
            result = {"success": False, "error": f"Internal error: {e}"}

        duration_ms = int((time.time() - start) * 1000)
        result_text = json.dumps(result, indent=2, default=str)
        log_tool_call(name, arguments, result_text, error, duration_ms, handlers.config.log_path)
        return [types.TextContent(type="text", text=result_text)]

    return server


async def main(db_path: Path | None = None) -> None:
    config = Config.load()
    path = db_path or resolve_db_path(config=config)
    conn = get_connection(path)
    logger.info(f"Serving intelhub tools from {path}")
    try:
        server = create_server(ToolHandlers(conn, config))
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        conn.close()


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
