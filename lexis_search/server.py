"""
Lexis Search - MCP Server Entry Point

Exposes the records-search flow as Model Context Protocol tools:
- lexis_search_begin: run up to the CAPTCHA and suspend the session
- lexis_search_resume: finish a suspended session by id
- lexis_search: single call with automated CAPTCHA solving
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from lexis_search.core.context import RuntimeContext
from lexis_search.core.flow import FlowController, FlowResult

logging.basicConfig(
    level=os.getenv("LEXIS_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("lexis.server")

_context: RuntimeContext | None = None
_controller: FlowController | None = None


async def get_controller() -> FlowController:
    """Get or create the process-wide flow controller."""
    global _context, _controller

    if _controller is None:
        _context = RuntimeContext.from_env()
        _controller = FlowController(_context)
        logger.info("[Server] Flow controller initialized")

    return _controller


async def cleanup_controller() -> None:
    global _context, _controller

    if _context is not None:
        await _context.close()
        logger.info("[Server] Runtime context closed")
    _context = None
    _controller = None


def result_to_content(result: FlowResult) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result.to_dict(), indent=2, default=str))]


SEARCH_PROPERTIES: dict[str, Any] = {
    "state": {"type": "string", "description": "State whose portal to search, e.g. 'Florida'"},
    "jurisdiction": {"type": "string", "description": "Jurisdiction/agency, e.g. 'Orange County'"},
    "reportNumber": {"type": "string", "description": "Report number (search shape 1)"},
    "lastName": {"type": "string", "description": "Last name (search shapes 2 and 3)"},
    "dateOfIncident": {"type": "string", "description": "Date of incident MM/DD/YYYY (with lastName)"},
    "locationStreet": {"type": "string", "description": "Street of the incident (with lastName)"},
}


server = Server("lexis-search")


@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="lexis_search_begin",
            description="""Open the records portal in a remote browser, select state and jurisdiction,
fill the search form and stop at the CAPTCHA.

Provide exactly one search shape: reportNumber, or lastName + dateOfIncident,
or lastName + locationStreet. Returns a sessionId and a liveViewUrl; solve the
CAPTCHA on the live session, then call lexis_search_resume.""",
            inputSchema={
                "type": "object",
                "properties": SEARCH_PROPERTIES,
                "required": ["state", "jurisdiction"],
            },
        ),
        Tool(
            name="lexis_search_resume",
            description="""Reattach to a session left at the CAPTCHA by lexis_search_begin, submit the
search, accept the terms dialog and add the found report to the cart.

Always closes the browser connection.""",
            inputSchema={
                "type": "object",
                "properties": {
                    "sessionId": {"type": "string", "description": "Session id returned by begin"},
                },
                "required": ["sessionId"],
            },
        ),
        Tool(
            name="lexis_search",
            description="""Run the whole search in one call with automated CAPTCHA solving.

If the CAPTCHA cannot be cleared automatically the session is kept alive and a
captcha_required step with sessionId is returned for lexis_search_resume.""",
            inputSchema={
                "type": "object",
                "properties": {
                    **SEARCH_PROPERTIES,
                    "useRemoteSolver": {
                        "type": "boolean",
                        "description": "Allow the paid remote CAPTCHA solver",
                    },
                },
                "required": ["state", "jurisdiction"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    # arguments are never logged whole: they carry personal data
    logger.info(f"[Server] Tool called: {name}")

    try:
        controller = await get_controller()

        if name == "lexis_search_begin":
            return result_to_content(await controller.begin(arguments))

        if name == "lexis_search_resume":
            return result_to_content(await controller.resume(str(arguments.get("sessionId") or "")))

        if name == "lexis_search":
            use_remote = arguments.get("useRemoteSolver")
            return result_to_content(
                await controller.run(arguments, use_remote_solver=None if use_remote is None else bool(use_remote))
            )

        return [TextContent(type="text", text=json.dumps({"ok": False, "error": f"Unknown tool: {name}"}))]

    except Exception as e:
        logger.exception(f"[Server] Error in tool {name}: {e}")
        return [TextContent(type="text", text=json.dumps({"ok": False, "error": str(e), "tool": name}))]


async def main() -> None:
    """Main entry point for the MCP server."""
    logger.info("[Server] Starting Lexis Search MCP Server...")

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        await cleanup_controller()


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
