from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from fastmcp import FastMCP

from factory_console.config import ConsoleConfig
from factory_console.observability import configure_logging, configure_telemetry
from server.lifespan import app_lifespan
from server.resources import register_resources
from server.tools import register_tools

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Browse and edit the factory organisation: departments, factories, production "
    "lines, teams and roles. Call login first; every entity tool checks the "
    "<entity>.<action> permission of the logged-in user."
)

load_dotenv()
_config = ConsoleConfig().resolve()
configure_logging(_config.log_level)
configure_telemetry(_config.telemetry)

mcp = FastMCP(
    name="Factory Console",
    instructions=INSTRUCTIONS,
    lifespan=app_lifespan,
)

register_tools(mcp)
register_resources(mcp)


def main() -> None:
    transport = os.environ.get("MCP_TRANSPORT", "streamable-http")
    if transport == "stdio":
        mcp.run(transport="stdio")
        return
    port = int(os.environ.get("MCP_SERVER_PORT", "8001"))
    logger.info("Serving Factory Console on port %d against %s", port, _config.api_base_url)
    mcp.run(transport="streamable-http", port=port)


if __name__ == "__main__":
    main()
