from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from factory_console.config import ConsoleConfig
from factory_console.console import Console

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(server: FastMCP):
    config = ConsoleConfig().resolve()
    console = Console(config)

    # Resumes a stored session and spawns the inactivity poll loop.
    await console.start()
    logger.info("Factory console ready against %s", config.api_base_url)

    try:
        yield {"console": console}
    finally:
        await console.aclose()
