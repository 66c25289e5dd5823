"""
Model Context Protocol server exposing the entity lookup tools over stdio.

Run with DATASET_CONFIG_FILE pointing at a dataset file, e.g.
    DATASET_CONFIG_FILE=datasets/starwars.json python mcp_server.py
"""
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

import config
from services.tools import EntityToolService

logger = logging.getLogger(__name__)


async def run_tool(service: EntityToolService, tool_name: str, name: str) -> str:
    """
    Runs a tool and unwraps its payload. Error payloads are raised as
    ToolError so the client receives isError=true with the message.
    """
    result = await service.call_tool(tool_name, {"name": name})
    text = result.content[0].text
    if result.isError:
        raise ToolError(text)
    return text


def create_server(service: EntityToolService) -> FastMCP:
    """
    Creates the MCP server and registers the dataset's two tools.
    """
    dataset = service.dataset

    @asynccontextmanager
    async def lifespan(server: FastMCP):
        try:
            yield {}
        finally:
            await service.close()

    server = FastMCP(dataset.server_name, lifespan=lifespan)
    EntityName = Annotated[str, Field(description=f"The name of the {dataset.entity_label}")]

    async def fetch_entity(name: EntityName) -> str:
        return await run_tool(service, dataset.tools.fetch_name, name)

    async def find_similar(name: EntityName) -> str:
        return await run_tool(service, dataset.tools.similar_name, name)

    server.add_tool(
        fetch_entity,
        name=dataset.tools.fetch_name,
        description=dataset.tools.fetch_description,
    )
    server.add_tool(
        find_similar,
        name=dataset.tools.similar_name,
        description=dataset.tools.similar_description,
    )
    return server


def main() -> None:
    config.configure_logging()
    try:
        service = config.build_tool_service()
    except config.ConfigurationError as e:
        logger.error("Error loading configuration: %s", e)
        raise
    logger.info("Starting %s with tools %s", service.dataset.server_name, service.tool_names)
    create_server(service).run(transport="stdio")


if __name__ == "__main__":
    main()
