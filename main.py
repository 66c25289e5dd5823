"""
This module implements the HTTP API,
exposing the entity lookup tools over FastAPI.
"""

# =====================
# Imports and Global Setup
# =====================
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status

import config
from models.main_models import ToolCallRequest, ToolDescriptor, ToolResult
from services.errors import UnknownToolError
from services.tools import EntityToolService

# Configure logging the same way for uvicorn main:app and python main.py
config.configure_logging()
logger = logging.getLogger(__name__)

router = APIRouter()

# =====================
# Composition Root
# =====================

def create_app(tool_service: Optional[EntityToolService] = None) -> FastAPI:
    """
    Creates the FastAPI application.

    When no tool service is given, one is built from the configuration at
    startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = tool_service
        owned = service is None
        if owned:
            service = config.build_tool_service()
        app.state.tool_service = service
        logger.info(
            "Serving dataset %s with tools %s",
            service.dataset.dataset_name, service.tool_names,
        )
        try:
            yield
        finally:
            if owned:
                await service.close()

    application = FastAPI(title="Entity similarity tools", lifespan=lifespan)
    application.include_router(router)
    return application

def get_tool_service(request: Request) -> EntityToolService:
    """
    Returns the tool service owned by the running application.
    """
    return request.app.state.tool_service

# =====================
# API Endpoints
# =====================

@router.get("/tools", response_model=List[ToolDescriptor])
def list_tools(service: EntityToolService = Depends(get_tool_service)):
    """
    Endpoint listing the published tools and their input schemas.
    """
    return service.list_tools()

@router.post("/tools/call", response_model=ToolResult)
async def call_tool(
    call: ToolCallRequest,
    service: EntityToolService = Depends(get_tool_service)
):
    """
    Endpoint running a tool. Tool failures are reported in the payload
    with isError set; only an unknown tool name is an HTTP error.
    """
    try:
        return await service.call_tool(call.name, call.arguments)
    except UnknownToolError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc)
        ) from exc

@router.get("/health")
async def health(service: EntityToolService = Depends(get_tool_service)) -> Dict[str, Any]:
    """
    Endpoint reporting datastore and similarity index readiness.
    """
    return await service.health()

app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
