"""
Tool dispatch shared by the HTTP and MCP transports.

Both tools answer with a ToolResult payload. Service errors become error
payloads with a readable message; nothing else crosses the transport.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from models.config_models import DatasetConfig
from models.main_models import NameArguments, ToolDescriptor, ToolResult
from services.datastore import Datastore
from services.deadline import Deadline, run_with_deadline
from services.errors import EntityServiceError, UnknownToolError
from services.resolver import EntityResolver, build_canonicalizer, validate_name
from services.similarity import SimilarityOrchestrator

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[ToolResult]]


def name_input_schema(label: str) -> Dict[str, Any]:
    """
    JSON schema of the single `name` argument both tools take.
    """
    schema = NameArguments.model_json_schema()
    schema["properties"]["name"]["description"] = f"The name of the {label}"
    return schema


class EntityToolService:
    """
    Publishes the fetch and similarity tools for one dataset.
    """

    def __init__(
        self,
        dataset: DatasetConfig,
        datastore: Datastore,
        resolver: EntityResolver,
        orchestrator: SimilarityOrchestrator,
    ):
        self.dataset = dataset
        self.datastore = datastore
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.label = dataset.entity_label
        self._handlers: Dict[str, ToolHandler] = {
            dataset.tools.fetch_name: self.fetch_entity,
            dataset.tools.similar_name: self.find_similar,
        }

    @classmethod
    def from_config(cls, dataset: DatasetConfig, datastore: Datastore) -> "EntityToolService":
        """
        Wires a resolver and an orchestrator around a shared datastore.
        """
        resolver = EntityResolver(
            datastore,
            build_canonicalizer(dataset.canonicalization),
            lookup_timeout=dataset.search.lookup_timeout,
            label=dataset.entity_label,
        )
        orchestrator = SimilarityOrchestrator(
            resolver,
            datastore,
            projection_fields=dataset.projection_fields,
            vector_field=dataset.vector_settings.vector_field,
            settings=dataset.search,
        )
        return cls(dataset, datastore, resolver, orchestrator)

    # =====================
    # Tool listing and dispatch
    # =====================

    def list_tools(self) -> List[ToolDescriptor]:
        schema = name_input_schema(self.label)
        tools = self.dataset.tools
        return [
            ToolDescriptor(name=tools.fetch_name, description=tools.fetch_description, inputSchema=schema),
            ToolDescriptor(name=tools.similar_name, description=tools.similar_description, inputSchema=schema),
        ]

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Runs the named tool.

        Raises:
            UnknownToolError: If no tool is registered under `name`.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)
        try:
            return await handler(arguments or {})
        except EntityServiceError as e:
            logger.info("Tool %s failed with %s: %s", name, e.code, e.message)
            return ToolResult.text(e.message, is_error=True)
        except Exception as e:
            logger.exception("Tool %s failed unexpectedly", name)
            return ToolResult.text(f"Internal error: {e}", is_error=True)

    # =====================
    # Tools
    # =====================

    async def fetch_entity(self, arguments: Dict[str, Any]) -> ToolResult:
        name = validate_name(arguments.get("name"), self.label)
        entity = await self.resolver.resolve(name)
        if entity is None:
            return ToolResult.text(f'{self.label.capitalize()} "{name}" not found', is_error=True)
        return ToolResult.text(json.dumps(entity.data, indent=2))

    async def find_similar(self, arguments: Dict[str, Any]) -> ToolResult:
        name = validate_name(arguments.get("name"), self.label)
        results = await self.orchestrator.find_similar(name)
        return ToolResult.text(json.dumps([r.model_dump() for r in results], indent=2))

    # =====================
    # Lifecycle
    # =====================

    async def health(self) -> Dict[str, Any]:
        """
        Reports whether the datastore answers and the similarity index exists.
        """
        index_name = self.dataset.vector_settings.index_name
        deadline = Deadline.after(self.dataset.search.lookup_timeout, "Index check")
        try:
            index_ready = await run_with_deadline(self.datastore.index_exists(deadline), deadline)
        except EntityServiceError as e:
            logger.warning("Health check failed: %s", e.message)
            return {"status": "degraded", "dataset": self.dataset.dataset_name, "detail": e.message}
        if not index_ready:
            logger.warning("Similarity index %s is missing", index_name)
        return {
            "status": "ok" if index_ready else "degraded",
            "dataset": self.dataset.dataset_name,
            "index": index_name,
            "index_ready": index_ready,
        }

    async def close(self) -> None:
        await self.datastore.close()
