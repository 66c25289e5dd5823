"""
Similarity lookup: resolve a name, search with its embedding, hydrate the
ranked candidates.

Failures while resolving or searching fail the whole lookup. Failures while
hydrating a single candidate only drop that candidate.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from models.config_models import SearchSettings
from models.main_models import Entity, HydrationOutcome, SimilarityCandidate, SimilarityResult
from services.datastore import Datastore
from services.deadline import Deadline, run_with_deadline
from services.errors import (
    EntityServiceError,
    InternalError,
    InvalidArgumentError,
    MissingEmbeddingError,
    NotFoundError,
)
from services.resolver import EntityResolver, validate_name

logger = logging.getLogger(__name__)


def extract_embedding(
    entity: Entity,
    vector_field: str,
    label: str = "entity",
    name: Optional[str] = None,
) -> List[float]:
    """
    Returns the entity's embedding as a list of float32 values.

    Raises:
        MissingEmbeddingError: If the attribute is absent, not a list or empty.
        InternalError: If the list holds non-numeric or non-finite values.
    """
    value = entity.data.get(vector_field)
    if not isinstance(value, list) or not value:
        raise MissingEmbeddingError(f"No embedding found for {label}: {name or entity.id}")
    try:
        vector = np.asarray(value, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise InternalError(f"Embedding of {label} {entity.id!r} is not numeric") from e
    if vector.ndim != 1 or not np.all(np.isfinite(vector)):
        raise InternalError(f"Embedding of {label} {entity.id!r} is malformed")
    return vector.tolist()


def project_document(
    candidate: SimilarityCandidate,
    document: Any,
    fields: Sequence[str],
) -> SimilarityResult:
    """
    Builds the display projection of a hydrated candidate.

    Raises:
        InternalError: If the document is not a JSON object.
    """
    if not isinstance(document, dict):
        raise InternalError(f"Document {candidate.id!r} is malformed")
    projected: Dict[str, Any] = {field: document[field] for field in fields if field in document}
    return SimilarityResult(id=candidate.id, score=candidate.score, **projected)


def partition_outcomes(outcomes: Sequence[HydrationOutcome]) -> List[SimilarityResult]:
    """
    Keeps successful hydrations in candidate order and logs the dropped ones.
    """
    results: List[SimilarityResult] = []
    for outcome in outcomes:
        if outcome.ok:
            results.append(outcome.result)
        else:
            logger.warning(
                "Dropping candidate %s (score %.4f): %s",
                outcome.candidate.id, outcome.candidate.score, outcome.error,
            )
    return results


class SimilarityOrchestrator:
    """
    Runs the resolve, search, hydrate workflow for one dataset.
    """

    def __init__(
        self,
        resolver: EntityResolver,
        datastore: Datastore,
        projection_fields: Sequence[str],
        vector_field: str = "embedding",
        settings: Optional[SearchSettings] = None,
    ):
        self.resolver = resolver
        self.datastore = datastore
        self.projection_fields = list(projection_fields)
        self.vector_field = vector_field
        self.settings = settings or SearchSettings()

    @property
    def label(self) -> str:
        return self.resolver.label

    def check_limit(self, limit: Any) -> int:
        if limit is None:
            return self.settings.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidArgumentError("limit must be a positive integer")
        return min(limit, self.settings.max_limit)

    async def find_similar(self, name: Any, limit: Optional[int] = None) -> List[SimilarityResult]:
        """
        Finds the entities closest to the one called `name`.

        Returns:
            Results in the order ranked by the search, at most `limit - 1`
            long when the entity matches itself, possibly shorter when
            hydration reads fail. Empty when the search finds nothing.

        Raises:
            InvalidArgumentError: For a blank name or a bad limit.
            NotFoundError: If no entity is stored for the name.
            MissingEmbeddingError: If the entity has no embedding.
            OperationTimeoutError: If the lookup or the search times out.
            UnavailableError: If the datastore cannot be reached.
        """
        validate_name(name, self.label)
        limit = self.check_limit(limit)
        settings = self.settings
        operation = Deadline.after(
            settings.lookup_timeout + settings.search_timeout + settings.document_timeout,
            "Similarity lookup",
        )

        entity = await self.resolver.resolve(name, deadline=operation)
        if entity is None:
            raise NotFoundError(f"{self.label.capitalize()} not found: {name}")
        embedding = extract_embedding(entity, self.vector_field, self.label, name)

        search_deadline = operation.child(settings.search_timeout, "Vector search")
        logger.info("Starting vector search for %s (limit %d)", entity.id, limit)
        candidates = await run_with_deadline(
            self.datastore.vector_search(embedding, limit, deadline=search_deadline),
            search_deadline,
        )
        candidates = [c for c in candidates[:limit] if c.id != entity.id]
        logger.info("Vector search for %s returned %d candidates", entity.id, len(candidates))
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(settings.hydration_concurrency)
        outcomes = await asyncio.gather(
            *(self._hydrate(candidate, operation, semaphore) for candidate in candidates)
        )
        return partition_outcomes(outcomes)

    async def _hydrate(
        self,
        candidate: SimilarityCandidate,
        operation: Deadline,
        semaphore: asyncio.Semaphore,
    ) -> HydrationOutcome:
        async with semaphore:
            deadline = operation.child(self.settings.document_timeout, f"Fetch of {candidate.id!r}")
            try:
                document = await run_with_deadline(
                    self.datastore.get(candidate.id, project=self.projection_fields, deadline=deadline),
                    deadline,
                )
                if document is None:
                    raise NotFoundError(f"Document {candidate.id!r} no longer exists")
                result = project_document(candidate, document, self.projection_fields)
            except EntityServiceError as e:
                return HydrationOutcome(candidate=candidate, error=e)
        return HydrationOutcome(candidate=candidate, result=result)
