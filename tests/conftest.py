"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

import config
from models.config_models import CanonicalizationConfig, DatasetConfig, SearchSettings
from models.main_models import SimilarityCandidate
from services.resolver import EntityResolver, build_canonicalizer
from services.similarity import SimilarityOrchestrator
from services.tools import EntityToolService

DATASETS_DIR = Path(__file__).resolve().parent.parent / "datasets"


def cosine(a: List[float], b: List[float]) -> float:
    a, b = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
    return float(a.dot(b) / (np.linalg.norm(a) * np.linalg.norm(b)))


class FakeDatastore:
    """
    In-memory datastore with call recording, per-key delays and failure injection.
    """

    def __init__(self, documents: Dict[str, Any]):
        self.documents = documents
        self.get_calls: List[str] = []
        self.get_projections: Dict[str, Optional[List[str]]] = {}
        self.search_calls: List[Dict[str, Any]] = []
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self.search_delay = 0.0
        self.search_error: Optional[Exception] = None
        self.search_results: Optional[List[SimilarityCandidate]] = None
        self.index_ready = True
        self.index_error: Optional[Exception] = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.get_calls) + len(self.search_calls)

    async def get(self, key, project=None, deadline=None):
        self.get_calls.append(key)
        self.get_projections[key] = list(project) if project is not None else None
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delays.get(key):
                await asyncio.sleep(self.delays[key])
            if key in self.failures:
                raise self.failures[key]
        finally:
            self.in_flight -= 1
        document = self.documents.get(key)
        if document is None:
            return None
        if project and isinstance(document, dict):
            return {field: document[field] for field in project if field in document}
        return copy.deepcopy(document)

    async def vector_search(self, vector, limit, deadline=None):
        self.search_calls.append({"vector": list(vector), "limit": limit})
        if self.search_delay:
            await asyncio.sleep(self.search_delay)
        if self.search_error is not None:
            raise self.search_error
        if self.search_results is not None:
            return self.search_results[:limit]
        candidates = [
            SimilarityCandidate(id=key, score=cosine(vector, document["embedding"]))
            for key, document in self.documents.items()
            if isinstance(document, dict) and isinstance(document.get("embedding"), list)
            and document["embedding"] and all(isinstance(v, (int, float)) for v in document["embedding"])
        ]
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:limit]

    async def index_exists(self, deadline=None):
        if self.index_error is not None:
            raise self.index_error
        return self.index_ready

    async def close(self):
        self.closed = True


@pytest.fixture
def planet_documents() -> Dict[str, Any]:
    """Tatooine plus four planets at increasing distance, and one without an embedding."""
    return {
        "Tatooine": {
            "name": "Tatooine", "climate": "arid", "terrain": "desert",
            "population": "200000", "gravity": "1 standard",
            "embedding": [0.1, 0.2, 0.3],
        },
        "Jakku": {
            "name": "Jakku", "climate": "arid", "terrain": "deserts",
            "population": "unknown", "embedding": [0.1, 0.2, 0.28],
        },
        "Geonosis": {
            "name": "Geonosis", "climate": "temperate, arid", "terrain": "rock, desert",
            "population": "100000000000", "embedding": [0.1, 0.25, 0.2],
        },
        "Ryloth": {
            "name": "Ryloth", "climate": "temperate, arid, subartic", "terrain": "mountains",
            "population": "1500000000", "embedding": [0.3, 0.2, 0.1],
        },
        "Hoth": {
            "name": "Hoth", "climate": "frozen", "terrain": "tundra, ice caves",
            "population": "unknown", "embedding": [0.9, -0.2, 0.0],
        },
        "Bespin": {
            "name": "Bespin", "climate": "temperate", "terrain": "gas giant",
            "population": "6000000",
        },
    }


@pytest.fixture
def datastore(planet_documents) -> FakeDatastore:
    return FakeDatastore(planet_documents)


@pytest.fixture
def fast_search() -> SearchSettings:
    return SearchSettings(
        default_limit=5,
        max_limit=20,
        search_timeout=1.0,
        document_timeout=0.5,
        lookup_timeout=0.5,
        hydration_concurrency=5,
    )


@pytest.fixture
def starwars_config(fast_search) -> DatasetConfig:
    dataset = config.load_dataset_config(str(DATASETS_DIR / "starwars.json"))
    return dataset.model_copy(update={"search": fast_search})


@pytest.fixture
def resolver(datastore, fast_search) -> EntityResolver:
    return EntityResolver(
        datastore,
        build_canonicalizer(CanonicalizationConfig(strategy="capitalize")),
        lookup_timeout=fast_search.lookup_timeout,
        label="planet",
    )


@pytest.fixture
def orchestrator(resolver, datastore, fast_search) -> SimilarityOrchestrator:
    return SimilarityOrchestrator(
        resolver,
        datastore,
        projection_fields=["name", "climate", "terrain", "population"],
        vector_field="embedding",
        settings=fast_search,
    )


@pytest.fixture
def tool_service(starwars_config, datastore) -> EntityToolService:
    return EntityToolService.from_config(starwars_config, datastore)
