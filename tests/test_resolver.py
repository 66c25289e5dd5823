"""
Tests for name canonicalization and entity resolution.
"""

import pytest

from models.config_models import CanonicalizationConfig
from services.errors import (
    InternalError,
    InvalidArgumentError,
    OperationTimeoutError,
    UnavailableError,
)
from services.resolver import EntityResolver, build_canonicalizer


class TestCanonicalization:
    """Test the per-dataset key rules."""

    def test_capitalize_first_letter_lower_rest(self):
        canonicalize = build_canonicalizer(CanonicalizationConfig(strategy="capitalize"))
        assert canonicalize("tatooine") == "Tatooine"
        assert canonicalize("TATOOINE") == "Tatooine"
        assert canonicalize("  tatooine ") == "Tatooine"

    def test_lowercase_with_namespace_prefix(self):
        canonicalize = build_canonicalizer(
            CanonicalizationConfig(strategy="lowercase", prefix="monster::")
        )
        assert canonicalize("Adult Black Dragon") == "monster::adult black dragon"

    def test_identity(self):
        canonicalize = build_canonicalizer(CanonicalizationConfig())
        assert canonicalize("MiXeD") == "MiXeD"


class TestResolve:
    """Test EntityResolver.resolve against the fake datastore."""

    @pytest.mark.asyncio
    async def test_returns_stored_record(self, resolver):
        entity = await resolver.resolve("Tatooine")
        assert entity.id == "Tatooine"
        assert entity.data["climate"] == "arid"
        assert entity.data["embedding"] == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["Alderaan", "naboo", "x"])
    async def test_missing_name_returns_none(self, resolver, name):
        assert await resolver.resolve(name) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", None])
    async def test_blank_name_rejected_without_datastore_call(self, resolver, datastore, name):
        with pytest.raises(InvalidArgumentError, match="Planet name is required"):
            await resolver.resolve(name)
        assert datastore.call_count == 0

    @pytest.mark.asyncio
    async def test_non_string_name_rejected(self, resolver, datastore):
        with pytest.raises(InvalidArgumentError, match="must be a string"):
            await resolver.resolve(42)
        assert datastore.call_count == 0

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, resolver):
        first = await resolver.resolve("Tatooine")
        second = await resolver.resolve("Tatooine")
        assert first == second

    @pytest.mark.asyncio
    async def test_case_variants_share_canonical_key(self, resolver, datastore):
        lower = await resolver.resolve("tatooine")
        proper = await resolver.resolve("Tatooine")
        assert lower == proper
        assert datastore.get_calls == ["Tatooine", "Tatooine"]

    @pytest.mark.asyncio
    async def test_unavailable_is_not_mapped_to_not_found(self, resolver, datastore):
        datastore.failures["Tatooine"] = UnavailableError("connection refused")
        with pytest.raises(UnavailableError):
            await resolver.resolve("Tatooine")

    @pytest.mark.asyncio
    async def test_slow_lookup_times_out(self, datastore):
        resolver = EntityResolver(
            datastore,
            build_canonicalizer(CanonicalizationConfig(strategy="capitalize")),
            lookup_timeout=0.05,
            label="planet",
        )
        datastore.delays["Tatooine"] = 1.0
        with pytest.raises(OperationTimeoutError):
            await resolver.resolve("Tatooine")

    @pytest.mark.asyncio
    async def test_non_object_document_is_internal_error(self, resolver, datastore):
        datastore.documents["Kamino"] = ["not", "an", "object"]
        with pytest.raises(InternalError):
            await resolver.resolve("Kamino")
