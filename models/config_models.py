"""
Module containing configuration models for a deployed dataset.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

class CanonicalizationConfig(BaseModel):
    """
    Rule turning a user-supplied name into the datastore key.

    Attributes:
        strategy: Case rule applied to the stripped name.
        prefix: Namespace tag prepended after the case rule.
    """
    strategy: Literal["capitalize", "lowercase", "identity"] = Field(
        "identity",
        description="Case rule applied to the stripped name"
    )
    prefix: str = Field(
        "",
        description="Namespace tag prepended to the key, e.g. 'monster::'"
    )

class VectorSettings(BaseModel):
    """
    Settings for the pre-built similarity index.

    Attributes:
        index_name: Name of the vector index on the collection.
        vector_field: Document attribute holding the embedding.
        column: Table column of type VECTOR searched by the index.
        metric: Distance the index was built for.
    """
    index_name: str = Field(
        ...,
        description="Name of the vector index on the collection"
    )
    vector_field: str = Field(
        "embedding",
        description="Document attribute holding the embedding"
    )
    column: str = Field(
        "embedding",
        description="Table column of type VECTOR searched by the index"
    )
    metric: Literal["cosine", "l2", "inner_product"] = Field(
        "cosine",
        description="Distance the index was built for"
    )

class SearchSettings(BaseModel):
    """
    Limits and timeouts for the similarity workflow. Timeouts are in seconds.
    """
    default_limit: int = Field(5, gt=0)
    max_limit: int = Field(20, gt=0)
    search_timeout: float = Field(5.0, gt=0)
    document_timeout: float = Field(2.0, gt=0)
    lookup_timeout: float = Field(2.0, gt=0)
    hydration_concurrency: int = Field(5, gt=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "SearchSettings":
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit must not exceed max_limit")
        if self.document_timeout >= self.search_timeout:
            raise ValueError("document_timeout must be shorter than search_timeout")
        return self

class ToolSettings(BaseModel):
    """
    Names and descriptions the two tools are published under.
    """
    fetch_name: str = "fetch_entity_by_name"
    fetch_description: str = "Fetch an entity by name"
    similar_name: str = "find_similar_entities"
    similar_description: str = "Find entities similar to the one with the given name"

    @model_validator(mode="after")
    def check_distinct(self) -> "ToolSettings":
        if self.fetch_name == self.similar_name:
            raise ValueError("Tool names must be distinct")
        return self

class DatasetConfig(BaseModel):
    """
    Configuration for one deployed dataset.

    Attributes:
        dataset_name: Name of the dataset, also used for the server name.
        entity_label: Human label of a record ("monster", "planet").
        scope: Database schema holding the collection.
        collection: Table holding the documents.
        canonicalization: Name to key rule.
        projection_fields: Attributes returned for each similar entity.
        vector_settings: Similarity index settings.
        search: Limits and timeouts.
        tools: Published tool names.
    """
    dataset_name: str = Field(
        ...,
        description="Name of the dataset"
    )
    entity_label: str = Field(
        "entity",
        description="Human label of a record, used in messages"
    )
    scope: str = Field(
        "public",
        description="Database schema holding the collection"
    )
    collection: str = Field(
        ...,
        description="Table holding the documents"
    )
    canonicalization: CanonicalizationConfig = Field(
        default_factory=CanonicalizationConfig
    )
    projection_fields: List[str] = Field(
        ...,
        min_length=1,
        description="Attributes returned for each similar entity"
    )
    vector_settings: VectorSettings
    search: SearchSettings = Field(default_factory=SearchSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    server_version: Optional[str] = Field(
        "0.1.0",
        description="Version advertised by the tool server"
    )

    @field_validator("projection_fields")
    @classmethod
    def check_reserved(cls, value: List[str]) -> List[str]:
        reserved = {"id", "score"} & set(value)
        if reserved:
            raise ValueError(f"Projection fields may not include {sorted(reserved)}")
        return value

    @model_validator(mode="after")
    def check_projection(self) -> "DatasetConfig":
        if self.vector_settings.vector_field in self.projection_fields:
            raise ValueError("Projection fields may not include the embedding")
        return self

    @property
    def server_name(self) -> str:
        return f"{self.dataset_name}-server"

class DatabaseSettings(BaseModel):
    """
    Connection settings for PostgreSQL, read from the environment.
    """
    host: str = "localhost"
    port: int = 5432
    dbname: str = "postgres"
    user: str = "postgres"
    password: str = ""
    connect_timeout: int = Field(5, gt=0)
    pool_max: int = Field(10, gt=0)
