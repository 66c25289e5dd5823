"""
Module containing data models used across the project.
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

class Entity(BaseModel):
    """
    Represents a stored record: its canonical key and the stored document.
    """
    id: str = Field(..., description="Canonical key")
    data: Dict[str, Any] = Field(..., description="Stored document")

class SimilarityCandidate(BaseModel):
    """
    Ranked (key, score) pair returned by the vector search.
    """
    id: str
    score: float

class SimilarityResult(BaseModel):
    """
    Projection of a matched entity with its similarity score.

    Projected attributes are kept as extra fields so the JSON stays flat.
    """
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Key of the matched entity")
    score: float = Field(..., description="Similarity score, higher is closer")

class HydrationOutcome(BaseModel):
    """
    Result of hydrating one candidate: either a result or the error that dropped it.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    candidate: SimilarityCandidate
    result: Optional[SimilarityResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.result is not None

class NameArguments(BaseModel):
    """
    Arguments accepted by both tools.
    """
    name: str = Field(..., description="The name of the entity")

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str

class ToolResult(BaseModel):
    """
    Structured payload returned to the tool transport.
    """
    content: List[TextContent]
    isError: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "ToolResult":
        return cls(content=[TextContent(text=text)], isError=is_error)

class ToolCallRequest(BaseModel):
    """
    Body of a tool call over HTTP.
    """
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

class ToolDescriptor(BaseModel):
    name: str
    description: str
    inputSchema: Dict[str, Any]
