"""
Error taxonomy shared by the resolver, the similarity orchestrator and the
tool transports.
"""


class EntityServiceError(Exception):
    """Base exception for entity lookup errors."""

    code = "INTERNAL"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgumentError(EntityServiceError):
    """Bad or missing caller input."""

    code = "INVALID_ARGUMENT"


class NotFoundError(EntityServiceError):
    """No entity is stored under the canonical key."""

    code = "NOT_FOUND"


class MissingEmbeddingError(EntityServiceError):
    """The entity exists but cannot anchor a similarity search."""

    code = "MISSING_EMBEDDING"


class OperationTimeoutError(EntityServiceError):
    """A bounded operation exceeded its deadline."""

    code = "TIMEOUT"


class UnavailableError(EntityServiceError):
    """The datastore could not be reached or the connection went away."""

    code = "UNAVAILABLE"


class InternalError(EntityServiceError):
    """Malformed stored data, e.g. a non-numeric embedding."""

    code = "INTERNAL"


class UnknownToolError(Exception):
    """Raised when a transport asks for a tool that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name
