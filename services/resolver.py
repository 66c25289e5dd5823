"""
Entity resolution: turns a human-provided name into a stored record.
"""
import logging
from typing import Any, Callable, Dict, Optional

from models.config_models import CanonicalizationConfig
from models.main_models import Entity
from services.datastore import Datastore
from services.deadline import Deadline, run_with_deadline
from services.errors import InternalError, InvalidArgumentError

logger = logging.getLogger(__name__)

Canonicalizer = Callable[[str], str]

CASE_RULES: Dict[str, Canonicalizer] = {
    # "tatooine" and "TATOOINE" both become "Tatooine"
    "capitalize": str.capitalize,
    "lowercase": str.lower,
    "identity": lambda name: name,
}


def build_canonicalizer(rule: CanonicalizationConfig) -> Canonicalizer:
    """
    Builds the canonicalization function described by a dataset config.
    """
    case_rule = CASE_RULES[rule.strategy]
    prefix = rule.prefix

    def canonicalize(name: str) -> str:
        return f"{prefix}{case_rule(name.strip())}"

    return canonicalize


def validate_name(name: Any, label: str = "entity") -> str:
    """
    Checks that a caller supplied a usable name.

    Raises:
        InvalidArgumentError: If the name is absent, not a string or blank.
    """
    if name is None or (isinstance(name, str) and not name.strip()):
        raise InvalidArgumentError(f"{label.capitalize()} name is required")
    if not isinstance(name, str):
        raise InvalidArgumentError(f"{label.capitalize()} name must be a string")
    return name


class EntityResolver:
    """
    Resolves names to entities with a single point read per call.

    The canonicalization strategy is injected so one resolver serves every
    dataset; the datastore handle is shared and never owned here.
    """

    def __init__(
        self,
        datastore: Datastore,
        canonicalize: Canonicalizer,
        lookup_timeout: float = 2.0,
        label: str = "entity",
    ):
        self.datastore = datastore
        self.canonicalize = canonicalize
        self.lookup_timeout = lookup_timeout
        self.label = label

    def canonical_key(self, name: Any) -> str:
        return self.canonicalize(validate_name(name, self.label))

    async def resolve(self, name: Any, deadline: Optional[Deadline] = None) -> Optional[Entity]:
        """
        Fetches the entity stored under the canonical key of `name`.

        Returns:
            The entity, or None when no record exists for the key.

        Raises:
            InvalidArgumentError: Before any datastore call, for a blank name.
            OperationTimeoutError: If the lookup exceeds its deadline.
            UnavailableError: If the datastore cannot be reached.
            InternalError: If the stored document is not a JSON object.
        """
        key = self.canonical_key(name)
        if deadline is None:
            deadline = Deadline.after(self.lookup_timeout, f"Lookup of {key!r}")
        else:
            deadline = deadline.child(self.lookup_timeout, f"Lookup of {key!r}")

        logger.debug("Fetching %s with key %s", self.label, key)
        document = await run_with_deadline(self.datastore.get(key, deadline=deadline), deadline)
        if document is None:
            logger.info("No %s stored under key %s", self.label, key)
            return None
        if not isinstance(document, dict):
            raise InternalError(f"Stored {self.label} {key!r} is not a JSON object")
        return Entity(id=key, data=document)
