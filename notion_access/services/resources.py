"""
Resource categories used as cache and deduplication namespaces.
"""

import hashlib
import json
from datetime import timedelta
from enum import Enum
from typing import Any


class ResourceType(str, Enum):
    """Remote resource categories."""

    DATA_SOURCE = "dataSource"
    DATABASE = "database"
    USER = "user"
    PAGE = "page"
    BLOCK = "block"
    SEARCH = "search"
    COMMENT = "comment"


# Types missing here fall back to the global default TTL
DEFAULT_TTL_BY_TYPE: dict[ResourceType, timedelta] = {
    ResourceType.DATA_SOURCE: timedelta(minutes=10),
    ResourceType.DATABASE: timedelta(minutes=10),
    ResourceType.USER: timedelta(hours=1),
    ResourceType.PAGE: timedelta(minutes=1),
    ResourceType.BLOCK: timedelta(seconds=30),
}

MAX_KEY_LENGTH = 200


def _component(identifier: Any) -> str:
    if isinstance(identifier, (dict, list, tuple)):
        return json.dumps(
            identifier, sort_keys=True, separators=(",", ":"), default=str
        )
    return str(identifier)


def namespace_prefix(resource_type: ResourceType) -> str:
    """Prefix shared by every key of a resource type."""
    return f"{ResourceType(resource_type).value}:"


def make_key(resource_type: ResourceType, *identifiers: Any) -> str:
    """
    Build a canonical key from a resource type and its identifiers.

    Objects are serialized with sorted keys so logically identical requests
    produce identical keys. Long keys are hashed but keep the type prefix.
    """
    prefix = namespace_prefix(resource_type)
    full_key = prefix + ":".join(_component(i) for i in identifiers)

    if len(full_key) > MAX_KEY_LENGTH:
        hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
        return f"{prefix}{hash_val}"

    return full_key
