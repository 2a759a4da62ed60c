"""Base building block: identity that exists immediately in the domain."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid4

from supplyledger.domain.errors import NotFound


def new_id() -> UUID:
    return uuid4()


def parse_id(value: UUID | str, *, resource: str) -> UUID:
    """Parse a caller-supplied id; a malformed id is reported as not found."""

    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError:
        raise NotFound(resource=resource, resource_id=str(value)) from None


@dataclass(eq=False, kw_only=True)
class Entity:
    """Internal identity exists immediately in the domain."""

    id: UUID = field(default_factory=new_id)
