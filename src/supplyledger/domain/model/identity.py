"""Authenticated caller identity."""

from __future__ import annotations

from dataclasses import dataclass, field

SYSTEM_POLICY_ACTOR = "system-policy"


@dataclass(frozen=True, slots=True)
class Actor:
    actor_id: str
    tenant_id: str
    email: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_any_role(self, *roles: str) -> bool:
        return bool(self.roles.intersection(roles))
