"""Canonical entities and their links to evidence.

Both are projections: they are written only as a side effect of appending a
:class:`~supplyledger.domain.model.work.Decision`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .entity import Entity

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from .enums import EntityType


@dataclass(eq=False, kw_only=True)
class CanonicalEntity(Entity):
    tenant_id: str
    entity_type: EntityType
    created_at: datetime
    updated_at: datetime
    fields: dict[str, object] = field(default_factory=dict)
    field_decisions: dict[str, str] = field(default_factory=dict)

    def apply_field(self, name: str, value: object, *, decision_id: UUID, at: datetime) -> None:
        # reassign so the JSON columns register the change
        self.fields = {**self.fields, name: value}
        self.field_decisions = {**self.field_decisions, name: str(decision_id)}
        self.updated_at = at

    def value_of(self, name: str) -> object | None:
        return self.fields.get(name)


@dataclass(eq=False, kw_only=True)
class EvidenceLink:
    tenant_id: str
    evidence_id: UUID
    entity_id: UUID
    decision_id: UUID
    created_at: datetime
