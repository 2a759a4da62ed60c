"""Work items, decisions, and the claims a conflict is raised over."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, cast
from uuid import UUID

from .entity import Entity
from .enums import (
    DatasetType,
    DecisionType,
    Priority,
    ResolutionStrategy,
    SourceSystem,
    WorkItemStatus,
    WorkItemType,
)

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True)
class ConflictingClaim:
    """One observed value for a contested canonical field."""

    value: object
    evidence_id: UUID | None
    dataset_type: DatasetType | None
    source_system: SourceSystem | None
    observed_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "value": self.value,
            "evidence_id": str(self.evidence_id) if self.evidence_id else None,
            "dataset_type": self.dataset_type.value if self.dataset_type else None,
            "source_system": self.source_system.value if self.source_system else None,
            "observed_at": self.observed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ConflictingClaim:
        evidence_id = data.get("evidence_id")
        dataset_type = data.get("dataset_type")
        source_system = data.get("source_system")
        return cls(
            value=data.get("value"),
            evidence_id=UUID(str(evidence_id)) if evidence_id else None,
            dataset_type=DatasetType(str(dataset_type)) if dataset_type else None,
            source_system=SourceSystem(str(source_system)) if source_system else None,
            observed_at=datetime.fromisoformat(str(data["observed_at"])),
        )


@dataclass(eq=False, kw_only=True)
class WorkItem(Entity):
    tenant_id: str
    type: WorkItemType
    created_at: datetime
    created_by: str
    updated_at: datetime
    updated_by: str
    status: WorkItemStatus = WorkItemStatus.OPEN
    priority: Priority = Priority.MEDIUM
    linked_evidence_id: UUID | None = None
    linked_entity_ref: UUID | None = None
    parent_work_item_id: UUID | None = None
    field_name: str | None = None
    details: dict[str, object] = field(default_factory=dict)
    advisory: str | None = None
    decision_count: int = 0

    @property
    def work_item_id(self) -> UUID:
        return self.id

    @property
    def is_done(self) -> bool:
        return self.status is WorkItemStatus.DONE

    @property
    def conflicting_claims(self) -> tuple[ConflictingClaim, ...]:
        raw = cast("list[Mapping[str, object]]", self.details.get("claims", []))
        return tuple(ConflictingClaim.from_dict(item) for item in raw)

    def record_decision(self, decision: Decision) -> None:
        self.decision_count += 1
        self.updated_by = decision.created_by
        self.updated_at = decision.created_at
        if decision.decision_type is DecisionType.STATUS_CHANGE:
            self.status = WorkItemStatus(str(decision.winning_value))
        else:
            self.status = WorkItemStatus.DONE


@dataclass(eq=False, kw_only=True)
class Decision(Entity):
    """Append-only record of a resolution; the only writer of projections."""

    tenant_id: str
    decision_type: DecisionType
    strategy: ResolutionStrategy
    reason_code: str
    created_by: str
    created_at: datetime
    work_item_id: UUID | None = None
    entity_id: UUID | None = None
    field_name: str | None = None
    winning_value: object | None = None
    evidence_ids: tuple[UUID, ...] = ()
    comment: str | None = None
    supersedes_decision_id: UUID | None = None
    details: dict[str, object] = field(default_factory=dict)
    sequence: int | None = None

    @property
    def decision_id(self) -> UUID:
        return self.id


@dataclass(eq=False, kw_only=True)
class FollowUpKey:
    """Idempotency marker for follow-up creation within the dedup window."""

    key: str
    tenant_id: str
    work_item_id: UUID
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at
