"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from supplyledger.domain.ports.persistence import (
        AuditEventRepository,
        CanonicalEntityRepository,
        DecisionRepository,
        EvidenceLinkRepository,
        EvidenceRepository,
        FollowUpKeyRepository,
        PolicyRepository,
        TenantRepository,
        WorkItemRepository,
    )


class ConcurrentWriteError(RuntimeError):
    """Raised on commit when a uniqueness constraint rejected a concurrent write."""


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection."""

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class LedgerRepositories(RepositoryCollection):
    """Repositories behind every ledger, resolution, and work-item operation."""

    evidence: EvidenceRepository
    audit_events: AuditEventRepository
    tenants: TenantRepository
    entities: CanonicalEntityRepository
    links: EvidenceLinkRepository
    decisions: DecisionRepository
    work_items: WorkItemRepository
    follow_up_keys: FollowUpKeyRepository
    policies: PolicyRepository


type LedgerUnitOfWork = UnitOfWork[LedgerRepositories]
type LedgerUnitOfWorkFactory = Callable[[], LedgerUnitOfWork]
