"""Domain ports (interfaces) for adapters to implement."""

from __future__ import annotations

from supplyledger.domain.ports.advisory import AdvisoryClassifier, AdvisoryHint
from supplyledger.domain.ports.persistence import (
    AuditEventRepository,
    CanonicalEntityRepository,
    DecisionRepository,
    EvidenceFilter,
    EvidenceLinkRepository,
    EvidenceRepository,
    FollowUpKeyRepository,
    PolicyRepository,
    Repository,
    TenantRepository,
    WorkItemFilter,
    WorkItemRepository,
)
from supplyledger.domain.ports.unit_of_work import (
    ConcurrentWriteError,
    LedgerRepositories,
    LedgerUnitOfWork,
    LedgerUnitOfWorkFactory,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "AdvisoryClassifier",
    "AdvisoryHint",
    "AuditEventRepository",
    "CanonicalEntityRepository",
    "ConcurrentWriteError",
    "DecisionRepository",
    "EvidenceFilter",
    "EvidenceLinkRepository",
    "EvidenceRepository",
    "FollowUpKeyRepository",
    "LedgerRepositories",
    "LedgerUnitOfWork",
    "LedgerUnitOfWorkFactory",
    "PolicyRepository",
    "Repository",
    "RepositoryCollection",
    "TenantRepository",
    "UnitOfWork",
    "WorkItemFilter",
    "WorkItemRepository",
]
