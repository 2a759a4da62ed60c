"""Go-live readiness gate over a tenant's ledger."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from supplyledger.config import LedgerSettings
from supplyledger.domain.errors import reports_internal_errors
from supplyledger.domain.model import BLOCKED_IN_LIVE, LedgerState

if TYPE_CHECKING:
    from collections.abc import Collection

    from supplyledger.domain.ports import LedgerUnitOfWorkFactory


@dataclass(frozen=True, slots=True)
class ReadinessReport:
    tenant_id: str
    outside_allowed_states: int
    test_origin_records: int
    under_audited_sealed: int

    @property
    def ready(self) -> bool:
        return not (
            self.outside_allowed_states or self.test_origin_records or self.under_audited_sealed
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "outside_allowed_states": self.outside_allowed_states,
            "test_origin_records": self.test_origin_records,
            "under_audited_sealed": self.under_audited_sealed,
            "ready": self.ready,
        }


@reports_internal_errors
def readiness_report(
    uow_factory: LedgerUnitOfWorkFactory,
    tenant_id: str,
    *,
    settings: LedgerSettings | None = None,
    allowed_states: Collection[LedgerState] = frozenset({LedgerState.SEALED}),
) -> ReadinessReport:
    """Count what blocks promoting ``tenant_id`` to live operation.

    Audit counts come from the audit log itself rather than the records.
    """

    settings = settings or LedgerSettings()
    with uow_factory() as uow:
        repos = uow.repositories
        outside = repos.evidence.count_outside_states(tenant_id, allowed_states)
        synthetic = repos.evidence.count_by_origin(tenant_id, BLOCKED_IN_LIVE)
        sealed_ids = repos.evidence.ids_in_state(tenant_id, LedgerState.SEALED)
        sealed = [str(evidence_id) for evidence_id in sealed_ids]
        counts = repos.audit_events.counts_for_evidence(tenant_id, sealed)
    under_audited = sum(
        1 for evidence_id in sealed if counts.get(evidence_id, 0) < settings.min_sealed_audit_events
    )
    return ReadinessReport(
        tenant_id=tenant_id,
        outside_allowed_states=outside,
        test_origin_records=synthetic,
        under_audited_sealed=under_audited,
    )
