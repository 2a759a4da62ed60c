"""Application wiring: default adapters behind the ledger services."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from supplyledger.adapters.advisory import HttpAdvisoryClassifier
from supplyledger.adapters.sqlalchemy import SqlAlchemyLedgerUnitOfWork, is_started, startup
from supplyledger.config import get_advisory_config, get_ledger_settings
from supplyledger.domain.audit_log import AuditLog
from supplyledger.domain.clock import MonotonicClock
from supplyledger.domain.decisions import verify_projections
from supplyledger.domain.ledger import EvidenceLedger, readiness_report
from supplyledger.domain.locks import KeyedLocks
from supplyledger.domain.model import Actor, DataMode, DecisionType, Tenant
from supplyledger.domain.resolution import EntityResolutionEngine, LearnedWeightPolicy
from supplyledger.domain.work_items import WorkItemEngine

if TYPE_CHECKING:
    from collections.abc import Collection

    from supplyledger.config import LedgerSettings, OperatorConfig
    from supplyledger.domain.clock import Clock
    from supplyledger.domain.decisions import ProjectionMismatch
    from supplyledger.domain.ledger import ReadinessReport
    from supplyledger.domain.model import LedgerState, RetentionRule, TrustPolicy
    from supplyledger.domain.ports import AdvisoryClassifier, LedgerUnitOfWorkFactory

log = getLogger(__name__)


def actor_from_operator(config: OperatorConfig) -> Actor:
    return Actor(
        actor_id=config.actor_id,
        tenant_id=config.tenant_id,
        email=config.email,
        roles=frozenset(config.roles),
    )


@dataclass(slots=True)
class SupplyLedger:
    """Every ledger service sharing one clock, one lock table and one audit log."""

    uow_factory: LedgerUnitOfWorkFactory
    settings: LedgerSettings
    audit_log: AuditLog
    evidence: EvidenceLedger
    resolution: EntityResolutionEngine
    work_items: WorkItemEngine
    advisory: AdvisoryClassifier | None = None
    owned_clients: list[HttpAdvisoryClassifier] = field(default_factory=list)

    def readiness(
        self, tenant_id: str, *, allowed_states: Collection[LedgerState] | None = None
    ) -> ReadinessReport:
        if allowed_states is None:
            return readiness_report(self.uow_factory, tenant_id, settings=self.settings)
        return readiness_report(
            self.uow_factory, tenant_id, settings=self.settings, allowed_states=allowed_states
        )

    def verify_projections(self, tenant_id: str) -> list[ProjectionMismatch]:
        return verify_projections(self.uow_factory, tenant_id)

    def configure_tenant(
        self, tenant_id: str, *, data_mode: DataMode = DataMode.LIVE, name: str | None = None
    ) -> Tenant:
        with self.uow_factory() as uow:
            tenant = uow.repositories.tenants.get(tenant_id)
            if tenant is None:
                tenant = Tenant(tenant_id=tenant_id, name=name, data_mode=data_mode)
                uow.repositories.tenants.add(tenant)
            else:
                tenant.data_mode = data_mode
                tenant.name = name or tenant.name
            uow.commit()
        log.info("Tenant %s runs in %s mode", tenant_id, data_mode)
        return tenant

    def add_trust_policy(self, policy: TrustPolicy) -> None:
        with self.uow_factory() as uow:
            uow.repositories.policies.add_trust_policy(policy)
            uow.commit()

    def add_retention_rule(self, rule: RetentionRule) -> None:
        with self.uow_factory() as uow:
            uow.repositories.policies.add_retention_rule(rule)
            uow.commit()

    def learn_weights(self, tenant_id: str) -> LearnedWeightPolicy:
        """Swap the resolution weights for ones learned from accepted link decisions."""

        with self.uow_factory() as uow:
            decisions = uow.repositories.decisions.for_tenant(tenant_id, DecisionType.ENTITY_LINK)
        policy = LearnedWeightPolicy.from_decisions(decisions)
        self.resolution.weights = policy
        log.info("Learned resolution weights from %d link decisions", len(decisions))
        return policy

    def close(self) -> None:
        for client in self.owned_clients:
            client.close()
        self.owned_clients.clear()


def build_ledger(
    *,
    uow_factory: LedgerUnitOfWorkFactory | None = None,
    settings: LedgerSettings | None = None,
    clock: Clock | None = None,
    advisory: AdvisoryClassifier | None = None,
    use_configured_advisory: bool = True,
    database_uri: str | None = None,
) -> SupplyLedger:
    """Assemble the services, starting the SQLAlchemy adapter when no factory is given."""

    if uow_factory is None:
        if not is_started():
            startup(database_uri=database_uri)
        uow_factory = SqlAlchemyLedgerUnitOfWork
    effective_settings = settings or get_ledger_settings()
    effective_clock = MonotonicClock(clock) if clock is not None else MonotonicClock()
    locks = KeyedLocks()

    owned: list[HttpAdvisoryClassifier] = []
    if advisory is None and use_configured_advisory:
        advisory_config = get_advisory_config()
        if advisory_config is not None:
            client = HttpAdvisoryClassifier(advisory_config)
            owned.append(client)
            advisory = client
            log.info("Advisory classifier enabled at %s", advisory_config.base_url)

    audit_log = AuditLog(uow_factory, clock=effective_clock)
    return SupplyLedger(
        uow_factory=uow_factory,
        settings=effective_settings,
        audit_log=audit_log,
        evidence=EvidenceLedger(
            uow_factory,
            audit_log=audit_log,
            settings=effective_settings,
            clock=effective_clock,
            locks=locks,
        ),
        resolution=EntityResolutionEngine(
            uow_factory,
            audit_log=audit_log,
            settings=effective_settings,
            advisory=advisory,
            clock=effective_clock,
            locks=locks,
        ),
        work_items=WorkItemEngine(
            uow_factory,
            audit_log=audit_log,
            settings=effective_settings,
            clock=effective_clock,
            locks=locks,
        ),
        advisory=advisory,
        owned_clients=owned,
    )
