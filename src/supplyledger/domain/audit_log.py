"""Append-only audit log shared by every ledger and work-item operation.

Primary writes append their audit event inside the same unit of work as the
state change, so both commit or neither does. Secondary events that accompany a
rejected operation (lookup misses, blocked mutations, denials) are written
best-effort in their own unit of work: a failure there is logged and counted but
never changes the outcome reported to the caller.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Final

from supplyledger.domain.clock import MonotonicClock
from supplyledger.domain.errors import (
    AccessDenied,
    ImmutableConflict,
    ModeViolation,
    NotFound,
    reports_internal_errors,
)
from supplyledger.domain.model import SYSTEM_EVIDENCE_ID, AuditAction, AuditEvent, LedgerState

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from datetime import datetime
    from uuid import UUID

    from supplyledger.domain.clock import Clock
    from supplyledger.domain.model import Actor
    from supplyledger.domain.ports import LedgerUnitOfWork, LedgerUnitOfWorkFactory

log = logging.getLogger(__name__)

REDACTED: Final = "[REDACTED]"
_SECRET_KEY = re.compile(
    r"(password|secret|token|api[_-]?key|authorization|credential)", re.IGNORECASE
)


def scrub_context(context: Mapping[str, object]) -> dict[str, object]:
    """Replace values stored under credential-like keys, recursing into mappings."""

    scrubbed: dict[str, object] = {}
    for key, value in context.items():
        if _SECRET_KEY.search(key):
            scrubbed[key] = REDACTED
        elif isinstance(value, dict):
            scrubbed[key] = scrub_context(value)  # pyright: ignore[reportUnknownArgumentType]
        else:
            scrubbed[key] = value
    return scrubbed


class AuditLog:
    def __init__(
        self,
        uow_factory: LedgerUnitOfWorkFactory,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._clock = clock or MonotonicClock()
        self._failures = 0
        self._failures_lock = threading.Lock()

    @property
    def failed_writes(self) -> int:
        return self._failures

    def now(self) -> datetime:
        return self._clock()

    def event(
        self,
        *,
        actor: Actor | str,
        tenant_id: str,
        action: AuditAction,
        evidence_id: UUID | str | None = None,
        previous_state: LedgerState | None = None,
        new_state: LedgerState | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        context: Mapping[str, object] | None = None,
    ) -> AuditEvent:
        actor_id = actor if isinstance(actor, str) else actor.actor_id
        return AuditEvent(
            tenant_id=tenant_id,
            evidence_id=str(evidence_id) if evidence_id is not None else SYSTEM_EVIDENCE_ID,
            actor=actor_id,
            action=action,
            previous_state=previous_state,
            new_state=new_state,
            request_id=request_id,
            correlation_id=correlation_id,
            context=scrub_context(context or {}),
            created_at=self._clock(),
        )

    def append(self, uow: LedgerUnitOfWork, event: AuditEvent) -> AuditEvent:
        """Stage ``event`` in the caller's unit of work."""

        uow.repositories.audit_events.add(event)
        log.debug(
            "Audit %s on %s by %s (tenant %s)",
            event.action,
            event.evidence_id,
            event.actor,
            event.tenant_id,
        )
        return event

    @reports_internal_errors
    def record(self, event: AuditEvent) -> AuditEvent:
        """Persist ``event`` in its own unit of work."""

        with self._uow_factory() as uow:
            self.append(uow, event)
            uow.commit()
        return event

    def record_best_effort(self, event: AuditEvent) -> AuditEvent | None:
        try:
            with self._uow_factory() as uow:
                self.append(uow, event)
                uow.commit()
        except Exception:
            with self._failures_lock:
                self._failures += 1
            log.exception(
                "Failed to record %s audit event for %s (tenant %s)",
                event.action,
                event.evidence_id,
                event.tenant_id,
            )
            return None
        return event

    @contextmanager
    def denials(self, actor: Actor, *, request_id: str | None = None) -> Iterator[None]:
        """Audit rejected operations raised inside the block, then re-raise them.

        Must wrap the unit of work rather than sit inside it: the denial event is
        written after the failed operation has rolled back.
        """

        try:
            yield
        except NotFound as exc:
            log.warning(
                "Lookup of %s %s by %s missed in tenant %s",
                exc.resource,
                exc.resource_id,
                actor.actor_id,
                actor.tenant_id,
            )
            self.record_best_effort(
                self.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.LOOKUP_NOT_FOUND,
                    request_id=request_id,
                    context={"resource": exc.resource, "requested_id": exc.resource_id},
                )
            )
            raise
        except ImmutableConflict as exc:
            log.warning(
                "Blocked mutation of %s evidence %s by %s: %s",
                exc.ledger_state,
                exc.evidence_id,
                actor.actor_id,
                ", ".join(exc.fields),
            )
            self.record_best_effort(
                self.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.MUTATION_BLOCKED,
                    evidence_id=exc.evidence_id,
                    previous_state=LedgerState(exc.ledger_state),
                    new_state=LedgerState(exc.ledger_state),
                    request_id=request_id,
                    context={"fields": list(exc.fields)},
                )
            )
            raise
        except ModeViolation as exc:
            log.warning(
                "Refused %s record from %s: tenant %s is %s",
                exc.origin,
                actor.actor_id,
                actor.tenant_id,
                exc.data_mode,
            )
            self.record_best_effort(
                self.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.MODE_VIOLATION_BLOCKED,
                    request_id=request_id,
                    context={"origin": exc.origin, "data_mode": exc.data_mode},
                )
            )
            raise
        except AccessDenied as exc:
            log.warning("Denied %s to %s", exc.action, actor.actor_id)
            self.record_best_effort(
                self.event(
                    actor=actor,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.ACCESS_DENIED,
                    request_id=request_id,
                    context={"action": exc.action, "required_roles": list(exc.required_roles)},
                )
            )
            raise

    @reports_internal_errors
    def by_evidence(self, tenant_id: str, evidence_id: UUID | str) -> list[AuditEvent]:
        with self._uow_factory() as uow:
            return uow.repositories.audit_events.for_evidence(tenant_id, str(evidence_id))

    @reports_internal_errors
    def by_tenant(
        self,
        tenant_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEvent]:
        with self._uow_factory() as uow:
            return uow.repositories.audit_events.for_tenant(tenant_id, start=start, end=end)

    @reports_internal_errors
    def count_for_evidence(self, tenant_id: str, evidence_id: UUID | str) -> int:
        with self._uow_factory() as uow:
            return uow.repositories.audit_events.count_for_evidence(tenant_id, str(evidence_id))
