"""Append-only audit events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .entity import Entity

if TYPE_CHECKING:
    from datetime import datetime

    from .enums import AuditAction, LedgerState


@dataclass(eq=False, kw_only=True)
class AuditEvent(Entity):
    """One row per state transition, denial, or privileged access.

    ``evidence_id`` holds the affected evidence id as text, or ``SYSTEM`` for events
    that concern no stored record. ``sequence`` is assigned on insert and orders
    events that share a timestamp.
    """

    tenant_id: str
    evidence_id: str
    actor: str
    action: AuditAction
    created_at: datetime
    previous_state: LedgerState | None = None
    new_state: LedgerState | None = None
    request_id: str | None = None
    correlation_id: str | None = None
    context: dict[str, object] = field(default_factory=dict)
    sequence: int | None = None
