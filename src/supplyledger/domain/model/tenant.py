"""Tenant settings that gate ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from .enums import DataMode, Origin

BLOCKED_IN_LIVE: frozenset[Origin] = frozenset({Origin.TEST_FIXTURE, Origin.SEED, Origin.DEMO})


@dataclass(eq=False, kw_only=True)
class Tenant:
    tenant_id: str
    name: str | None = None
    data_mode: DataMode = DataMode.LIVE
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def accepts(self, origin: Origin) -> bool:
        return not (self.data_mode is DataMode.LIVE and origin in BLOCKED_IN_LIVE)
