"""Tenant-level policies: source trust ranking, retention minimums, trust levels."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from .enums import DatasetType, IngestionMethod, RetentionPolicy, SourceSystem, TrustLevel

if TYPE_CHECKING:
    from collections.abc import Sequence

ANY_FIELD: Final = "*"

RETENTION_DAYS: Final[dict[RetentionPolicy, int]] = {
    RetentionPolicy.STANDARD_1_YEAR: 365,
    RetentionPolicy.THREE_YEARS: 3 * 365,
    RetentionPolicy.SEVEN_YEARS: 7 * 365,
}

_TRUST_BY_METHOD: Final[dict[IngestionMethod, TrustLevel]] = {
    IngestionMethod.MANUAL_ENTRY: TrustLevel.LOW,
    IngestionMethod.ERP_API: TrustLevel.HIGH,
    IngestionMethod.SUPPLIER_PORTAL: TrustLevel.HIGH,
}


def trust_level_for(method: IngestionMethod) -> TrustLevel:
    return _TRUST_BY_METHOD.get(method, TrustLevel.MEDIUM)


def retention_days(policy: RetentionPolicy, custom_days: int | None) -> int | None:
    if policy is RetentionPolicy.CUSTOM:
        return custom_days
    return RETENTION_DAYS[policy]


@dataclass(eq=False, kw_only=True)
class TrustPolicy:
    """Ranks source systems for one dataset type and field (``*`` for every field)."""

    tenant_id: str
    dataset_type: DatasetType
    field_name: str = ANY_FIELD
    ranking: tuple[SourceSystem, ...] = field(default_factory=tuple)

    def rank_of(self, source: SourceSystem) -> int:
        try:
            return self.ranking.index(source)
        except ValueError:
            return len(self.ranking)


def most_specific_policy(
    policies: Sequence[TrustPolicy], field_name: str
) -> TrustPolicy | None:
    exact = [policy for policy in policies if policy.field_name == field_name]
    if exact:
        return exact[0]
    wildcard = [policy for policy in policies if policy.field_name == ANY_FIELD]
    return wildcard[0] if wildcard else None


@dataclass(eq=False, kw_only=True)
class RetentionRule:
    tenant_id: str
    dataset_type: DatasetType
    minimum_days: int
