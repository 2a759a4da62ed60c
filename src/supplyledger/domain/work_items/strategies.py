"""Conflict resolution strategies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from supplyledger.domain.errors import FieldError, FieldErrorCode, ValidationFailed
from supplyledger.domain.model import most_specific_policy

from .detection import most_recent

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from supplyledger.domain.model import ConflictingClaim, DatasetType, TrustPolicy


def prefer_most_recent(claims: Sequence[ConflictingClaim]) -> ConflictingClaim:
    return most_recent(claims)


def prefer_trusted_source(
    claims: Sequence[ConflictingClaim],
    *,
    field_name: str,
    policies: Mapping[DatasetType, Sequence[TrustPolicy]],
) -> ConflictingClaim:
    """Pick the claim whose source ranks highest; recency breaks ties."""

    policy: TrustPolicy | None = None
    for claim in claims:
        if claim.dataset_type is None:
            continue
        policy = most_specific_policy(policies.get(claim.dataset_type, ()), field_name)
        if policy is not None:
            break
    if policy is None:
        raise ValidationFailed(
            [
                FieldError(
                    field="strategy",
                    code=FieldErrorCode.TRUST_POLICY_MISSING,
                    message=f"No trust policy ranks sources for {field_name}",
                )
            ]
        )

    def sort_key(claim: ConflictingClaim) -> tuple[int, float]:
        rank = (
            policy.rank_of(claim.source_system)
            if claim.source_system is not None
            else len(policy.ranking) + 1
        )
        return rank, -claim.observed_at.timestamp()

    return min(claims, key=sort_key)
