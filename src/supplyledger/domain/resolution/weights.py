"""Matcher tables and the policies that weight them."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, Protocol, cast, runtime_checkable

from supplyledger.domain.model import DecisionType, EntityType

from .matchers import AttributeMatcher, MatcherKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from supplyledger.domain.model import Decision

MATCHED_SIMILARITY: Final = 0.9

DEFAULT_MATCHERS: Final[dict[EntityType, tuple[AttributeMatcher, ...]]] = {
    EntityType.SUPPLIER: (
        AttributeMatcher("vat_number", MatcherKind.EXACT, 3.0),
        AttributeMatcher("duns", MatcherKind.EXACT, 3.0),
        AttributeMatcher("legal_name", MatcherKind.FUZZY, 2.0),
        AttributeMatcher("address", MatcherKind.TOKEN_SET, 1.0),
        AttributeMatcher("country_code", MatcherKind.EXACT, 0.5, identifying=False),
    ),
    EntityType.SKU: (
        AttributeMatcher("gtin", MatcherKind.EXACT, 3.0),
        AttributeMatcher("sku_code", MatcherKind.EXACT, 3.0),
        AttributeMatcher("name", MatcherKind.FUZZY, 2.0),
        AttributeMatcher("description", MatcherKind.TOKEN_SET, 1.0),
    ),
    EntityType.BOM: (
        AttributeMatcher("parent_sku", MatcherKind.EXACT, 3.0),
        AttributeMatcher("name", MatcherKind.FUZZY, 2.0),
        AttributeMatcher("components", MatcherKind.TOKEN_SET, 1.5),
    ),
}


@runtime_checkable
class WeightPolicy(Protocol):
    """Source of the weighted matchers used to score one entity type."""

    def matchers_for(self, entity_type: EntityType) -> tuple[AttributeMatcher, ...]: ...


@dataclass(frozen=True, slots=True)
class StaticWeightPolicy:
    table: Mapping[EntityType, tuple[AttributeMatcher, ...]] = field(
        default_factory=lambda: dict(DEFAULT_MATCHERS)
    )

    def matchers_for(self, entity_type: EntityType) -> tuple[AttributeMatcher, ...]:
        return tuple(self.table.get(entity_type, ()))


@dataclass(frozen=True, slots=True)
class LearnedWeightPolicy:
    """Weights boosted by how often each attribute matched in accepted links.

    An attribute that matched in every accepted link decision for its entity type
    ends up with twice its base weight; one that never matched keeps its base.
    """

    table: Mapping[EntityType, tuple[AttributeMatcher, ...]]

    def matchers_for(self, entity_type: EntityType) -> tuple[AttributeMatcher, ...]:
        return tuple(self.table.get(entity_type, ()))

    @classmethod
    def from_decisions(
        cls,
        decisions: Iterable[Decision],
        *,
        base: Mapping[EntityType, tuple[AttributeMatcher, ...]] = DEFAULT_MATCHERS,
    ) -> LearnedWeightPolicy:
        totals: Counter[EntityType] = Counter()
        matched: dict[EntityType, Counter[str]] = {}
        for decision in decisions:
            if decision.decision_type is not DecisionType.ENTITY_LINK:
                continue
            raw_type = decision.details.get("entity_type")
            if raw_type is None:
                continue
            entity_type = EntityType(str(raw_type))
            totals[entity_type] += 1
            similarities = cast(
                "Mapping[str, float]", decision.details.get("matched_attributes", {})
            )
            counter = matched.setdefault(entity_type, Counter())
            for attribute, similarity in similarities.items():
                if float(similarity) >= MATCHED_SIMILARITY:
                    counter[attribute] += 1

        table: dict[EntityType, tuple[AttributeMatcher, ...]] = {}
        for entity_type, matchers in base.items():
            total = totals[entity_type]
            counts = matched.get(entity_type, Counter())
            table[entity_type] = tuple(
                matcher.with_weight(
                    matcher.weight * (1.0 + (counts[matcher.attribute] / total if total else 0.0))
                )
                for matcher in matchers
            )
        return cls(table=table)
