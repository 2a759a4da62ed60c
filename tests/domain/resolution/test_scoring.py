from __future__ import annotations

from uuid import UUID, uuid4

import pytest

from supplyledger.config import LedgerSettings
from supplyledger.domain.model import (
    CanonicalEntity,
    DatasetType,
    Decision,
    DecisionType,
    EntityType,
    ResolutionStrategy,
    SourceSystem,
)
from supplyledger.domain.resolution import (
    DEFAULT_MATCHERS,
    AttributeMatcher,
    EvidenceClaim,
    LearnedWeightPolicy,
    MatcherKind,
    SuggestionStatus,
    build_suggestions,
    extract_attributes,
    normalize_text,
    rank_candidates,
    score_candidate,
)
from tests.helpers.ledger import START, TENANT

SUPPLIER_MATCHERS = DEFAULT_MATCHERS[EntityType.SUPPLIER]


def _supplier(entity_id: UUID | None = None, **fields: object) -> CanonicalEntity:
    return CanonicalEntity(
        id=entity_id or uuid4(),
        tenant_id=TENANT,
        entity_type=EntityType.SUPPLIER,
        created_at=START,
        updated_at=START,
        fields=dict(fields),
    )


def _claim(**attributes: object) -> EvidenceClaim:
    return EvidenceClaim(
        evidence_id=uuid4(),
        tenant_id=TENANT,
        dataset_type=DatasetType.SUPPLIER_MASTER,
        entity_type=EntityType.SUPPLIER,
        source_system=SourceSystem.SAP,
        observed_at=START,
        attributes=dict(attributes),
    )


def test_normalize_text_folds_case_punctuation_and_spacing() -> None:
    assert normalize_text("  ACME,  GmbH. ") == "acme gmbh"


def test_exact_matcher_ignores_formatting() -> None:
    matcher = AttributeMatcher("vat_number", MatcherKind.EXACT)

    assert matcher.similarity("DE 123-456", "de123456") == 1.0
    assert matcher.similarity("DE123", "DE124") == 0.0


def test_fuzzy_matcher_scores_near_misses() -> None:
    matcher = AttributeMatcher("legal_name", MatcherKind.FUZZY)

    assert matcher.similarity("Acme GmbH", "ACME GmbH") == 1.0
    assert matcher.similarity("Acme GmbH", "Acme GmbX") == pytest.approx(8 / 9)


def test_token_set_matcher_ignores_word_order() -> None:
    matcher = AttributeMatcher("address", MatcherKind.TOKEN_SET)
    assert matcher.similarity("1 Main Street, Berlin", "Berlin Main Street 1") == 1.0


def test_country_alone_never_establishes_a_match() -> None:
    score, similarities = score_candidate(
        {"country_code": "DE"}, {"country_code": "DE"}, SUPPLIER_MATCHERS
    )

    assert score == 0.0
    assert similarities == {"country_code": 1.0}


def test_score_is_weighted_over_shared_attributes() -> None:
    score, similarities = score_candidate(
        {"legal_name": "Acme GmbH", "vat_number": "DE1", "country_code": "FR"},
        {"legal_name": "Acme GmbH", "vat_number": "DE1", "country_code": "DE", "duns": "1"},
        SUPPLIER_MATCHERS,
    )

    assert score == pytest.approx(5.0 / 5.5)
    assert similarities == {"vat_number": 1.0, "legal_name": 1.0, "country_code": 0.0}


def test_rank_candidates_orders_by_score_then_id() -> None:
    low = UUID(int=2)
    tie_a = UUID(int=3)
    tie_b = UUID(int=1)
    candidates = [
        _supplier(low, legal_name="Other AG"),
        _supplier(tie_a, vat_number="DE1"),
        _supplier(tie_b, vat_number="DE1"),
    ]

    ranked = rank_candidates(_claim(vat_number="DE1"), candidates, SUPPLIER_MATCHERS)

    assert [item.entity_id for item in ranked] == [tie_b, tie_a, low]


def test_rank_candidates_skips_other_entity_types() -> None:
    sku = CanonicalEntity(
        tenant_id=TENANT,
        entity_type=EntityType.SKU,
        created_at=START,
        updated_at=START,
        fields={"vat_number": "DE1"},
    )
    assert rank_candidates(_claim(vat_number="DE1"), [sku], SUPPLIER_MATCHERS) == []


def test_build_suggestions_classifies_by_threshold() -> None:
    settings = LedgerSettings()
    claim = _claim(vat_number="DE1", legal_name="Acme GmbH", country_code="FR")
    exact = _supplier(vat_number="DE1", legal_name="Acme GmbH", country_code="FR")
    close = _supplier(vat_number="DE1", legal_name="Acme GmbH", country_code="DE")

    ranked = rank_candidates(claim, [close, exact], SUPPLIER_MATCHERS)
    suggestions = build_suggestions(claim, ranked, settings=settings)

    assert [item.status for item in suggestions] == [
        SuggestionStatus.AUTO_APPROVE_ELIGIBLE,
        SuggestionStatus.PENDING,
    ]
    assert suggestions[0].target_entity_id == exact.id
    assert suggestions[0].to_dict()["confidence_score"] == 1.0


def test_build_suggestions_proposes_a_new_entity_below_threshold() -> None:
    claim = _claim(vat_number="GB999", legal_name="Zeta Components Ltd")
    ranked = rank_candidates(
        claim, [_supplier(vat_number="DE1", legal_name="Acme GmbH")], SUPPLIER_MATCHERS
    )

    (suggestion,) = build_suggestions(claim, ranked, settings=LedgerSettings())

    assert suggestion.status is SuggestionStatus.CREATE_NEW
    assert suggestion.target_entity_id is None
    assert not suggestion.auto_approve_eligible
    assert suggestion.confidence_score < LedgerSettings().suggestion_threshold


def test_extract_attributes_maps_aliases_case_insensitively() -> None:
    attributes = extract_attributes(
        {"Supplier_Name": " Acme GmbH ", "VAT": "DE1", "ignored": "x", "country": ""},
        EntityType.SUPPLIER,
    )
    assert attributes == {"vat_number": "DE1", "legal_name": "Acme GmbH"}


def _link_decision(matched: dict[str, float]) -> Decision:
    return Decision(
        tenant_id=TENANT,
        decision_type=DecisionType.ENTITY_LINK,
        strategy=ResolutionStrategy.MANUAL_APPROVAL,
        reason_code="MAPPING_APPROVED",
        created_by="riley",
        created_at=START,
        entity_id=uuid4(),
        details={"entity_type": "SUPPLIER", "matched_attributes": matched},
    )


def test_learned_weights_boost_attributes_that_matched() -> None:
    policy = LearnedWeightPolicy.from_decisions(
        [
            _link_decision({"vat_number": 1.0, "legal_name": 0.5}),
            _link_decision({"vat_number": 1.0, "legal_name": 0.95}),
        ]
    )

    weights = {
        matcher.attribute: matcher.weight for matcher in policy.matchers_for(EntityType.SUPPLIER)
    }

    assert weights["vat_number"] == pytest.approx(6.0)
    assert weights["legal_name"] == pytest.approx(3.0)
    assert weights["duns"] == pytest.approx(3.0)
    sku = {matcher.attribute: matcher.weight for matcher in policy.matchers_for(EntityType.SKU)}
    assert sku["gtin"] == pytest.approx(3.0)
