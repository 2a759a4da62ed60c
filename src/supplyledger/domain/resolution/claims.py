"""Claims extracted from evidence payloads.

A claim is the set of canonical attributes one evidence record asserts about a
business object. Payload keys are mapped onto canonical attribute names through
per-entity-type alias tables; keys with no alias are ignored.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, cast

from supplyledger.domain.hashing import canonical_json, parse_payload
from supplyledger.domain.model import DatasetType, EntityType

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from supplyledger.domain.model import Evidence, SourceSystem

ENTITY_TYPE_BY_DATASET: Final[dict[DatasetType, EntityType]] = {
    DatasetType.SUPPLIER_MASTER: EntityType.SUPPLIER,
    DatasetType.PRODUCT_MASTER: EntityType.SKU,
    DatasetType.BOM: EntityType.BOM,
}

ATTRIBUTE_ALIASES: Final[dict[EntityType, dict[str, tuple[str, ...]]]] = {
    EntityType.SUPPLIER: {
        "vat_number": ("vat_number", "vat", "vat_id", "tax_id"),
        "duns": ("duns", "duns_number"),
        "legal_name": ("legal_name", "supplier_name", "company_name", "name"),
        "address": ("address", "street_address", "registered_address"),
        "country_code": ("country_code", "country"),
    },
    EntityType.SKU: {
        "gtin": ("gtin", "ean", "upc"),
        "sku_code": ("sku_code", "sku", "article_number", "part_number"),
        "name": ("name", "product_name", "title"),
        "description": ("description", "product_description"),
    },
    EntityType.BOM: {
        "parent_sku": ("parent_sku", "parent", "assembly_sku"),
        "name": ("name", "bom_name"),
        "components": ("components", "component_skus", "lines"),
    },
}


def entity_type_for(dataset_type: DatasetType) -> EntityType | None:
    return ENTITY_TYPE_BY_DATASET.get(dataset_type)


def _attribute_value(value: object) -> object | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool | int | float):
        return value
    if isinstance(value, Mapping):
        return canonical_json(value)
    if isinstance(value, Sequence):
        parts = [
            item if isinstance(item, str) else canonical_json(item)
            for item in cast(Sequence[object], value)
            if item is not None
        ]
        return " ".join(parts) or None
    return str(value)


def extract_attributes(
    payload: Mapping[str, object], entity_type: EntityType
) -> dict[str, object]:
    """Map payload keys (case-insensitive) to canonical attributes; first alias wins."""

    lowered = {key.strip().lower(): value for key, value in payload.items()}
    attributes: dict[str, object] = {}
    for attribute, aliases in ATTRIBUTE_ALIASES[entity_type].items():
        for alias in aliases:
            value = _attribute_value(lowered.get(alias))
            if value is not None:
                attributes[attribute] = value
                break
    return attributes


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceClaim:
    evidence_id: UUID
    tenant_id: str
    dataset_type: DatasetType
    entity_type: EntityType
    source_system: SourceSystem
    observed_at: datetime
    attributes: dict[str, object] = field(default_factory=dict)
    text: str = ""


def claim_from_evidence(evidence: Evidence) -> EvidenceClaim | None:
    """Return the claim ``evidence`` makes, or ``None`` for unresolvable datasets."""

    entity_type = entity_type_for(evidence.dataset_type)
    if entity_type is None:
        return None
    payload = parse_payload(evidence.payload)
    attributes = (
        extract_attributes(cast(Mapping[str, object], payload), entity_type)
        if isinstance(payload, Mapping)
        else {}
    )
    return EvidenceClaim(
        evidence_id=evidence.id,
        tenant_id=evidence.tenant_id,
        dataset_type=evidence.dataset_type,
        entity_type=entity_type,
        source_system=evidence.source_system,
        observed_at=evidence.observed_at,
        attributes=attributes,
        text=evidence.payload,
    )
