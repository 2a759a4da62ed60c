"""Static submission rules: method contracts, dataset matrices, scope targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from supplyledger.domain.model import DatasetType, DeclaredScope, IngestionMethod, SourceSystem

ERP_SOURCES: Final[frozenset[SourceSystem]] = frozenset(
    {
        SourceSystem.SAP,
        SourceSystem.MICROSOFT_DYNAMICS,
        SourceSystem.ORACLE,
        SourceSystem.ODOO,
        SourceSystem.NETSUITE,
    }
)
EXTERNAL_SOURCES: Final[frozenset[SourceSystem]] = ERP_SOURCES | {SourceSystem.OTHER}


@dataclass(frozen=True, slots=True)
class MethodContract:
    required_fields: tuple[str, ...]
    allowed_sources: frozenset[SourceSystem]
    forced_source: SourceSystem | None = None


METHOD_CONTRACTS: Final[dict[IngestionMethod, MethodContract]] = {
    IngestionMethod.FILE_UPLOAD: MethodContract(
        required_fields=("file_name",),
        allowed_sources=EXTERNAL_SOURCES,
    ),
    IngestionMethod.API_PUSH: MethodContract(
        required_fields=("external_reference_id", "correlation_id"),
        allowed_sources=EXTERNAL_SOURCES | {SourceSystem.SUPPLIER_PORTAL},
    ),
    IngestionMethod.ERP_EXPORT: MethodContract(
        required_fields=("snapshot_at", "export_job_id"),
        allowed_sources=EXTERNAL_SOURCES,
    ),
    IngestionMethod.ERP_API: MethodContract(
        required_fields=("snapshot_at", "connector_reference"),
        allowed_sources=ERP_SOURCES,
    ),
    IngestionMethod.SUPPLIER_PORTAL: MethodContract(
        required_fields=("supplier_portal_request_id",),
        allowed_sources=frozenset({SourceSystem.SUPPLIER_PORTAL}),
        forced_source=SourceSystem.SUPPLIER_PORTAL,
    ),
    IngestionMethod.MANUAL_ENTRY: MethodContract(
        required_fields=("entry_notes",),
        allowed_sources=frozenset({SourceSystem.INTERNAL_MANUAL}),
        forced_source=SourceSystem.INTERNAL_MANUAL,
    ),
}

_MASTER_DATA_METHODS = frozenset(
    {
        IngestionMethod.MANUAL_ENTRY,
        IngestionMethod.FILE_UPLOAD,
        IngestionMethod.ERP_EXPORT,
        IngestionMethod.ERP_API,
        IngestionMethod.API_PUSH,
    }
)
_DOCUMENT_METHODS = frozenset({IngestionMethod.FILE_UPLOAD, IngestionMethod.SUPPLIER_PORTAL})

METHODS_BY_DATASET: Final[dict[DatasetType, frozenset[IngestionMethod]]] = {
    DatasetType.SUPPLIER_MASTER: _MASTER_DATA_METHODS,
    DatasetType.PRODUCT_MASTER: _MASTER_DATA_METHODS,
    DatasetType.BOM: _MASTER_DATA_METHODS,
    DatasetType.CERTIFICATE: _DOCUMENT_METHODS,
    DatasetType.TEST_REPORT: _DOCUMENT_METHODS,
    DatasetType.TRANSACTION_LOG: frozenset(
        {
            IngestionMethod.API_PUSH,
            IngestionMethod.FILE_UPLOAD,
            IngestionMethod.ERP_EXPORT,
            IngestionMethod.ERP_API,
        }
    ),
}

_DOCUMENT_SCOPES = frozenset(
    {DeclaredScope.LEGAL_ENTITY, DeclaredScope.SITE, DeclaredScope.PRODUCT_FAMILY}
)

# manual entry only; UNKNOWN is always accepted
MANUAL_SCOPES_BY_DATASET: Final[dict[DatasetType, frozenset[DeclaredScope]]] = {
    DatasetType.SUPPLIER_MASTER: frozenset(
        {DeclaredScope.ENTIRE_ORGANIZATION, DeclaredScope.LEGAL_ENTITY}
    ),
    DatasetType.PRODUCT_MASTER: frozenset(
        {
            DeclaredScope.ENTIRE_ORGANIZATION,
            DeclaredScope.LEGAL_ENTITY,
            DeclaredScope.PRODUCT_FAMILY,
        }
    ),
    DatasetType.BOM: _DOCUMENT_SCOPES,
    DatasetType.CERTIFICATE: _DOCUMENT_SCOPES,
    DatasetType.TEST_REPORT: _DOCUMENT_SCOPES,
    DatasetType.TRANSACTION_LOG: frozenset(),
}

SCOPES_REQUIRING_TARGET: Final[frozenset[DeclaredScope]] = frozenset(
    {DeclaredScope.LEGAL_ENTITY, DeclaredScope.SITE, DeclaredScope.PRODUCT_FAMILY}
)

PLACEHOLDER_VALUES: Final[frozenset[str]] = frozenset({"test", "asdf", "xxx", "-", "n/a", "tbd"})

CLIENT_DIGEST_FIELDS: Final[frozenset[str]] = frozenset(
    {"payload_digest", "metadata_digest", "payload_hash_sha256", "metadata_hash_sha256"}
)

ATTESTATION_FIELDS: Final[frozenset[str]] = frozenset(
    {"attested_by", "attested_at", "attestor_user_id", "attestor_email"}
)


def resolved_source(
    method: IngestionMethod, requested: SourceSystem | None
) -> SourceSystem | None:
    contract = METHOD_CONTRACTS[method]
    return contract.forced_source or requested
