"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class LedgerState(StrEnum):
    INGESTED = "INGESTED"
    SEALED = "SEALED"
    QUARANTINED = "QUARANTINED"


class IngestionMethod(StrEnum):
    MANUAL_ENTRY = "MANUAL_ENTRY"
    FILE_UPLOAD = "FILE_UPLOAD"
    ERP_EXPORT = "ERP_EXPORT"
    ERP_API = "ERP_API"
    SUPPLIER_PORTAL = "SUPPLIER_PORTAL"
    API_PUSH = "API_PUSH"


class DatasetType(StrEnum):
    SUPPLIER_MASTER = "SUPPLIER_MASTER"
    PRODUCT_MASTER = "PRODUCT_MASTER"
    BOM = "BOM"
    CERTIFICATE = "CERTIFICATE"
    TEST_REPORT = "TEST_REPORT"
    TRANSACTION_LOG = "TRANSACTION_LOG"


class DeclaredScope(StrEnum):
    ENTIRE_ORGANIZATION = "ENTIRE_ORGANIZATION"
    LEGAL_ENTITY = "LEGAL_ENTITY"
    SITE = "SITE"
    PRODUCT_FAMILY = "PRODUCT_FAMILY"
    UNKNOWN = "UNKNOWN"


class SourceSystem(StrEnum):
    SAP = "SAP"
    MICROSOFT_DYNAMICS = "MICROSOFT_DYNAMICS"
    ORACLE = "ORACLE"
    ODOO = "ODOO"
    NETSUITE = "NETSUITE"
    SUPPLIER_PORTAL = "SUPPLIER_PORTAL"
    INTERNAL_MANUAL = "INTERNAL_MANUAL"
    OTHER = "OTHER"


class RetentionPolicy(StrEnum):
    STANDARD_1_YEAR = "STANDARD_1_YEAR"
    THREE_YEARS = "3_YEARS"
    SEVEN_YEARS = "7_YEARS"
    CUSTOM = "CUSTOM"


class Origin(StrEnum):
    USER_SUBMITTED = "USER_SUBMITTED"
    TEST_FIXTURE = "TEST_FIXTURE"
    SEED = "SEED"
    DEMO = "DEMO"


class DataMode(StrEnum):
    LIVE = "LIVE"
    SANDBOX = "SANDBOX"


class TrustLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class EntityType(StrEnum):
    """Canonical entity kinds evidence can resolve to."""

    SUPPLIER = "SUPPLIER"
    SKU = "SKU"
    BOM = "BOM"


class WorkItemType(StrEnum):
    CONFLICT = "CONFLICT"
    REVIEW = "REVIEW"
    MAPPING = "MAPPING"
    EXTRACTION = "EXTRACTION"


class WorkItemStatus(StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    DONE = "DONE"


class Priority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DecisionType(StrEnum):
    FIELD_VALUE = "FIELD_VALUE"
    ENTITY_LINK = "ENTITY_LINK"
    ENTITY_CREATE = "ENTITY_CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"


class ResolutionStrategy(StrEnum):
    PREFER_MOST_RECENT = "prefer-most-recent"
    PREFER_TRUSTED_SOURCE = "prefer-trust-ranked-source"
    MANUAL_OVERRIDE = "manual-override"
    AUTO_HIGH_CONFIDENCE = "auto-high-confidence"
    AUTO_FIRST_OBSERVATION = "auto-first-observation"
    MANUAL_APPROVAL = "manual-approval"
    ONBOARDING = "onboarding"
    STATUS_UPDATE = "status-update"


CONFLICT_STRATEGIES: frozenset[ResolutionStrategy] = frozenset(
    {
        ResolutionStrategy.PREFER_MOST_RECENT,
        ResolutionStrategy.PREFER_TRUSTED_SOURCE,
        ResolutionStrategy.MANUAL_OVERRIDE,
    }
)


class AuditAction(StrEnum):
    INGESTED = "INGESTED"
    SEALED = "SEALED"
    QUARANTINED = "QUARANTINED"
    QUARANTINE_RELEASED = "QUARANTINE_RELEASED"
    AMENDED = "AMENDED"
    MUTATION_BLOCKED = "MUTATION_BLOCKED"
    MODE_VIOLATION_BLOCKED = "MODE_VIOLATION_BLOCKED"
    LOOKUP_NOT_FOUND = "LOOKUP_NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    ENTITY_LINKED = "ENTITY_LINKED"
    ENTITY_CREATED = "ENTITY_CREATED"
    CONFLICT_OPENED = "CONFLICT_OPENED"
    CONFLICT_RESOLVED = "CONFLICT_RESOLVED"
    WORK_ITEM_STATUS_CHANGED = "WORK_ITEM_STATUS_CHANGED"
    FOLLOW_UP_CREATED = "FOLLOW_UP_CREATED"


class Role(StrEnum):
    SUBMITTER = "submitter"
    REVIEWER = "reviewer"
    ADMIN = "admin"
