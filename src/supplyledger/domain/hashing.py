"""Canonical encoding and SHA-256 digests for evidence content.

Payloads and metadata are reduced to a canonical JSON text (sorted keys, compact
separators, NFC strings, UTC timestamps) before hashing, so the same logical
content always produces the same digest regardless of key order or formatting.
"""

from __future__ import annotations

import hashlib
import json
import math
import unicodedata
from collections.abc import Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from functools import singledispatch
from typing import Final, cast
from uuid import UUID

METADATA_FIELDS: Final[tuple[str, ...]] = (
    "dataset_type",
    "declared_scope",
    "scope_target_id",
    "primary_intent",
    "purpose_tags",
    "personal_data_present",
    "legal_basis",
    "retention_policy",
    "ingestion_method",
    "source_system",
)


class CanonicalEncodingError(TypeError):
    """Raised for values that have no canonical JSON form."""


@singledispatch
def canonical_value(value: object) -> object:
    """Return a JSON-compatible, order-stable representation of ``value``."""

    raise CanonicalEncodingError(f"Unsupported value for canonical encoding: {type(value)!r}")


@canonical_value.register(type(None))
def _(value: None) -> object:
    return value


@canonical_value.register
def _(value: bool) -> object:  # noqa: FBT001
    return value


@canonical_value.register
def _(value: int) -> object:
    return value


@canonical_value.register
def _(value: float) -> object:
    if not math.isfinite(value):
        raise CanonicalEncodingError("Non-finite floats have no canonical form")
    return value


@canonical_value.register
def _(value: str) -> object:
    if isinstance(value, Enum):
        return unicodedata.normalize("NFC", str(value.value))
    return unicodedata.normalize("NFC", value)


@canonical_value.register
def _(value: Enum) -> object:
    return canonical_value(value.value)


@canonical_value.register
def _(value: Decimal) -> object:
    return format(value.normalize(), "f")


@canonical_value.register
def _(value: UUID) -> object:
    return str(value)


@canonical_value.register
def _(value: datetime) -> object:
    if value.tzinfo is None:
        raise CanonicalEncodingError("Naive datetimes have no canonical form")
    return value.astimezone(UTC).isoformat(timespec="microseconds")


@canonical_value.register
def _(value: date) -> object:
    return value.isoformat()


@canonical_value.register
def _(value: Mapping) -> object:  # pyright: ignore[reportMissingTypeArgument]
    items = cast("Mapping[object, object]", value)
    result: dict[str, object] = {}
    for key, item in items.items():
        if not isinstance(key, str):
            raise CanonicalEncodingError(f"Mapping keys must be strings, got {type(key)!r}")
        result[unicodedata.normalize("NFC", key)] = canonical_value(item)
    return result


@canonical_value.register
def _(value: list) -> object:  # pyright: ignore[reportMissingTypeArgument]
    return [canonical_value(item) for item in cast("list[object]", value)]


@canonical_value.register
def _(value: tuple) -> object:  # pyright: ignore[reportMissingTypeArgument]
    return [canonical_value(item) for item in cast("tuple[object, ...]", value)]


@canonical_value.register
def _(value: frozenset) -> object:  # pyright: ignore[reportMissingTypeArgument]
    return _sorted_members(cast("frozenset[object]", value))


@canonical_value.register
def _(value: set) -> object:  # pyright: ignore[reportMissingTypeArgument]
    return _sorted_members(cast("set[object]", value))


def _sorted_members(members: set[object] | frozenset[object]) -> list[object]:
    encoded = [canonical_value(member) for member in members]
    return sorted(encoded, key=_dumps)


def _dumps(value: object) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_json(value: object) -> str:
    return _dumps(canonical_value(value))


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalize_payload(payload: object) -> str:
    """Return the stored text form of a payload.

    Structured payloads and text that parses as JSON are stored canonically; any
    other text is stored verbatim.
    """

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            parsed = json.loads(payload)
        except ValueError:
            return payload
        return canonical_json(parsed)
    return canonical_json(payload)


def payload_digest(payload: object) -> str:
    return sha256_hex(normalize_payload(payload).encode("utf-8"))


def metadata_digest(metadata: Mapping[str, object]) -> str:
    subset: dict[str, object] = {}
    for name in METADATA_FIELDS:
        value = metadata.get(name)
        if name == "purpose_tags" and value is not None:
            value = frozenset(cast("tuple[str, ...]", value))
        subset[name] = value
    return sha256_hex(canonical_json(subset).encode("utf-8"))


def parse_payload(text: str) -> object | None:
    """Return the decoded JSON payload, or ``None`` when the text is not JSON."""

    try:
        return json.loads(text)
    except ValueError:
        return None
