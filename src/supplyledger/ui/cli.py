# ruff: noqa: T201

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from supplyledger.app import actor_from_operator, build_ledger
from supplyledger.config import configure_logging, get_operator_config
from supplyledger.domain.errors import LedgerError
from supplyledger.domain.hashing import canonical_value
from supplyledger.domain.model import (
    DatasetType,
    DeclaredScope,
    LedgerState,
    Priority,
    ResolutionStrategy,
    WorkItemStatus,
    WorkItemType,
)
from supplyledger.domain.ports import EvidenceFilter, WorkItemFilter

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from supplyledger.app import SupplyLedger
    from supplyledger.domain.model import Actor

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Supply-chain evidence ledger")
    parser.add_argument("--request-id", type=str, help="Correlation id stored on audit events")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest evidence records from a JSON file")
    ingest.add_argument("file", type=Path, help="JSON object or array of objects")

    seal = subparsers.add_parser("seal", help="Seal an evidence record")
    seal.add_argument("evidence_id", type=str)

    quarantine = subparsers.add_parser("quarantine", help="Quarantine an evidence record")
    quarantine.add_argument("evidence_id", type=str)
    quarantine.add_argument("--reason", type=str, required=True)
    quarantine.add_argument(
        "--deadline",
        type=str,
        required=True,
        help="ISO-8601 timestamp by which the scope must be resolved",
    )

    release = subparsers.add_parser(
        "release-quarantine", help="Return a quarantined record to INGESTED with a known scope"
    )
    release.add_argument("evidence_id", type=str)
    release.add_argument("--scope", type=DeclaredScope, choices=list(DeclaredScope), required=True)
    release.add_argument("--scope-target-id", type=str)

    show = subparsers.add_parser("show", help="Show one evidence record")
    show.add_argument("evidence_id", type=str)

    listing = subparsers.add_parser("list", help="List the tenant's evidence records")
    listing.add_argument("--state", type=LedgerState, choices=list(LedgerState), action="append")
    listing.add_argument(
        "--dataset-type", type=DatasetType, choices=list(DatasetType), action="append"
    )
    listing.add_argument("--limit", type=int)

    subparsers.add_parser("readiness", help="Report what blocks live operation")
    subparsers.add_parser("verify", help="Compare projections with the decision log")

    suggest = subparsers.add_parser("suggest", help="Show mapping suggestions for a record")
    suggest.add_argument("evidence_id", type=str)

    resolve = subparsers.add_parser("resolve", help="Resolve one record to a canonical entity")
    resolve.add_argument("evidence_id", type=str)

    unmapped = subparsers.add_parser(
        "resolve-unmapped", help="Resolve every record not yet linked to an entity"
    )
    unmapped.add_argument("--workers", type=int, default=4)

    approve = subparsers.add_parser("approve", help="Approve a mapping work item")
    approve.add_argument("work_item_id", type=str)
    approve.add_argument(
        "--target", type=str, help="Existing entity id; omit to create a new entity"
    )
    approve.add_argument("--comment", type=str)

    detect = subparsers.add_parser("detect-conflicts", help="Check an entity for conflicts")
    detect.add_argument("entity_id", type=str)

    work_items = subparsers.add_parser("work-items", help="List work items")
    work_items.add_argument("--type", type=WorkItemType, choices=list(WorkItemType), action="append")
    work_items.add_argument(
        "--status", type=WorkItemStatus, choices=list(WorkItemStatus), action="append"
    )
    work_items.add_argument("--limit", type=int)

    conflict = subparsers.add_parser("resolve-conflict", help="Resolve a conflict work item")
    conflict.add_argument("work_item_id", type=str)
    conflict.add_argument(
        "--strategy",
        type=ResolutionStrategy,
        choices=[
            ResolutionStrategy.PREFER_MOST_RECENT,
            ResolutionStrategy.PREFER_TRUSTED_SOURCE,
            ResolutionStrategy.MANUAL_OVERRIDE,
        ],
        required=True,
    )
    conflict.add_argument("--value", type=str, help="Winning value (JSON or plain text)")
    conflict.add_argument("--reason-code", type=str, required=True)
    conflict.add_argument("--comment", type=str)
    conflict.add_argument(
        "--correction", action="store_true", help="Supersede the previous decision"
    )

    status = subparsers.add_parser("set-status", help="Move a work item between open states")
    status.add_argument("work_item_id", type=str)
    status.add_argument(
        "--status",
        type=WorkItemStatus,
        choices=[WorkItemStatus.OPEN, WorkItemStatus.IN_PROGRESS, WorkItemStatus.BLOCKED],
        required=True,
    )
    status.add_argument("--reason-code", type=str, required=True)
    status.add_argument("--comment", type=str)

    follow_up = subparsers.add_parser("follow-up", help="Create a follow-up work item")
    follow_up.add_argument("parent_id", type=str)
    follow_up.add_argument("--type", type=WorkItemType, choices=list(WorkItemType), required=True)
    follow_up.add_argument(
        "--priority", type=Priority, choices=list(Priority), default=Priority.MEDIUM
    )
    follow_up.add_argument("--evidence-id", type=str)
    follow_up.add_argument("--entity-ref", type=str)

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_uuid(value: str | None) -> UUID | None:
    if value is None:
        return None
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _parse_value(value: str | None) -> object | None:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _load_records(path: Path) -> list[dict[str, object]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    records = data if isinstance(data, list) else [data]
    if not all(isinstance(record, dict) for record in records):
        raise ValueError(f"{path} must hold a JSON object or an array of objects")
    return records


def to_jsonable(value: object) -> object:
    """Render results (dataclasses, lists, dictionaries) as JSON-ready values."""

    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_jsonable(to_dict())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: to_jsonable(getattr(value, item.name))
            for item in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return canonical_value(value)


def _emit(value: object) -> None:
    print(json.dumps(to_jsonable(value), indent=2, sort_keys=True))


def _dispatch(args: argparse.Namespace, ledger: SupplyLedger, actor: Actor) -> object:
    request_id: str | None = args.request_id
    command: str = args.command
    if command == "ingest":
        return [
            ledger.evidence.ingest(record, actor=actor, request_id=request_id)
            for record in _load_records(args.file)
        ]
    if command == "seal":
        return ledger.evidence.seal(args.evidence_id, actor=actor, request_id=request_id)
    if command == "quarantine":
        return ledger.evidence.quarantine(
            args.evidence_id,
            reason=args.reason,
            deadline=_parse_iso_datetime(args.deadline),
            actor=actor,
            request_id=request_id,
        )
    if command == "release-quarantine":
        return ledger.evidence.release_quarantine(
            args.evidence_id,
            declared_scope=args.scope,
            scope_target_id=args.scope_target_id,
            actor=actor,
            request_id=request_id,
        )
    if command == "show":
        return ledger.evidence.get(args.evidence_id, actor=actor, request_id=request_id)
    if command == "list":
        return ledger.evidence.list_by_tenant(
            actor=actor,
            filters=EvidenceFilter(
                ledger_states=frozenset(args.state) if args.state else None,
                dataset_types=frozenset(args.dataset_type) if args.dataset_type else None,
                limit=args.limit,
            ),
        )
    if command == "readiness":
        return ledger.readiness(actor.tenant_id)
    if command == "verify":
        return ledger.verify_projections(actor.tenant_id)
    if command == "suggest":
        return ledger.resolution.generate_suggestions(
            args.evidence_id, actor=actor, request_id=request_id
        )
    if command == "resolve":
        return ledger.resolution.resolve_evidence(
            args.evidence_id, actor=actor, request_id=request_id
        )
    if command == "resolve-unmapped":
        return ledger.resolution.resolve_unmapped(
            actor=actor, max_workers=args.workers, request_id=request_id
        )
    if command == "approve":
        return ledger.resolution.approve_suggestion(
            args.work_item_id,
            _parse_uuid(args.target),
            actor=actor,
            comment=args.comment,
            request_id=request_id,
        )
    if command == "detect-conflicts":
        return ledger.work_items.detect_conflicts(
            args.entity_id, actor=actor, request_id=request_id
        )
    if command == "work-items":
        return ledger.work_items.list_work_items(
            actor=actor,
            filters=WorkItemFilter(
                types=frozenset(args.type) if args.type else None,
                statuses=frozenset(args.status) if args.status else None,
                limit=args.limit,
            ),
        )
    if command == "resolve-conflict":
        return ledger.work_items.resolve_conflict(
            args.work_item_id,
            strategy=args.strategy,
            winning_value=_parse_value(args.value),
            reason_code=args.reason_code,
            comment=args.comment,
            correction=args.correction,
            actor=actor,
            request_id=request_id,
        )
    if command == "set-status":
        return ledger.work_items.update_status(
            args.work_item_id,
            args.status,
            reason_code=args.reason_code,
            comment=args.comment,
            actor=actor,
            request_id=request_id,
        )
    if command == "follow-up":
        return ledger.work_items.create_follow_up(
            args.parent_id,
            args.type,
            priority=args.priority,
            evidence_id=_parse_uuid(args.evidence_id),
            entity_ref=_parse_uuid(args.entity_ref),
            actor=actor,
            request_id=request_id,
        )
    raise ValueError(f"Unsupported command: {command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    configure_logging()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)

    ledger: SupplyLedger | None = None
    try:
        actor = actor_from_operator(get_operator_config())
        ledger = build_ledger()
        result = _dispatch(parsed_args, ledger, actor)
    except LedgerError as exc:
        log.warning("%s: %s", exc.code, exc.message)
        _emit(exc.to_dict())
        sys.exit(2)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)
    finally:
        if ledger is not None:
            ledger.close()
    _emit(result)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
