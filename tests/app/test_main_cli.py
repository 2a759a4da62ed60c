from __future__ import annotations

import json
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from supplyledger.config import MissingConfigurationError, OperatorConfig
from supplyledger.ui import cli
from tests.helpers.ledger import TENANT, certificate_upload, erp_api_record

if TYPE_CHECKING:
    from pathlib import Path

    from supplyledger.app import SupplyLedger


@pytest.fixture
def wired(monkeypatch: pytest.MonkeyPatch, ledger: SupplyLedger) -> SupplyLedger:
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "build_ledger", lambda: ledger)
    monkeypatch.setattr(
        cli,
        "get_operator_config",
        lambda: OperatorConfig(actor_id="sam", tenant_id=TENANT, roles=("submitter",)),
    )
    return ledger


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> object:
    cli.main(list(argv))
    return json.loads(capsys.readouterr().out)


def test_ingest_reads_one_or_many_records(
    wired: SupplyLedger, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps([erp_api_record(), certificate_upload()]), encoding="utf-8")

    results = _run(capsys, "--request-id", "req-1", "ingest", str(batch))

    assert isinstance(results, list)
    assert [result["replayed"] for result in results] == [False, False]
    assert {result["evidence"]["dataset_type"] for result in results} == {
        "SUPPLIER_MASTER",
        "CERTIFICATE",
    }
    for result in results:
        (event,) = wired.audit_log.by_evidence(TENANT, result["evidence"]["id"])
        assert event.request_id == "req-1"


def test_seal_then_readiness(
    wired: SupplyLedger, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    record = tmp_path / "record.json"
    record.write_text(json.dumps(erp_api_record()), encoding="utf-8")
    (ingested,) = _run(capsys, "ingest", str(record))  # type: ignore[misc]

    sealed = _run(capsys, "seal", ingested["evidence"]["id"])
    report = _run(capsys, "readiness")

    assert sealed["ledger_state"] == "SEALED"  # type: ignore[index]
    assert report == {
        "tenant_id": TENANT,
        "outside_allowed_states": 0,
        "test_origin_records": 0,
        "under_audited_sealed": 0,
        "ready": True,
    }


def test_ledger_errors_are_reported_as_json(
    wired: SupplyLedger, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["seal", str(uuid4())])

    assert excinfo.value.code == 2
    error = json.loads(capsys.readouterr().out)
    assert error["ok"] is False
    assert error["error_code"] == "NOT_FOUND"


def test_invalid_input_file_exits_with_usage_error(
    wired: SupplyLedger, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ingest", str(broken)])

    assert excinfo.value.code == 2
    assert capsys.readouterr().out == ""


def test_missing_operator_identity_is_fatal(
    monkeypatch: pytest.MonkeyPatch, ledger: SupplyLedger
) -> None:
    def missing() -> OperatorConfig:
        raise MissingConfigurationError(["SUPPLYLEDGER_ACTOR_ID"])

    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "build_ledger", lambda: ledger)
    monkeypatch.setattr(cli, "get_operator_config", missing)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["readiness"])

    assert excinfo.value.code == 1


def test_winning_values_parse_as_json_when_possible() -> None:
    assert cli._parse_value('{"a": 1}') == {"a": 1}  # noqa: SLF001  # pyright: ignore[reportPrivateUsage]
    assert cli._parse_value("FR") == "FR"  # noqa: SLF001  # pyright: ignore[reportPrivateUsage]
    assert cli._parse_value(None) is None  # noqa: SLF001  # pyright: ignore[reportPrivateUsage]
