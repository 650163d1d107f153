"""Tests for run reports."""

from datetime import datetime, timedelta

from dxmigrate.models.transfer import (
    MigrationRun,
    TransferAction,
    TransferItem,
    TransferResult,
    TransferStatus,
)
from dxmigrate.reporting.report import (
    _truncate,
    find_previous_run,
    generate_markdown_report,
    load_run,
    save_run,
)


def sample_run():
    started = datetime(2024, 5, 1, 12, 0, 0)
    return MigrationRun(
        source_url="http://source",
        target_url="http://target",
        started_at=started,
        finished_at=started + timedelta(seconds=42),
        order=["roles", "permissions"],
        per_type={
            "roles": TransferResult(
                entity_type="roles",
                items=[
                    TransferItem(source_id="r1", target_id="r1", status=TransferStatus.SUCCESS,
                                 action=TransferAction.CREATED, label="Editors"),
                    TransferItem(source_id="r2", status=TransferStatus.ERROR, label="Authors",
                                 detail="Value has to be unique.", http_status=400),
                ],
            ),
            "permissions": TransferResult(
                entity_type="permissions",
                items=[
                    TransferItem(source_id=5, status=TransferStatus.SKIPPED, label="articles:read",
                                 detail="prerequisite not present in target: policies P123"),
                ],
            ),
        },
        warnings=["Auto-added folders (required by articles)"],
    )


def test_markdown_report(tmp_path):
    path = generate_markdown_report(sample_run(), tmp_path)
    text = path.read_text()

    assert "## Overall: COMPLETED WITH ERRORS" in text
    assert "| roles |  | 1 | 1 | 0 |" in text
    assert "| **Total** | | **1** | **1** | **1** |" in text
    assert "HTTP 400: Value has to be unique." in text
    assert "policies P123" in text
    assert "- Auto-added folders (required by articles)" in text
    assert "roles → permissions" in text


def test_run_survives_save_and_load(tmp_path):
    run = sample_run()
    save_run(run, tmp_path)

    loaded = load_run(tmp_path)

    assert loaded.duration_seconds == 42
    assert loaded.summary["total"].error == 1
    assert loaded.per_type["roles"].items[1].http_status == 400
    assert not loaded.succeeded


def test_truncate_escapes_table_breaks():
    assert _truncate("a|b\nc", 10) == "a\\|b c"
    assert _truncate("x" * 20, 10) == "xxxxxxx..."


def test_interrupted_run_reports_failure(tmp_path):
    run = sample_run()
    run.error = "Could not reach http://target"

    report = generate_markdown_report(run, tmp_path).read_text()

    assert "## Overall: FAILED" in report
    assert "## Errors\n" in report
    assert "Could not reach http://target" in report
    assert not run.succeeded


def test_find_previous_run_matches_instances(tmp_path):
    first = sample_run()
    latest = sample_run()
    latest.started_at = datetime(2024, 6, 1)
    unrelated = MigrationRun(source_url="http://other", target_url="http://target")
    save_run(first, tmp_path / "20240501_120000")
    save_run(latest, tmp_path / "20240601_000000")
    save_run(unrelated, tmp_path / "20240701_000000")

    found = find_previous_run(tmp_path, "http://source/", "http://target")

    assert found is not None
    assert found.started_at == datetime(2024, 6, 1)
    assert find_previous_run(tmp_path, "http://source", "http://elsewhere") is None
    assert find_previous_run(tmp_path / "missing", "http://source", "http://target") is None
