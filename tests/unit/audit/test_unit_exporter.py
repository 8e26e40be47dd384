# tests/unit/audit/test_exporter.py — v1
"""Tests for audit/exporter.py — JSON, CSV and narrative exports."""

from __future__ import annotations

import csv
import io
import json

import pytest

from planvault.audit.exporter import CSV_FIELDS, export_log, export_narrative
from planvault.audit.logger import log_batch_complete, log_operation
from planvault.audit.models import AuditQuery


@pytest.fixture
def populated(plan_dir, settings):
    log_operation(plan_dir, "add", "phase", "phase-5-docs", settings=settings)
    log_operation(plan_dir, "delete", "task", "task-1-init", success=False,
                  error="has dependents", settings=settings)
    log_batch_complete(plan_dir, "batch-x", completed=1, failed=1, rolled_back=True,
                       backup_path="/tmp/b", duration_ms=5, settings=settings)
    return plan_dir


class TestExportJson:
    def test_all_entries(self, populated):
        data = json.loads(export_log(populated, "json"))
        assert [d["operationType"] for d in data] == ["add", "delete", "batch_complete"]
        assert data[0]["planId"] == populated.name

    def test_filtered(self, populated):
        data = json.loads(export_log(populated, "json", AuditQuery(success=False)))
        assert len(data) == 2


class TestExportCsv:
    def test_rows(self, populated):
        rows = list(csv.DictReader(io.StringIO(export_log(populated, "csv"))))
        assert list(rows[0]) == CSV_FIELDS
        assert rows[0]["success"] == "true"
        assert rows[1]["success"] == "false"
        assert rows[1]["error"] == "has dependents"
        assert rows[1]["actor"] == "tester"


class TestExportNarrative:
    def test_lines(self, populated):
        text = export_log(populated, "narrative")
        lines = text.splitlines()
        assert lines[0] == f"=== Update History: {populated.name} ==="
        assert "tester performed add on phase 'phase-5-docs'" in lines[1]
        assert "failed to delete task 'task-1-init': has dependents" in lines[2]
        assert "Batch batch-x failed" in lines[3]
        assert "rolled back from /tmp/b" in lines[3]

    def test_empty(self):
        assert export_narrative([], "p") == "=== Update History: p ===\nNo entries.\n"


class TestExportLog:
    def test_writes_file(self, populated, tmp_path):
        out = tmp_path / "exports" / "history.csv"
        text = export_log(populated, "csv", output_path=out)
        assert out.read_text(encoding="utf-8") == text

    def test_unknown_format(self, populated):
        with pytest.raises(ValueError, match="Unknown export format"):
            export_log(populated, "xml")  # type: ignore[arg-type]
