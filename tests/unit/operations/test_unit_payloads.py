# tests/unit/operations/test_payloads.py — v1
"""Tests for operations/models.py — payloads and the operation union."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from planvault.operations.models import (
    MetadataUpdate,
    PhaseAdd,
    PhaseDelete,
    PhasePatch,
    TaskAdd,
    TaskUpdate,
    parse_operation,
    parse_operations,
    sort_by_priority,
)


class TestParseOperation:
    def test_discriminates_on_target_and_type(self):
        op = parse_operation({"type": "add", "target": "phase", "data": {"name": "Docs"}})
        assert isinstance(op, PhaseAdd)
        assert op.data.name == "Docs"

    def test_camel_case_payload(self):
        op = parse_operation(
            {
                "type": "add",
                "target": "task",
                "data": {"phaseId": "phase-1-setup", "name": "Lint", "estimatedTokens": 10},
            }
        )
        assert isinstance(op, TaskAdd)
        assert op.data.phase_id == "phase-1-setup"
        assert op.data.estimated_tokens == 10

    def test_typed_passthrough(self):
        op = PhaseDelete(data={"id": "phase-4-deploy"})
        assert parse_operation(op) is op

    def test_unknown_combination(self):
        with pytest.raises(ValidationError):
            parse_operation({"type": "reorder", "target": "metadata", "data": {}})


class TestParseOperations:
    def test_collects_every_error(self):
        ops, errors = parse_operations(
            [
                {"type": "delete", "target": "phase", "data": {"id": "phase-4-deploy"}},
                {"type": "explode", "target": "phase", "data": {}},
                {"type": "update", "target": "task", "data": {"id": "t", "phaseId": "p",
                                                              "status": "completed"}},
            ]
        )
        assert len(ops) == 1
        assert [e["index"] for e in errors] == [1, 2]
        assert errors[0]["code"] == "INVALID_OPERATION"
        assert errors[1]["code"] == "UNKNOWN_FIELD"

    def test_missing_required(self):
        _, errors = parse_operations([{"type": "delete", "target": "task", "data": {"id": "t"}}])
        assert errors[0]["code"] == "REQUIRED_FIELD_MISSING"
        assert "phaseId" in errors[0]["error"]


class TestOperationProperties:
    def test_priority_sort_is_stable(self):
        ops = [
            TaskUpdate(data={"phaseId": "p", "id": "t1", "name": "x"}),
            PhaseDelete(data={"id": "p2"}),
            MetadataUpdate(data={"name": "New"}),
            PhaseAdd(data={"name": "A"}),
            TaskUpdate(data={"phaseId": "p", "id": "t2", "name": "y"}),
        ]
        ordered = sort_by_priority(ops)
        assert [type(o).__name__ for o in ordered] == [
            "MetadataUpdate", "PhaseDelete", "PhaseAdd", "TaskUpdate", "TaskUpdate",
        ]
        assert [o.data.id for o in ordered[3:]] == ["t1", "t2"]

    def test_describe_and_force(self):
        op = PhaseDelete(data={"id": "phase-2-backend", "force": True})
        assert op.describe() == "delete phase 'phase-2-backend'"
        assert op.force
        assert MetadataUpdate(data={"name": "x"}).describe() == "update metadata"

    def test_target_id_falls_back_to_name(self):
        assert PhaseAdd(data={"name": "Docs"}).target_id == "Docs"


class TestPayloads:
    def test_provided_only_explicit(self):
        patch = PhasePatch(name="X", description=None)
        assert patch.provided() == {"name": "X", "description": None}

    def test_forbids_unknown(self):
        with pytest.raises(ValidationError):
            PhasePatch(status="completed")
