"""
Tests for SyncRecordBridge write ordering and the user onboarding projection.
"""

from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest

from backend_metagauge.accumulator.bridge import SyncRecordBridge
from backend_metagauge.core.exceptions import RecordNotFoundError
from backend_metagauge.database import UserRecord


def test_write_applies_fields_then_logs_then_results():
    db = MagicMock()
    bridge = SyncRecordBridge(db)

    bridge.write(
        "a1",
        fields={"progress": 40},
        metadata={"sync_cycle": 3},
        logs=["line one", "line two"],
        results={"target": {}},
    )

    assert db.mock_calls == [
        call.update_analysis("a1", {"progress": 40}, metadata_patch={"sync_cycle": 3}),
        call.append_analysis_logs("a1", ["line one", "line two"]),
        call.update_analysis("a1", {"results": {"target": {}}}),
    ]


def test_write_skips_empty_parts():
    db = MagicMock()
    SyncRecordBridge(db).write("a1", logs=["only a log"])
    db.update_analysis.assert_not_called()
    db.append_analysis_logs.assert_called_once_with("a1", ["only a log"])


def test_write_to_missing_record_raises():
    db = MagicMock()
    db.update_analysis.return_value = None
    with pytest.raises(RecordNotFoundError) as exc:
        SyncRecordBridge(db).write("gone", fields={"progress": 10})
    assert exc.value.record_id == "gone"
    db.append_analysis_logs.assert_not_called()


def test_append_logs_to_missing_record_raises(db):
    with pytest.raises(RecordNotFoundError):
        SyncRecordBridge(db).append_logs("missing", "hello")


def test_metadata_patch_keeps_unrelated_keys(db, analysis):
    """Cycle bookkeeping never clobbers a stop flag written by someone else."""
    bridge = SyncRecordBridge(db)
    db.update_analysis("a1", {}, metadata_patch={"continuous": False})
    bridge.write("a1", metadata={"sync_cycle": 2})
    metadata = db.get_analysis("a1").metadata
    assert metadata == {"continuous": False, "sync_cycle": 2}


def test_write_user_onboarding_merges_into_default_contract(db, analysis):
    bridge = SyncRecordBridge(db)
    assert bridge.write_user_onboarding("u1", {"indexing_progress": 40}) is True
    projection = db.get_user("u1").onboarding["default_contract"]
    assert projection["indexing_progress"] == 40
    assert projection["chain"] == "ethereum"
    assert projection["is_indexed"] is False


def test_write_user_onboarding_without_user_is_noop(db):
    assert SyncRecordBridge(db).write_user_onboarding("nobody", {"is_indexed": True}) is False


def test_write_user_onboarding_without_default_contract_is_noop(db):
    db.create_user(UserRecord(id="u2", email="u2@example.com", onboarding={"step": 1}))
    bridge = SyncRecordBridge(db)
    assert bridge.write_user_onboarding("u2", {"is_indexed": True}) is False
    assert db.get_user("u2").onboarding == {"step": 1}


def test_read_user(db, analysis):
    bridge = SyncRecordBridge(db)
    assert bridge.read_user("u1").email == "owner@example.com"
    assert bridge.read_user("nobody") is None
