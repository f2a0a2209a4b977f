"""
Pytest fixtures for MetaGauge tests.

Temporary SQLite record store, loop settings without delay, and a running
analysis owned by a user with a default contract. Builders live in factories.py.
"""

from __future__ import annotations

import pytest

from backend_metagauge.config.settings import SyncConfig, SyncSettings
from backend_metagauge.database import AnalysisRecord, UserRecord, get_database
from factories import CONTRACT


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite record store per test."""
    return get_database(tmp_path / "metagauge.db")


@pytest.fixture
def settings():
    """Default loop constants without the inter-cycle delay."""
    return SyncSettings(cycle_delay_sec=0)


@pytest.fixture
def sync_config():
    return SyncConfig(
        contract_address=CONTRACT,
        chain="ethereum",
        contract_name="Test Token",
        rpc_config={"ethereum": ["http://rpc.invalid"]},
    )


@pytest.fixture
def analysis(db, sync_config):
    """Running, continuous analysis owned by user u1, whose onboarding has a default contract."""
    db.create_user(UserRecord(
        id="u1",
        email="owner@example.com",
        onboarding={"default_contract": {"address": CONTRACT, "chain": "ethereum", "is_indexed": False}},
    ))
    return db.create_analysis(AnalysisRecord(
        id="a1",
        user_id="u1",
        status="running",
        metadata={"continuous": True},
        config=sync_config.to_dict(),
    ))
