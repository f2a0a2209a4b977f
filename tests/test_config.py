"""
Tests for environment-driven settings, RPC provider lists and SyncConfig.
"""

from __future__ import annotations

import pytest

from backend_metagauge.config.env import get_rpc_timeout_sec, get_rpc_urls
from backend_metagauge.config.settings import SyncConfig, SyncSettings, get_settings
from backend_metagauge.core.exceptions import ConfigurationError


def test_settings_defaults():
    s = SyncSettings()
    assert s.max_empty_cycles == 10
    assert s.max_cycles == 50
    assert s.cycle_delay_sec == 30.0


def test_settings_are_clamped():
    s = SyncSettings(max_empty_cycles=0, max_cycles=-3, cycle_delay_sec=-1, report_user_limit=-5)
    assert s.max_empty_cycles == 1
    assert s.max_cycles == 1
    assert s.cycle_delay_sec == 0.0
    assert s.report_user_limit == 0


def test_get_settings_reads_env(monkeypatch):
    monkeypatch.setenv("SYNC_MAX_EMPTY_CYCLES", "3")
    monkeypatch.setenv("SYNC_MAX_CYCLES", "not-a-number")
    monkeypatch.setenv("SYNC_CYCLE_DELAY_SEC", "0.5")
    s = get_settings()
    assert s.max_empty_cycles == 3
    assert s.max_cycles == 50
    assert s.cycle_delay_sec == 0.5


def test_rpc_urls_env_first_then_defaults(monkeypatch):
    monkeypatch.setenv("LISK_RPC_URL1", "https://lisk.example")
    monkeypatch.setenv("LISK_RPC_URL2", "https://rpc.api.lisk.com")
    monkeypatch.delenv("LISK_RPC_URL3", raising=False)
    urls = get_rpc_urls("Lisk")
    assert urls[0] == "https://lisk.example"
    # duplicates of defaults are dropped
    assert urls.count("https://rpc.api.lisk.com") == 1


def test_rpc_urls_unknown_chain_is_empty():
    assert get_rpc_urls("starknet") == []


def test_rpc_timeout(monkeypatch):
    monkeypatch.setenv("RPC_TIMEOUT_SEC", "0.1")
    assert get_rpc_timeout_sec() == 1.0
    monkeypatch.setenv("RPC_TIMEOUT_SEC", "bad")
    assert get_rpc_timeout_sec() == 30.0


def test_sync_config_normalizes_fields():
    c = SyncConfig(contract_address="  0xAbC ", chain=" Ethereum ", rpc_config={"ethereum": ["u"]}, block_range=0)
    assert c.contract_address == "0xAbC"
    assert c.chain == "ethereum"
    assert c.search_strategy == "standard"
    assert c.block_range == 1000


def test_sync_config_without_rpc_config_reads_env():
    c = SyncConfig(contract_address="0x1", chain="lisk")
    assert set(c.rpc_config) == {"ethereum", "lisk"}
    assert c.rpc_config["lisk"]


@pytest.mark.parametrize(
    "address,chain,message",
    [("", "ethereum", "address"), ("0x1", "", "chain")],
)
def test_sync_config_validate(address, chain, message):
    c = SyncConfig(contract_address=address, chain=chain, rpc_config={"ethereum": ["u"]})
    with pytest.raises(ConfigurationError, match=message):
        c.validate()


def test_sync_config_from_nested_dict():
    """Stored analysis configs may nest the target and the analysis parameters."""
    c = SyncConfig.from_dict({
        "target_contract": {"address": "0x2", "chain": "lisk", "name": "Pool"},
        "analysis_params": {"search_strategy": "comprehensive", "block_range": 250},
        "rpc_config": {"lisk": ["https://lisk.example"]},
    })
    assert (c.contract_address, c.chain, c.contract_name) == ("0x2", "lisk", "Pool")
    assert c.search_strategy == "comprehensive"
    assert c.block_range == 250
    assert c.rpc_config == {"lisk": ["https://lisk.example"]}


def test_sync_config_dict_round_trip(sync_config):
    assert SyncConfig.from_dict(sync_config.to_dict()) == sync_config


def test_sync_config_validate_rejects_unsupported_chain():
    c = SyncConfig(contract_address="0x1", chain="starknet", rpc_config={"starknet": ["u"]})
    with pytest.raises(ConfigurationError, match="Unsupported chain: starknet"):
        c.validate()


@pytest.mark.parametrize("rpc_config", [{"lisk": ["u"]}, {"ethereum": []}, {"ethereum": [""]}])
def test_sync_config_validate_requires_providers_for_chain(rpc_config):
    c = SyncConfig(contract_address="0x1", chain="ethereum", rpc_config=rpc_config)
    with pytest.raises(ConfigurationError, match="No RPC providers"):
        c.validate()


def test_sync_config_rpc_keys_are_lowercased():
    c = SyncConfig(contract_address="0x1", chain="Lisk", rpc_config={"LISK": ["https://lisk.example"]})
    c.validate()
    assert c.rpc_config == {"lisk": ["https://lisk.example"]}
