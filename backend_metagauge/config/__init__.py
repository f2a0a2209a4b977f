"""
Configuration for the MetaGauge sync service.

Environment (.env) loading, RPC provider lists, loop settings and the
per-run SyncConfig.
"""

from backend_metagauge.config.settings import SyncConfig, SyncSettings, get_settings  # noqa: F401

__all__ = ["SyncConfig", "SyncSettings", "get_settings"]
