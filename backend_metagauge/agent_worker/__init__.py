"""
Agent worker package: hosts continuous syncs on background threads.
"""

from backend_metagauge.agent_worker.runtime import SyncSupervisor, main

__all__ = ["SyncSupervisor", "main"]
