"""
Run-scoped collaborators handed to every node through the graph config
"""
from typing import Any, Dict, Optional

from ..config import Settings, get_settings
from ..ledger.base import Ledger


def get_ledger(config: Optional[Dict[str, Any]]) -> Ledger:
    ledger = ((config or {}).get("configurable") or {}).get("ledger")
    if ledger is None:
        raise RuntimeError("No ledger in graph config: pass configurable={'ledger': ...}")
    return ledger


def get_run_settings(config: Optional[Dict[str, Any]]) -> Settings:
    return ((config or {}).get("configurable") or {}).get("settings") or get_settings()
