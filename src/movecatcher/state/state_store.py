"""
State persistence helpers.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

log = logging.getLogger("movecatcher")


class StateStore:
    """One JSON file per symbol, replaced atomically on every save."""

    def __init__(self, symbol: str, state_dir: str) -> None:
        safe = symbol.replace(":", "_").replace("/", "_")
        self.path = Path(state_dir) / f"movecatcher_state_{safe}.json"
        self.tmp = self.path.with_suffix(".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as exc:
            log.error(json.dumps({"event": "state_load_error", "path": str(self.path), "err": str(exc)}))
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Dict[str, Any]) -> None:
        try:
            self.tmp.write_text(json.dumps(data, indent=2, sort_keys=True))
            self.tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            log.error(json.dumps({"event": "state_save_error", "path": str(self.path), "err": str(exc)}))
