"""JSON file of per-source cursors for manual runs: {source_id: {cursor, updated_at}}."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from radar.connectors.base import to_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "data/cursors.json"


class CursorStore:
    """Load and save connector cursors keyed by source id."""

    def __init__(self, path: str = DEFAULT_STATE_PATH):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cursor file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def all(self) -> Dict[str, Any]:
        return self._load()

    def get(self, source_id: str) -> Dict[str, Any]:
        entry = self._load().get(source_id)
        if not isinstance(entry, dict) or not isinstance(entry.get("cursor"), dict):
            return {}
        return dict(entry["cursor"])

    def updated_at(self, source_id: str) -> Optional[str]:
        entry = self._load().get(source_id)
        return entry.get("updated_at") if isinstance(entry, dict) else None

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def save(self, source_id: str, cursor: Dict[str, Any]) -> None:
        data = self._load()
        data[source_id] = {"cursor": cursor, "updated_at": to_iso(utcnow())}
        self._write(data)

    def clear(self, source_id: str) -> bool:
        data = self._load()
        if source_id not in data:
            return False
        del data[source_id]
        self._write(data)
        return True
