"""State store — JSON snapshot of the whole DAO state.

The event log is the audit trail; the state store is what the service
reloads on start so it does not have to replay history. It is rewritten
in full after every successful mutation. Writes go to a temporary file
that replaces the old one, so a crash mid-write leaves the previous state
intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


STATE_VERSION = 1


class StateStore:
    """File-backed DAO state.

    Usage:
        store = StateStore(Path("data/state.json"))
        store.save(records)
        records = store.load()  # None if nothing saved yet
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(self, records: dict[str, Any]) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": STATE_VERSION, "state": records}
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, sort_keys=True, indent=2)
        os.replace(tmp_path, self._storage_path)

    def load(self) -> Optional[dict[str, Any]]:
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
        version = payload.get("version")
        if version != STATE_VERSION:
            raise ValueError(
                f"Unsupported state version {version!r} in {self._storage_path}"
            )
        return payload["state"]
