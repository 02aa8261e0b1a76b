"""State handed from the install phase to the cache-save phase.

The state is a small JSON object ``{"key": ..., "target": ...}``, written
with atomic writes (temp file + os.replace).  A missing ``key`` means there
is nothing to save; a key without ``target`` means the primary key was hit
and the existing entry is still good.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class SaveState:
    """What the save phase should store."""

    key: str | None = None
    target: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {}
        if self.key is not None:
            data["key"] = self.key
        if self.target is not None:
            data["target"] = self.target
        return data

    def write(self, path: Path) -> None:
        """Persist state to disk using atomic write."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(self.to_dict(), separators=(",", ":")))
        os.replace(tmp_path, path)

    @classmethod
    def read(cls, path: Path) -> SaveState | None:
        """Load state from disk.

        Returns:
            Loaded state, or None if no state file exists or it is unreadable
        """
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            return None
        if not isinstance(raw, dict):
            return None
        key = raw.get("key")
        target = raw.get("target")
        return cls(
            key=key if isinstance(key, str) else None,
            target=target if isinstance(target, str) else None,
        )

    @staticmethod
    def clear(path: Path) -> None:
        """Remove the state file once it has been consumed."""
        path.unlink(missing_ok=True)
