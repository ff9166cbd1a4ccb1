"""Durable client-side state: auth token, identity and the field user's phone."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

_KNOWN_KEYS = ("token", "expert_id", "expert_name", "phone_number")


class StateStorage:
    """Small JSON document on disk. A missing or corrupt file reads as empty."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: not a JSON object", self.path)
            return {}
        return {key: data[key] for key in _KNOWN_KEYS if data.get(key) is not None}

    def get(self, key: str) -> Optional[str]:
        value = self.load().get(key)
        return str(value) if value is not None else None

    def update(self, **values: Any) -> None:
        data = self.load()
        for key, value in values.items():
            if key not in _KNOWN_KEYS:
                raise KeyError(f"Unknown state key: {key}")
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("State not saved to %s: %s", self.path, exc)

    def forget(self, *keys: str) -> None:
        self.update(**{key: None for key in keys})


class MemoryStorage(StateStorage):
    """In-process stand-in used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self.path = Path("<memory>")

    def load(self) -> dict[str, Any]:
        return {key: value for key, value in self._data.items() if value is not None}

    def update(self, **values: Any) -> None:
        for key, value in values.items():
            if key not in _KNOWN_KEYS:
                raise KeyError(f"Unknown state key: {key}")
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value
