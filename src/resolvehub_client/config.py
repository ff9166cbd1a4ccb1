from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv


@dataclass(slots=True)
class Settings:
    """Central configuration loaded from environment variables."""

    api_url: str = "http://localhost:8000"
    request_timeout: float = 20.0
    refresh_interval: float = 30.0
    notification_ttl: float = 5.0
    resolve_refetch_delay: float = 0.5
    max_photo_bytes: int = 5 * 1024 * 1024
    state_file: Path = Path.home() / ".resolvehub" / "state.json"
    channel: str = "app"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        env = os.environ
        invalid: list[str] = []
        values: dict[str, Any] = {}

        field_map = {
            "api_url": ("RESOLVEHUB_API_URL", str),
            "request_timeout": ("RESOLVEHUB_REQUEST_TIMEOUT", float),
            "refresh_interval": ("RESOLVEHUB_REFRESH_INTERVAL", float),
            "notification_ttl": ("RESOLVEHUB_NOTIFICATION_TTL", float),
            "resolve_refetch_delay": ("RESOLVEHUB_RESOLVE_REFETCH_DELAY", float),
            "max_photo_bytes": ("RESOLVEHUB_MAX_PHOTO_BYTES", int),
            "state_file": ("RESOLVEHUB_STATE_FILE", Path),
            "channel": ("RESOLVEHUB_CHANNEL", str),
        }

        for attr, (env_key, convert) in field_map.items():
            value = env.get(env_key)
            if not value or not value.strip():
                continue
            try:
                values[attr] = convert(value.strip())
            except ValueError:
                invalid.append(env_key)

        if invalid:
            raise RuntimeError(
                "Invalid values for environment variables: " + ", ".join(invalid)
            )

        if "api_url" in values:
            values["api_url"] = values["api_url"].rstrip("/")
        if "state_file" in values:
            values["state_file"] = values["state_file"].expanduser()

        return cls(**values)


settings = Settings.from_env()
