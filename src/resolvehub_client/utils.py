"""Shared utility functions for the ResolveHub clients."""

import json
import logging
from datetime import datetime
from typing import Any, Optional

STATUS_LABELS = {
    "open": "Ouvert",
    "assigned": "Assigné",
    "resolved": "Résolu",
}

# The field app words statuses from the requester's point of view.
USER_STATUS_LABELS = {
    "open": "En attente",
    "assigned": "En traitement",
    "resolved": "Résolu",
}

URGENCY_LABELS = {
    "low": "Normale",
    "medium": "Moyenne",
    "high": "Urgente",
}

CATEGORY_LABELS = {
    "agriculture": "Agriculture",
    "elevage": "Élevage",
    "sos_accident": "SOS Accident",
    "cybersecurity": "Cybersécurité",
}


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse JSON from text, attempting to extract a JSON fragment if full parse fails.

    Photo analyses are sometimes stored as the raw text of a model answer, with
    the JSON object embedded in prose.

    Args:
        text: The text to parse, which may contain JSON

    Returns:
        A dictionary with parsed JSON data, or empty dict if parsing fails
    """
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else {}
    except (json.JSONDecodeError, TypeError):
        # Attempt to locate JSON substring
        if not isinstance(text, str):
            return {}
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end != -1 and end > start:
            fragment = text[start : end + 1]
            try:
                parsed = json.loads(fragment)
                return parsed if isinstance(parsed, dict) else {}
            except json.JSONDecodeError:
                pass
    return {}


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_date(value: Any) -> str:
    """Render a timestamp as ``dd/mm/YYYY HH:MM``; unparsable input is returned as-is."""
    if not value:
        return ""
    parsed = parse_timestamp(value)
    if parsed is None:
        return str(value)
    return parsed.strftime("%d/%m/%Y %H:%M")


def label_for(labels: dict[str, str], value: Any, default: str = "") -> str:
    key = getattr(value, "value", value)
    if key is None:
        return default
    return labels.get(str(key), str(key) or default)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
