"""
Utility functions for the Folio content engine.
"""

import re
from typing import Any, Optional

from flask import current_app

DEFAULT_PREVIEW_LENGTH = 100

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def config_value(key: str, default: Any) -> Any:
    """Read a setting from app config when available."""
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        # No app context active
        return default


def generate_text_preview(body: str, preview_length: Optional[int] = None) -> str:
    """
    Generate a preview of a text block.

    Args:
        body: The full text body
        preview_length: Maximum number of characters in preview (optional)

    Returns:
        Preview string with ellipsis if body is longer than preview_length
    """
    if preview_length is None:
        preview_length = int(config_value("PREVIEW_LENGTH", DEFAULT_PREVIEW_LENGTH))
    body = body.strip()
    if len(body) > preview_length:
        return body[:preview_length] + "..."
    return body


def slugify(title: str) -> str:
    """
    Generate a URL-safe slug from a title.

    "Iceland, Winter 2024!" -> "iceland-winter-2024"
    """
    return _SLUG_STRIP.sub("-", (title or "").lower()).strip("-")


def name_key(name: str) -> str:
    """
    Normalized lookup key for entity names.

    "  Île de Ré " -> "île de ré"
    """
    return (name or "").strip().casefold()
