"""HTTP header helpers for delivered content."""
from __future__ import annotations

from typing import Optional
from urllib.parse import quote


# Delivered ebooks must not be cached by browsers or intermediaries
NO_STORE_HEADERS = {
    "Cache-Control": "no-store, private, max-age=0",
    "Pragma": "no-cache",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
}


def sanitize_filename(filename: Optional[str], fallback: str) -> str:
    """Sanitize a filename for use in Content-Disposition.

    Removes CR/LF and quotes, trims spaces. Falls back to provided
    default when result is empty.
    """
    if not filename:
        return fallback
    cleaned = filename.replace("\r", " ").replace("\n", " ").strip()
    cleaned = cleaned.replace('"', "")
    return cleaned or fallback


def build_content_disposition(mode: str, filename: str) -> str:
    """Build a Content-Disposition header value.

    Non-ASCII names get an ASCII fallback plus an RFC 5987 ``filename*``.

    Args:
        mode: "inline" or "attachment"
        filename: suggested filename
    """
    safe = sanitize_filename(filename, "file")
    ascii_name = safe.encode("ascii", "ignore").decode("ascii").strip() or "file"
    value = f"{mode}; filename=\"{ascii_name}\""
    if ascii_name != safe:
        value += f"; filename*=UTF-8''{quote(safe, safe='')}"
    return value
