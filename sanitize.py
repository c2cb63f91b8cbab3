import re
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_HTML_TAGS = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")


def sanitize_text(value: Optional[str]) -> str:
    """
    Strip control characters and HTML tags, collapse whitespace runs to a single space.
    Non-string input sanitizes to an empty string.
    """
    if not isinstance(value, str):
        return ""
    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _HTML_TAGS.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def normalize_category(value: Optional[str]) -> str:
    return sanitize_text(value).lower()
