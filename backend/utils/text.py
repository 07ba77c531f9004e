# backend/utils/text.py
import re
import unicodedata
from typing import Optional

_TAG_RE = re.compile(r"<[^>]*?>")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def strip_tags(value: Optional[str]) -> Optional[str]:
    """Removes HTML markup from free-text input and trims whitespace."""
    if value is None:
        return None
    return _TAG_RE.sub("", value).strip()


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _NON_SLUG_RE.sub("-", normalized.lower()).strip("-")


def norm_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    c = code.strip().upper()
    return c if c else None
