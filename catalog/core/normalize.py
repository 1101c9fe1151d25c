from __future__ import annotations

import hashlib
import re
from typing import Iterable
from urllib.parse import urlparse

SOURCE_ID_MAX_LEN = 45

_PRICE_JUNK = re.compile(r"[^\d,.]")
_NON_ALNUM = re.compile(r"[\W_]+", re.UNICODE)
_WORD = re.compile(r"\b\w+\b")
_TAG_STOPWORDS = frozenset({"the", "and", "for", "with", "from"})


def normalize_text(text: str | None) -> str:
    return " ".join((text or "").split()).strip()


def parse_price(text: str | float | int | None) -> float:
    """Tolerant price parser: "₹1,299.00" -> 1299.0; anything unparseable -> 0.0."""
    if text is None:
        return 0.0
    if isinstance(text, (int, float)):
        return float(text)
    cleaned = _PRICE_JUNK.sub("", text).replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def generate_handle(name: str | None) -> str:
    """URL-safe slug for a product name."""
    if not name:
        return "unknown-product"
    handle = _NON_ALNUM.sub("-", name.lower()).strip("-")
    handle = re.sub(r"-{2,}", "-", handle)
    return handle or "unnamed-product"


def ensure_max_length(value: str, max_len: int = SOURCE_ID_MAX_LEN) -> str:
    """Shorten `value` to `max_len` keeping it stable across runs.

    Long values become a prefix cut at a hyphen (when one falls in the second
    half of the prefix) plus "-" and the first 8 hex chars of the md5 of the
    full value.
    """
    if len(value) <= max_len:
        return value

    digest = hashlib.md5(value.encode("utf-8")).hexdigest()
    hash_len = 8
    prefix_len = max_len - hash_len - 1
    if prefix_len < 1:
        return digest[:max_len]

    prefix = value[:prefix_len]
    cut = prefix.rfind("-")
    if cut > prefix_len // 2:
        prefix = prefix[:cut]
    prefix = prefix.rstrip("-")
    return f"{prefix}-{digest[:hash_len]}"


def extract_id_from_url(url: str | None) -> str:
    """Slug that identifies a product in its URL path.

    /products/<slug>, /collections/x/products/<slug> and /product/<slug> all
    yield <slug>; otherwise the last path segment unless it looks like a file.
    """
    if not url:
        return ""
    try:
        path = urlparse(url).path.strip("/")
    except ValueError:
        return ""
    if not path:
        return ""

    parts = path.split("/")
    for i, part in enumerate(parts):
        if part in ("products", "product") and i + 1 < len(parts):
            return parts[i + 1]

    last = parts[-1]
    if last and "." not in last:
        return last
    return ""


def generate_source_id(url: str | None, name: str | None) -> str:
    base = extract_id_from_url(url) or generate_handle(name)
    return ensure_max_length(base, SOURCE_ID_MAX_LEN)


def generate_tags(title: str, categories: Iterable[str] = ()) -> set[str]:
    """Tags from categories ("Key Caps" -> "key-caps") plus notable title words."""
    tags: set[str] = set()
    for cat in categories:
        cat = normalize_text(cat).lower().replace(" ", "-")
        if cat:
            tags.add(cat)
    for word in _WORD.findall((title or "").lower()):
        if len(word) > 2 and word not in _TAG_STOPWORDS:
            tags.add(word)
    return tags


__all__ = [
    "SOURCE_ID_MAX_LEN",
    "normalize_text",
    "parse_price",
    "generate_handle",
    "ensure_max_length",
    "extract_id_from_url",
    "generate_source_id",
    "generate_tags",
]
