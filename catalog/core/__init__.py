from .normalize import (
    normalize_text,
    parse_price,
    generate_handle,
    ensure_max_length,
    extract_id_from_url,
    generate_source_id,
    generate_tags,
)

__all__ = [
    "normalize_text",
    "parse_price",
    "generate_handle",
    "ensure_max_length",
    "extract_id_from_url",
    "generate_source_id",
    "generate_tags",
]
