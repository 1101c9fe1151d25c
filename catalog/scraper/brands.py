from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

# Keyword (lowercase, matched on word boundaries) -> display name.
# Checked in order, so put longer / more specific keywords first.
DEFAULT_BRAND_KEYWORDS: dict[str, str] = {
    "wuque studio": "Wuque Studio",
    "epbt": "ePBT",
    "gmk": "GMK",
    "cherry": "Cherry",
    "gateron": "Gateron",
    "kailh": "Kailh",
    "akko": "Akko",
    "keychron": "Keychron",
    "drop": "Drop",
    "sa": "SA",
}

# Vendor values Shopify stores ship with when nobody filled the field in.
DEFAULT_VENDOR_DENYLIST: frozenset[str] = frozenset({
    "default",
    "default vendor",
    "vendor",
    "unknown",
    "n/a",
    "na",
    "none",
    "store",
    "shop",
    "my store",
})

UNKNOWN_BRAND = "Unknown"


class BrandResolver:
    """Infers a product's brand from its vendor field and title."""

    def __init__(
        self,
        keywords: Optional[Mapping[str, str]] = None,
        denylist: Optional[Iterable[str]] = None,
        fallback: str = UNKNOWN_BRAND,
    ):
        keywords = DEFAULT_BRAND_KEYWORDS if keywords is None else keywords
        self._patterns = [
            (re.compile(r"\b" + re.escape(k.lower()) + r"\b"), name)
            for k, name in keywords.items()
            if k.strip()
        ]
        self._denylist = frozenset(
            v.strip().lower() for v in (DEFAULT_VENDOR_DENYLIST if denylist is None else denylist)
        )
        self.fallback = fallback

    def is_placeholder(self, vendor: str, reseller: str = "") -> bool:
        v = vendor.strip().lower()
        return not v or v in self._denylist or (bool(reseller) and v == reseller.strip().lower())

    def from_title(self, title: str) -> Optional[str]:
        t = (title or "").lower()
        for pattern, name in self._patterns:
            if pattern.search(t):
                return name
        return None

    def resolve(
        self,
        title: str,
        vendor: Optional[str] = None,
        reseller: str = "",
        fallback: Optional[str] = None,
    ) -> str:
        if vendor and not self.is_placeholder(vendor, reseller):
            return vendor.strip()
        return self.from_title(title) or (fallback or self.fallback)


__all__ = [
    "BrandResolver",
    "DEFAULT_BRAND_KEYWORDS",
    "DEFAULT_VENDOR_DENYLIST",
    "UNKNOWN_BRAND",
]
