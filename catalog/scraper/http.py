from __future__ import annotations

import requests

DEFAULT_TIMEOUT = 30.0

UA = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) CatalogRadar/0.3 Chrome/123 Safari/537.36",
      "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
      "Accept-Language": "en-US,en;q=0.8"}

JSON_HEADERS = {**UA, "Accept": "application/json"}


def safe_get(url: str, *, timeout: float = DEFAULT_TIMEOUT, headers: dict | None = None) -> requests.Response:
    """GET `url`, raising `requests.HTTPError` on a non-2xx status."""
    resp = requests.get(url, timeout=timeout, headers=headers or UA)
    resp.raise_for_status()
    return resp


__all__ = ["UA", "JSON_HEADERS", "DEFAULT_TIMEOUT", "safe_get"]
