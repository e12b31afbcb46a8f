from __future__ import annotations

import urllib.parse


def join_public_url(public_url: str, path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{public_url.rstrip('/')}{path}"


def is_https_url(url: str) -> bool:
    parsed = urllib.parse.urlparse(url)
    return parsed.scheme == "https" and bool(parsed.netloc)
