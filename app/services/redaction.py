from __future__ import annotations
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_SENSITIVE_KEYS = {
    "password", "client_secret",
    "access_token", "refresh_token", "token",
    "api_key", "authorization",
}

REDACTED = "**********"

def redact_payload(value: Any, *, extra_keys: set[str] | None = None) -> Any:
    """Deep-copy dicts/lists with sensitive keys masked; safe to hand to a logger."""
    sensitive = set(DEFAULT_SENSITIVE_KEYS)
    if extra_keys:
        sensitive |= {k.lower() for k in extra_keys}

    def _walk(v: Any) -> Any:
        if isinstance(v, dict):
            out = {}
            for k, vv in v.items():
                if isinstance(k, str) and k.lower() in sensitive:
                    out[k] = REDACTED
                else:
                    out[k] = _walk(vv)
            return out
        if isinstance(v, list):
            return [_walk(x) for x in v]
        return v

    return _walk(value)


def redact_url(url: str) -> str:
    """Mask sensitive query parameters (e.g. a geocoder access_token)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        # e.g. a broken IPv6 host; the query may still hold a secret
        return url.split("?", 1)[0] + ("?" + REDACTED if "?" in url else "")
    if not parts.query:
        return url
    query = [
        (k, REDACTED if k.lower() in DEFAULT_SENSITIVE_KEYS else v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="*")))
