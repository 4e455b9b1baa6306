from __future__ import annotations
from typing import Any

DEFAULT_SENSITIVE_KEYS = {
    "password", "password_confirmation", "passwordconfirmation",
    "token", "access_token", "admin_token",
    "authorization", "x-shopify-access-token",
}

REDACTED = "**********"


def mask_email(email: str) -> str:
    # j***@example.com: enough to correlate log lines, not enough to harvest
    local, sep, domain = (email or "").partition("@")
    if not sep:
        return REDACTED
    return f"{local[:1]}***@{domain}"


def redact_payload(value: Any, *, extra_keys: set[str] | None = None) -> Any:
    sensitive = set(DEFAULT_SENSITIVE_KEYS)
    if extra_keys:
        sensitive |= {k.lower() for k in extra_keys}

    def _walk(v: Any) -> Any:
        if isinstance(v, dict):
            out = {}
            for k, vv in v.items():
                if isinstance(k, str) and k.lower() in sensitive:
                    out[k] = REDACTED if vv is not None else None
                elif isinstance(k, str) and k.lower() == "email" and isinstance(vv, str):
                    out[k] = mask_email(vv)
                else:
                    out[k] = _walk(vv)
            return out
        if isinstance(v, list):
            return [_walk(x) for x in v]
        return v

    return _walk(value)
