from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from regbridge.services.failures import ValidationError
from regbridge.services.identity import normalize_email


MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_STRIP_RE = re.compile(r"[\s().\-/]")


@dataclass(frozen=True)
class RegistrationRequest:
    email: str  # as given, trimmed
    site_id: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None  # E.164
    title_role: str | None = None
    password: str | None = None
    update_only: bool = False

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)

    def __repr__(self) -> str:
        # never print the password
        return (
            f"RegistrationRequest(email={self.email!r}, site_id={self.site_id!r}, "
            f"update_only={self.update_only})"
        )


def _text(payload: Mapping[str, Any], key: str) -> str | None:
    v = payload.get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _flag(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in {"1", "true", "yes", "on"}
    return bool(v)


def normalize_phone(raw: str, *, default_country_code: str = "1") -> str | None:
    """
    Canonical dialable form (E.164) or None when the input cannot be one.

    10 bare digits get the default country code; digits already starting with the
    country code get a `+`; an explicit `+` followed by 8-15 digits is kept.
    """
    s = _PHONE_STRIP_RE.sub("", raw.strip())
    if s.startswith("+"):
        digits = s[1:]
        if digits.isdigit() and 8 <= len(digits) <= 15:
            return f"+{digits}"
        return None

    if s.startswith("00"):
        digits = s[2:]
        if digits.isdigit() and 8 <= len(digits) <= 15:
            return f"+{digits}"
        return None

    if not s.isdigit():
        return None
    if len(s) == 10:
        return f"+{default_country_code}{s}"
    if len(s) == 10 + len(default_country_code) and s.startswith(default_country_code):
        return f"+{s}"
    return None


def parse_registration(
    payload: Mapping[str, Any], *, default_country_code: str = "1"
) -> RegistrationRequest | ValidationError:
    email = _text(payload, "email")
    if not email:
        return ValidationError(error="Missing email", field="email")
    if not _EMAIL_RE.match(email):
        return ValidationError(error="Invalid email", field="email")

    site_id = _text(payload, "siteId")
    if not site_id:
        return ValidationError(error="Missing siteId", field="siteId")

    phone = None
    raw_phone = _text(payload, "phone")
    if raw_phone:
        phone = normalize_phone(raw_phone, default_country_code=default_country_code)
        if phone is None:
            return ValidationError(error="Invalid phone number", field="phone")

    # Passwords are taken verbatim; whitespace is significant
    password = payload.get("password")
    if password is not None and not isinstance(password, str):
        return ValidationError(error="Invalid password", field="password")

    return RegistrationRequest(
        email=email,
        site_id=site_id,
        first_name=_text(payload, "firstName"),
        last_name=_text(payload, "lastName"),
        phone=phone,
        title_role=_text(payload, "titleRole"),
        password=password or None,
        update_only=_flag(payload.get("update")),
    )
