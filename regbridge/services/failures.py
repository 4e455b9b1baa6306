from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass(frozen=True)
class Failure:
    """
    A classified, caller-facing failure.

    Failures are returned as values through the client and the engine, never raised.
    The HTTP layer turns them into `{ok: false, error, field?, code}`.
    """

    code: ClassVar[str] = "error"

    error: str
    field: str | None = None

    def to_payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": False, "error": self.error, "code": self.code}
        if self.field:
            out["field"] = self.field
        return out


@dataclass(frozen=True)
class ValidationError(Failure):
    code: ClassVar[str] = "validation_error"


@dataclass(frozen=True)
class InvalidSiteId(Failure):
    code: ClassVar[str] = "invalid_site_id"


@dataclass(frozen=True)
class MissingConfig(Failure):
    code: ClassVar[str] = "missing_config"

    missing: tuple[str, ...] = ()


@dataclass(frozen=True)
class DirectoryUnavailable(Failure):
    code: ClassVar[str] = "directory_unavailable"


@dataclass(frozen=True)
class RemoteCallError(Failure):
    code: ClassVar[str] = "remote_call_error"

    status_code: int | None = None
    status_text: str = ""
    snippet: str = ""
    attempts: int = 1


@dataclass(frozen=True)
class TransientRemoteError(RemoteCallError):
    # 429 / 5xx / transport error that outlived every retry
    code: ClassVar[str] = "transient_remote_error"


@dataclass(frozen=True)
class NoExistingAccount(Failure):
    code: ClassVar[str] = "no_existing_account"


@dataclass(frozen=True)
class IdentityMismatch(Failure):
    code: ClassVar[str] = "identity_mismatch"

    expected_email: str = ""
    found_email: str = ""


@dataclass(frozen=True)
class CreateNoIdentifier(Failure):
    code: ClassVar[str] = "create_no_identifier"

    snippet: str = ""


@dataclass(frozen=True)
class AttributeWriteError(Failure):
    code: ClassVar[str] = "attribute_write_error"

    namespace: str = ""
    key: str = ""
    status_code: int | None = None


@dataclass(frozen=True)
class RequestTimedOut(Failure):
    code: ClassVar[str] = "timeout"


@dataclass(frozen=True)
class InternalError(Failure):
    code: ClassVar[str] = "internal_error"
