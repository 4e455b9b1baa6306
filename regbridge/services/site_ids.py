from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from regbridge.services.site_directory import DirectoryCache


@dataclass(frozen=True)
class SiteIdCheck:
    valid: bool
    site_id: str
    account_name: str | None = None
    account_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {"valid": self.valid}
        if self.account_name:
            out["accountName"] = self.account_name
        if self.account_id:
            out["accountId"] = self.account_id
        return out


class SiteIdValidator:
    def __init__(self, directory: DirectoryCache):
        self.directory = directory

    async def validate(self, raw_site_id: Any) -> SiteIdCheck:
        """Raises DirectoryError when the directory cannot be built."""
        site_id = "" if raw_site_id is None else str(raw_site_id).strip()
        if not site_id:
            return SiteIdCheck(valid=False, site_id="")

        entries = await self.directory.get_directory()
        entry = entries.get(site_id)
        if entry is None:
            return SiteIdCheck(valid=False, site_id=site_id)
        return SiteIdCheck(
            valid=True,
            site_id=site_id,
            account_name=entry.account_name,
            account_id=entry.account_id,
        )
