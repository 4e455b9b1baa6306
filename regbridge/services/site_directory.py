"""
Site directory: site id -> account metadata, built from a published CSV sheet.

The sheet is fetched in bulk and parsed into an immutable mapping which is cached
for a TTL. Expired caches are rebuilt wholesale by a single in-flight refresh;
callers holding an older generation keep being served it until the rebuild lands.
Without a sheet URL the packaged JSON directory is used instead.
"""
from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

import httpx

from regbridge.core.config import MIN_CACHE_TTL_SECONDS


DEFAULT_FALLBACK_PATH = Path(__file__).resolve().parents[1] / "data" / "site_directory.json"

SITE_ID_ALIASES = ("siteid", "site_id", "site id", "id")
ACCOUNT_NAME_ALIASES = ("sitelist", "accountname", "account_name", "account name", "name")
ACCOUNT_ID_ALIASES = ("accountid", "account_id", "account id")

log = logging.getLogger(__name__)


class DirectoryError(RuntimeError):
    pass


class DirectorySourceError(DirectoryError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DirectorySchemaError(DirectoryError):
    def __init__(self, message: str, *, headers: list[str]):
        super().__init__(message)
        self.headers = headers


@dataclass(frozen=True)
class DirectoryEntry:
    account_name: str | None = None
    account_id: str | None = None


Directory = Mapping[str, DirectoryEntry]


@dataclass(frozen=True)
class DirectoryCacheState:
    built_at: float
    directory: Directory


def parse_csv(text: str, delimiter: str = ",") -> list[list[str]]:
    """Rows of the sheet; quoted cells may hold delimiters, doubled quotes and newlines."""
    return list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))


def resolve_header_index(headers: list[str], aliases: tuple[str, ...]) -> int:
    lc = [h.strip().lower() for h in headers]
    for alias in aliases:
        if alias in lc:
            return lc.index(alias)
    return -1


def _cell(row: list[str], idx: int) -> str | None:
    if idx < 0 or idx >= len(row):
        return None
    return row[idx].strip() or None


def rows_to_directory(rows: list[list[str]]) -> dict[str, DirectoryEntry]:
    if not rows:
        return {}
    headers = [h.strip() for h in rows[0]]
    if headers:
        # sheets exported with a UTF-8 BOM
        headers[0] = headers[0].lstrip("\ufeff").strip()

    site_idx = resolve_header_index(headers, SITE_ID_ALIASES)
    name_idx = resolve_header_index(headers, ACCOUNT_NAME_ALIASES)
    account_idx = resolve_header_index(headers, ACCOUNT_ID_ALIASES)

    if site_idx == -1:
        raise DirectorySchemaError(
            f'Directory CSV is missing a "siteid" column (or alias). Found headers: {", ".join(headers)}',
            headers=headers,
        )

    out: dict[str, DirectoryEntry] = {}
    for r in rows[1:]:
        site_id = _cell(r, site_idx)
        if not site_id:
            continue
        out[site_id] = DirectoryEntry(account_name=_cell(r, name_idx), account_id=_cell(r, account_idx))
    return out


def load_fallback_directory(path: Path | None = None) -> dict[str, DirectoryEntry]:
    """
    Static directory shipped with the service.

    Accepts either `{"<siteId>": {"accountName": ..., "accountId": ...}}` or a plain
    list of site ids.
    """
    raw: Any = json.loads((path or DEFAULT_FALLBACK_PATH).read_text(encoding="utf-8"))
    if isinstance(raw, list):
        return {str(s).strip(): DirectoryEntry() for s in raw if str(s).strip()}

    out: dict[str, DirectoryEntry] = {}
    for site_id, meta in (raw or {}).items():
        meta = meta or {}
        out[str(site_id).strip()] = DirectoryEntry(
            account_name=meta.get("accountName") or None,
            account_id=meta.get("accountId") or None,
        )
    return out


class DirectoryCache:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        csv_url: str | None,
        ttl_seconds: float = 300,
        fallback_path: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._http = http
        self._csv_url = csv_url
        self._ttl = max(MIN_CACHE_TTL_SECONDS, ttl_seconds)
        self._fallback_path = fallback_path
        self._clock = clock

        self._state: DirectoryCacheState | None = None
        self._fallback: Directory | None = None
        self._inflight: asyncio.Task[DirectoryCacheState] | None = None

    @property
    def state(self) -> DirectoryCacheState | None:
        return self._state

    async def get_directory(self) -> Directory:
        if not self._csv_url:
            if self._fallback is None:
                self._fallback = MappingProxyType(load_fallback_directory(self._fallback_path))
            return self._fallback

        state = self._state
        if state is not None and self._clock() - state.built_at < self._ttl:
            return state.directory

        refresh = self._inflight
        if refresh is None:
            refresh = asyncio.create_task(self._rebuild())
            self._inflight = refresh
            refresh.add_done_callback(self._clear_inflight)
        elif state is not None:
            # Someone else is rebuilding; the previous generation is still complete
            return state.directory

        new_state = await asyncio.shield(refresh)
        return new_state.directory

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # retrieve so a failed refresh nobody awaited is not reported as lost
            task.exception()

    async def _rebuild(self) -> DirectoryCacheState:
        assert self._csv_url
        try:
            resp = await self._http.get(self._csv_url, headers={"Cache-Control": "no-store"})
        except httpx.RequestError as e:
            raise DirectorySourceError(f"Failed to fetch site directory CSV ({type(e).__name__}: {e})") from e

        if not (200 <= resp.status_code < 300):
            raise DirectorySourceError(
                f"Failed to fetch site directory CSV ({resp.status_code})",
                status_code=resp.status_code,
            )

        directory = rows_to_directory(parse_csv(resp.text))
        state = DirectoryCacheState(built_at=self._clock(), directory=MappingProxyType(directory))
        self._state = state
        log.info("site directory rebuilt: %s entries", len(directory))
        return state
