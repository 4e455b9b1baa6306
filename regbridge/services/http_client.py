from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Mapping
from urllib.parse import urlencode

import httpx

from regbridge.services.failures import RemoteCallError, TransientRemoteError
from regbridge.services.retry import compute_backoff_seconds, is_retryable_status


HttpMethod = Literal["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]

BODYLESS_METHODS = frozenset({"GET", "HEAD"})
MAX_SNIPPET_CHARS = 400

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    body: Any = None

    failure: RemoteCallError | None = None
    attempts: int = 1
    elapsed_ms: int | None = None


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars]


def _parse_json_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        # Non-JSON success bodies are not errors
        return None


def _query_value(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def build_query_string(query: Mapping[str, Any] | None) -> str:
    if not query:
        return ""
    pairs = [(k, _query_value(v)) for k, v in query.items() if v is not None]
    return urlencode(pairs)


class StoreHttpClient:
    """
    Outbound client for the customer store's Admin REST API.

    - Shares one AsyncClient (connection pooling); the owner closes it.
    - Retries 429 / 5xx / transport errors with linear backoff, nothing else.
    - Returns an HttpResult; a failed call carries a classified RemoteCallError.
    """

    def __init__(
        self,
        *,
        shop: str,
        access_token: str,
        api_version: str,
        client: httpx.AsyncClient,
        extra_attempts: int = 1,
        base_delay_seconds: float = 0.5,
        request_id: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._root = _store_root(shop)
        self._api_version = api_version
        self._client = client
        self._extra_attempts = max(0, extra_attempts)
        self._base_delay = base_delay_seconds
        self._sleep = sleep
        self._default_headers = {
            "X-Shopify-Access-Token": access_token,
            "Accept": "application/json",
        }
        if request_id:
            self._default_headers["X-Request-Id"] = request_id

    @property
    def api_root(self) -> str:
        return f"{self._root}/admin/api/{self._api_version}"

    def endpoint_url(self, path: str, query: Mapping[str, Any] | None = None) -> str:
        url = f"{self.api_root}/{path.lstrip('/')}"
        qs = build_query_string(query)
        if qs:
            url += ("&" if "?" in url else "?") + qs
        return url

    async def execute(
        self,
        method: HttpMethod,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        extra_attempts: int | None = None,
    ) -> HttpResult:
        verb = method.upper()
        url = self.endpoint_url(path, query)

        content: bytes | None = None
        if body is not None and verb not in BODYLESS_METHODS:
            if isinstance(body, bytes):
                content = body
            elif isinstance(body, str):
                content = body.encode("utf-8")
            else:
                content = json.dumps(body).encode("utf-8")

        # Merge headers (caller wins)
        h = dict(self._default_headers)
        if content is not None:
            h["Content-Type"] = "application/json"
        if headers:
            h.update(dict(headers))

        retries = self._extra_attempts if extra_attempts is None else max(0, extra_attempts)
        total = retries + 1

        attempt = 0
        while True:
            attempt += 1
            result = await self._send_once(verb, url, headers=h, content=content, attempt=attempt)
            if result.ok:
                return result

            retryable = isinstance(result.failure, TransientRemoteError)
            if not retryable or attempt >= total:
                log.warning(
                    "store call failed: %s %s status=%s attempts=%s elapsed_ms=%s",
                    verb, path, result.status_code, attempt, result.elapsed_ms,
                )
                return result

            delay = compute_backoff_seconds(attempt, base=self._base_delay)
            log.info(
                "store call retry: %s %s status=%s attempt=%s/%s backoff=%.2fs",
                verb, path, result.status_code, attempt, total, delay,
            )
            await self._sleep(delay)

    async def _send_once(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        content: bytes | None,
        attempt: int,
    ) -> HttpResult:
        started = time.perf_counter()
        try:
            resp = await self._client.request(method=method, url=url, headers=headers, content=content)
        except httpx.TimeoutException as e:
            return HttpResult(
                ok=False,
                status_code=None,
                failure=TransientRemoteError(
                    error=f"Store request timed out: {e}",
                    status_text="timeout",
                    attempts=attempt,
                ),
                attempts=attempt,
            )
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            return HttpResult(
                ok=False,
                status_code=None,
                failure=TransientRemoteError(
                    error=f"Store request error: {type(e).__name__}: {e}",
                    status_text="request_error",
                    attempts=attempt,
                ),
                attempts=attempt,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        text = resp.text

        if 200 <= resp.status_code < 300:
            return HttpResult(
                ok=True,
                status_code=resp.status_code,
                body=_parse_json_body(text),
                attempts=attempt,
                elapsed_ms=elapsed_ms,
            )

        status_text = resp.reason_phrase or ""
        error_cls = TransientRemoteError if is_retryable_status(resp.status_code) else RemoteCallError
        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            body=_parse_json_body(text),
            failure=error_cls(
                error=f"Store call failed: HTTP {resp.status_code} {status_text}".rstrip(),
                status_code=resp.status_code,
                status_text=status_text,
                snippet=_cap_text(text, max_chars=MAX_SNIPPET_CHARS),
                attempts=attempt,
            ),
            attempts=attempt,
            elapsed_ms=elapsed_ms,
        )


def _store_root(shop: str) -> str:
    root = shop.strip().rstrip("/")
    if "://" not in root:
        root = f"https://{root}"
    return root
