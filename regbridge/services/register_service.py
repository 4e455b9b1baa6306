from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx

from regbridge.core.config import Settings
from regbridge.services.failures import Failure, InternalError, MissingConfig, RequestTimedOut
from regbridge.services.http_client import StoreHttpClient
from regbridge.services.reconcile import ReconcilePolicy, ReconcileSuccess, ReconciliationEngine
from regbridge.services.registration import parse_registration
from regbridge.services.site_directory import DirectoryCache
from regbridge.services.site_ids import SiteIdValidator
from regbridge.services.store import CustomerStore


log = logging.getLogger(__name__)


def build_engine(
    *,
    settings: Settings,
    http: httpx.AsyncClient,
    directory: DirectoryCache,
    request_id: str | None = None,
) -> ReconciliationEngine:
    assert settings.shop and settings.admin_token is not None
    client = StoreHttpClient(
        shop=settings.shop,
        access_token=settings.admin_token.get_secret_value(),
        api_version=settings.shopify_api_version,
        client=http,
        extra_attempts=settings.store_retry_extra_attempts,
        base_delay_seconds=settings.store_retry_base_delay_seconds,
        request_id=request_id,
    )
    return ReconciliationEngine(
        store=CustomerStore(client),
        validator=SiteIdValidator(directory),
        policy=ReconcilePolicy(return_new_password=settings.return_new_password),
    )


async def register_customer(
    payload: Mapping[str, Any],
    *,
    settings: Settings,
    http: httpx.AsyncClient,
    directory: DirectoryCache,
    request_id: str | None = None,
) -> ReconcileSuccess | Failure:
    """
    Request boundary for one registration.

    Every outcome is a value: configuration gaps, bad input, store failures,
    the overall deadline and unexpected exceptions alike.
    """
    missing = settings.missing_store_config()
    if missing:
        log.error("register rejected: missing configuration %s", ", ".join(missing))
        return MissingConfig(error=f"Missing configuration: {', '.join(missing)}", missing=tuple(missing))

    parsed = parse_registration(payload, default_country_code=settings.default_phone_country_code)
    if isinstance(parsed, Failure):
        return parsed

    engine = build_engine(settings=settings, http=http, directory=directory, request_id=request_id)
    try:
        return await asyncio.wait_for(engine.reconcile(parsed), timeout=settings.request_deadline_seconds)
    except asyncio.TimeoutError:
        log.error("register timed out after %.1fs: request_id=%s", settings.request_deadline_seconds, request_id)
        return RequestTimedOut(error="Registration timed out, please retry")
    except Exception as e:
        log.exception("register failed unexpectedly: request_id=%s", request_id)
        return InternalError(error=f"Unexpected error: {type(e).__name__}")
