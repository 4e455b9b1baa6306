import logging

import httpx
from fastapi import APIRouter, Depends, Response

from regbridge.api.deps import get_directory, get_http
from regbridge.core.config import Settings, get_settings
from regbridge.core.ids import new_request_id
from regbridge.schemas.register import RegisterIn, RegisterOut
from regbridge.services.redaction import redact_payload
from regbridge.services.register_service import register_customer
from regbridge.services.site_directory import DirectoryCache


log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/register", response_model=RegisterOut, response_model_exclude_none=True)
async def register(
    payload: RegisterIn,
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http),
    directory: DirectoryCache = Depends(get_directory),
) -> RegisterOut:
    """
    Create or update the store customer for this email.

    Failures come back as `{ok: false, error, field?, code}` with status 200.
    """
    request_id = new_request_id()
    body = payload.model_dump()
    log.info("register %s: %s", request_id, redact_payload(payload.model_dump(exclude_none=True)))

    outcome = await register_customer(
        body,
        settings=settings,
        http=http,
        directory=directory,
        request_id=request_id,
    )
    return RegisterOut(**outcome.to_payload())


@router.options("/register", status_code=204)
async def register_options() -> Response:
    return Response(status_code=204)
