import logging

from fastapi import APIRouter, Depends, Query, Response

from regbridge.api.deps import get_directory
from regbridge.schemas.register import SiteIdValidationOut
from regbridge.services.site_directory import DirectoryCache, DirectoryError
from regbridge.services.site_ids import SiteIdValidator


log = logging.getLogger(__name__)
router = APIRouter()


@router.get("/validate-site-id", response_model=SiteIdValidationOut, response_model_exclude_none=True)
async def validate_site_id(
    site_id: str = Query(default="", alias="siteId"),
    directory: DirectoryCache = Depends(get_directory),
) -> SiteIdValidationOut:
    try:
        check = await SiteIdValidator(directory).validate(site_id)
    except DirectoryError as e:
        log.error("site id check failed, directory unavailable: %s", e)
        return SiteIdValidationOut(valid=False, error="Site directory unavailable")
    return SiteIdValidationOut(**check.to_payload())


@router.options("/validate-site-id", status_code=204)
async def validate_site_id_options() -> Response:
    return Response(status_code=204)
