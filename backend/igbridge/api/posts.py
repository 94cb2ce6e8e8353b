"""Instagram publishing API routes (license gated)"""
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from igbridge.api.dependencies import get_history_repository, get_license_service, get_publish_workflow
from igbridge.core.config import settings
from igbridge.core.security import license_headers, require_license
from igbridge.db.repositories import LicenseRecord, PostHistoryRepository
from igbridge.schemas.posts import PublishPhotoRequest
from igbridge.services.license_service import LicenseService
from igbridge.services.publish_service import MediaPublishWorkflow, PublishRequest
from igbridge.utils.timeutils import isoformat

router = APIRouter(prefix="/api/post", tags=["posts"])


@router.post("/instagram")
async def publish_to_instagram(
    body: PublishPhotoRequest,
    headers: Tuple[str, str] = Depends(license_headers),
    license_service: LicenseService = Depends(get_license_service),
    workflow: MediaPublishWorkflow = Depends(get_publish_workflow)
):
    """Publish one photo; the outcome is always recorded as an attempt"""
    # Validated here so a malformed body is rejected before the license is bound
    license = license_service.validate(*headers)
    outcome = await workflow.publish_photo(PublishRequest(
        facebook_page_id=body.facebook_page_id,
        image_url=body.image_url,
        caption=body.caption,
        wordpress_post_id=body.wordpress_post_id,
        license_id=license.id,
    ))

    if not outcome.success:
        error = outcome.error
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_payload(include_detail=not settings.is_production),
        )

    return {"success": True, "data": outcome.to_data()}


@router.get("/history")
def post_history(
    facebook_page_id: Optional[str] = Query(None, alias="facebookPageId"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    license: LicenseRecord = Depends(require_license),
    history: PostHistoryRepository = Depends(get_history_repository)
):
    entries = history.list_by_license(license.id, facebook_page_id, limit=limit, offset=offset)
    items = [
        {
            "id": entry.id,
            "facebookPageId": entry.facebook_page_id,
            "instagramMediaId": entry.instagram_media_id,
            "wordpressPostId": entry.wordpress_post_id,
            "caption": entry.caption,
            "imageUrl": entry.image_url,
            "permalink": entry.permalink,
            "createdAt": isoformat(entry.created_at),
        }
        for entry in entries
    ]
    return {
        "success": True,
        "data": {
            "items": items,
            "total": history.count(license.id, facebook_page_id),
            "limit": limit,
            "offset": offset,
        },
    }


@router.get("/limit/{facebook_page_id}")
async def publishing_limit(
    facebook_page_id: str,
    license: LicenseRecord = Depends(require_license),
    workflow: MediaPublishWorkflow = Depends(get_publish_workflow)
):
    return {"success": True, "data": await workflow.check_limit(facebook_page_id)}
