"""Instagram account and token management API routes"""
import logging

from fastapi import APIRouter, Depends, Query

from igbridge.api.dependencies import get_credential_repository, get_token_scheduler
from igbridge.core.errors import CredentialNotFoundError, TokenExpiredError
from igbridge.core.security import require_admin
from igbridge.db.repositories import CredentialRecord, CredentialRepository
from igbridge.tasks.token_refresh import TokenRefreshScheduler
from igbridge.utils.timeutils import isoformat

token_refresh_logger = logging.getLogger("token_refresh")

router = APIRouter(prefix="/api/instagram", tags=["instagram"])


def _usable(credential: CredentialRecord) -> dict:
    if credential.is_expired():
        raise TokenExpiredError()
    return {"success": True, "data": credential.to_public_dict()}


@router.get("/user/{facebook_user_id}")
def get_account_by_facebook_user(
    facebook_user_id: str,
    repository: CredentialRepository = Depends(get_credential_repository)
):
    """Most recently connected account for a Facebook user"""
    credentials = repository.find_by_facebook_user_id(facebook_user_id)
    if not credentials:
        raise CredentialNotFoundError(
            "This Facebook User ID is not registered. Complete the OAuth login first.",
            code="NOT_FOUND",
        )
    return _usable(credentials[0])


@router.get("/page/{facebook_page_id}")
def get_account_by_page(
    facebook_page_id: str,
    repository: CredentialRepository = Depends(get_credential_repository)
):
    credential = repository.find_by_page_id(facebook_page_id)
    if not credential:
        raise CredentialNotFoundError(
            "This Facebook Page ID is not registered. Complete the OAuth login first.",
            code="NOT_FOUND",
        )
    return _usable(credential)


@router.get("/users")
def list_accounts(
    _: str = Depends(require_admin),
    repository: CredentialRepository = Depends(get_credential_repository)
):
    users = [credential.to_public_dict() for credential in repository.list_all()]
    return {"success": True, "count": len(users), "data": users}


@router.get("/tokens/status")
def token_status(
    days: int = Query(30, ge=1, le=365),
    _: str = Depends(require_admin),
    repository: CredentialRepository = Depends(get_credential_repository)
):
    """Tokens expiring within ``days`` and tokens already expired"""
    expiring = [
        {
            "facebookPageId": c.facebook_page_id,
            "facebookPageName": c.facebook_page_name,
            "instagramUsername": c.instagram_username,
            "tokenExpiresAt": isoformat(c.token_expires_at),
            "daysUntilExpiry": c.days_until_expiry(),
        }
        for c in repository.list_expiring_within(days)
    ]
    expired = [
        {
            "facebookPageId": c.facebook_page_id,
            "facebookPageName": c.facebook_page_name,
            "instagramUsername": c.instagram_username,
            "tokenExpiresAt": isoformat(c.token_expires_at),
        }
        for c in repository.list_expired()
    ]
    return {"success": True, "data": {"expiring": expiring, "expired": expired}}


@router.post("/tokens/refresh/{facebook_page_id}")
async def refresh_token(
    facebook_page_id: str,
    _: str = Depends(require_admin),
    scheduler: TokenRefreshScheduler = Depends(get_token_scheduler)
):
    data = await scheduler.refresh_one(facebook_page_id)
    return {"success": True, "message": "Token refreshed successfully", "data": data}


@router.post("/tokens/refresh-all")
async def refresh_all_tokens(
    _: str = Depends(require_admin),
    scheduler: TokenRefreshScheduler = Depends(get_token_scheduler)
):
    report = await scheduler.refresh_all_tokens()
    token_refresh_logger.info(f"Manual refresh-all: {report.refreshed} refreshed, {report.failed} failed")
    return {
        "success": True,
        "message": f"Refreshed {report.refreshed} tokens, {report.failed} failed",
        "data": report.to_dict(),
    }
