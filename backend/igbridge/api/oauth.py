"""OAuth API routes for connecting Instagram Business accounts"""
import json
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from igbridge.api.dependencies import get_credential_repository, get_oauth_service
from igbridge.core.config import settings
from igbridge.core.errors import BrokerError
from igbridge.core.metrics import oauth_callbacks_counter
from igbridge.db.repositories import CredentialRepository
from igbridge.services.oauth_service import OAuthExchangeService, authorization_url, persist_discovered_accounts

oauth_logger = logging.getLogger("oauth")

router = APIRouter(prefix="/auth", tags=["oauth"])


def _frontend_redirect(query: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.FRONTEND_URL.rstrip('/')}/?{query}", status_code=302)


@router.get("/login")
def auth_login():
    """Start Facebook login for Instagram publishing"""
    return RedirectResponse(authorization_url(), status_code=302)


@router.api_route("/callback", methods=["GET", "POST"])
async def auth_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    oauth_service: OAuthExchangeService = Depends(get_oauth_service),
    repository: CredentialRepository = Depends(get_credential_repository),
):
    """Handle the Facebook redirect: exchange the code and store every linked account"""
    if error:
        oauth_logger.error(f"OAuth error from provider: {error} - {error_description}")
        oauth_callbacks_counter.labels(status="denied").inc()
        return _frontend_redirect(f"error={quote(error_description or error)}")

    if not code:
        oauth_callbacks_counter.labels(status="missing_code").inc()
        return _frontend_redirect(f"error={quote('No authorization code received')}")

    try:
        accounts = await oauth_service.complete_oauth_flow(code)
        saved = persist_discovered_accounts(repository, accounts)
    except BrokerError as e:
        oauth_logger.error(f"OAuth callback failed: {e.code} - {e.message}")
        oauth_callbacks_counter.labels(status="failed").inc()
        return _frontend_redirect(f"error={quote(e.message)}")

    oauth_callbacks_counter.labels(status="success").inc()
    data = json.dumps([credential.to_public_dict() for credential in saved])
    return _frontend_redirect(f"success=true&data={quote(data)}")


@router.get("/status")
def auth_status(repository: CredentialRepository = Depends(get_credential_repository)):
    """List connected accounts"""
    users = [credential.to_public_dict() for credential in repository.list_all()]
    return {"success": True, "count": len(users), "users": users}
