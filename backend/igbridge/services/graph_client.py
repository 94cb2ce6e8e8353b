"""Facebook Graph API client for the OAuth and Instagram publishing endpoints"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from igbridge.core.config import GRAPH_API_URL, settings
from igbridge.core.errors import GraphAPIError
from igbridge.core.logging import mask_token
from igbridge.utils.timeutils import utcnow

instagram_logger = logging.getLogger("instagram")


def _error_from_response(response: httpx.Response, stage: str) -> GraphAPIError:
    """Translate a non-success Graph response into a GraphAPIError"""
    try:
        error_data = response.json()
    except ValueError:
        error_data = response.text

    error_obj = error_data.get("error", {}) if isinstance(error_data, dict) else {}
    if not isinstance(error_obj, dict):
        error_obj = {"message": str(error_obj)}
    message = error_obj.get("message") or f"Graph API request failed with HTTP {response.status_code}"

    instagram_logger.error(
        f"Graph API error during {stage}: HTTP {response.status_code} - {message}",
        extra={
            "stage": stage,
            "http_status": response.status_code,
            "error_code": error_obj.get("code"),
            "error_type": error_obj.get("type"),
        }
    )
    return GraphAPIError(
        message,
        http_status=response.status_code,
        provider_code=error_obj.get("code"),
        provider_type=error_obj.get("type"),
        detail=str(error_data)[:500],
    )


class InstagramGraphClient:
    """Thin async wrapper over the Graph API endpoints the broker uses.

    Every call passes the token as the ``access_token`` query parameter. Any
    non-2xx response or transport failure raises ``GraphAPIError``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = GRAPH_API_URL,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        default_token_lifetime: Optional[int] = None,
    ):
        self.http = http_client
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id if app_id is not None else settings.FACEBOOK_APP_ID
        self.app_secret = app_secret if app_secret is not None else settings.FACEBOOK_APP_SECRET
        self.redirect_uri = redirect_uri if redirect_uri is not None else settings.oauth_redirect_uri
        self.default_token_lifetime = default_token_lifetime or settings.LONG_LIVED_TOKEN_DEFAULT_SECONDS

    async def _request(self, method: str, path: str, stage: str,
                       params: Optional[Dict[str, Any]] = None,
                       data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self.http.request(method, url, params=params, data=data)
        except httpx.HTTPError as e:
            instagram_logger.warning(f"Graph API transport error during {stage}: {type(e).__name__}: {e}")
            raise GraphAPIError(f"Graph API request failed: {type(e).__name__}", detail=str(e)) from e

        if response.status_code >= 400:
            raise _error_from_response(response, stage)

        try:
            return response.json()
        except ValueError as e:
            raise GraphAPIError("Graph API returned a non-JSON response",
                                http_status=response.status_code, detail=response.text[:500]) from e

    async def _get(self, path: str, access_token: str, stage: str, **params) -> Dict[str, Any]:
        return await self._request("GET", path, stage, params={**params, "access_token": access_token})

    async def _post(self, path: str, access_token: str, stage: str, **data) -> Dict[str, Any]:
        return await self._request("POST", path, stage, params={"access_token": access_token}, data=data)

    def _expiry(self, expires_in: Optional[int]) -> datetime:
        return utcnow() + timedelta(seconds=int(expires_in or self.default_token_lifetime))

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def exchange_code_for_token(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for a short-lived user token"""
        result = await self._request("GET", "oauth/access_token", "exchange_code", params={
            "client_id": self.app_id,
            "client_secret": self.app_secret,
            "redirect_uri": self.redirect_uri,
            "code": code,
        })
        if not result.get("access_token"):
            raise GraphAPIError("No access token in code exchange response")
        return result

    async def get_long_lived_token(self, token: str) -> Dict[str, Any]:
        """Exchange a token for a long-lived one.

        Returns ``{"access_token", "expires_at"}``; ``expires_at`` falls back to
        the default long-lived lifetime when the provider omits ``expires_in``.
        """
        result = await self._request("GET", "oauth/access_token", "long_lived_exchange", params={
            "grant_type": "fb_exchange_token",
            "client_id": self.app_id,
            "client_secret": self.app_secret,
            "fb_exchange_token": token,
        })
        access_token = result.get("access_token")
        if not access_token:
            raise GraphAPIError("No access token in long-lived exchange response")
        instagram_logger.debug(f"Obtained long-lived token {mask_token(access_token)}")
        return {"access_token": access_token, "expires_at": self._expiry(result.get("expires_in"))}

    async def refresh_long_lived_token(self, token: str) -> Dict[str, Any]:
        # Long-lived page tokens are renewed through the same exchange
        return await self.get_long_lived_token(token)

    async def get_me_id(self, access_token: str) -> str:
        result = await self._get("me", access_token, "get_me", fields="id,name")
        return result["id"]

    async def get_pages(self, access_token: str) -> List[Dict[str, Any]]:
        result = await self._get("me/accounts", access_token, "get_pages",
                                 fields="id,name,access_token,instagram_business_account")
        return result.get("data", [])

    async def get_page_instagram_account(self, page_id: str, page_token: str) -> Optional[str]:
        """Instagram business account id linked to a page, or None"""
        result = await self._get(page_id, page_token, "get_page_instagram_account",
                                 fields="instagram_business_account")
        account = result.get("instagram_business_account") or {}
        return account.get("id")

    async def get_instagram_account(self, instagram_user_id: str, access_token: str) -> Dict[str, Any]:
        return await self._get(instagram_user_id, access_token, "get_instagram_account",
                               fields="id,username,name,profile_picture_url")

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def get_publishing_limit(self, instagram_user_id: str, access_token: str) -> Dict[str, int]:
        """Current 24h publishing usage: ``{"quota_usage", "quota_total"}``"""
        result = await self._get(f"{instagram_user_id}/content_publishing_limit", access_token,
                                 "quota", fields="quota_usage,config")
        # Normally wrapped in a one-element "data" list; some versions return it flat
        entry = (result.get("data") or [result])[0]
        config = entry.get("config") or {}
        return {
            "quota_usage": int(entry.get("quota_usage") or 0),
            "quota_total": int(config.get("quota_total") or settings.DEFAULT_QUOTA_TOTAL),
        }

    async def create_media_container(self, instagram_user_id: str, access_token: str,
                                     image_url: str, caption: str) -> str:
        result = await self._post(f"{instagram_user_id}/media", access_token, "create_container",
                                  image_url=image_url, caption=caption)
        container_id = result.get("id")
        if not container_id:
            raise GraphAPIError(f"No container ID in response: {result}")
        return container_id

    async def get_container_status(self, container_id: str, access_token: str) -> Optional[str]:
        result = await self._get(container_id, access_token, "poll", fields="status_code")
        return result.get("status_code")

    async def publish_container(self, instagram_user_id: str, access_token: str, container_id: str) -> str:
        result = await self._post(f"{instagram_user_id}/media_publish", access_token, "publish",
                                  creation_id=container_id)
        media_id = result.get("id")
        if not media_id:
            raise GraphAPIError(f"No media ID in publish response: {result}")
        return media_id

    async def get_permalink(self, media_id: str, access_token: str) -> Optional[str]:
        result = await self._get(media_id, access_token, "permalink", fields="permalink")
        return result.get("permalink")
