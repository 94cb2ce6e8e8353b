"""OAuth service - Facebook login code to stored Instagram credentials"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List
from urllib.parse import urlencode

from igbridge.core.config import FACEBOOK_DIALOG_URL, INSTAGRAM_SCOPES, settings
from igbridge.core.errors import ExchangeError, GraphAPIError, OAuthDiscoveryError
from igbridge.core.logging import mask_token
from igbridge.db.repositories import CredentialRecord, CredentialRepository
from igbridge.services.graph_client import InstagramGraphClient

oauth_logger = logging.getLogger("oauth")


@dataclass(frozen=True)
class DiscoveredAccount:
    facebook_user_id: str
    facebook_page_id: str
    facebook_page_name: str
    instagram_user_id: str
    instagram_username: str
    access_token: str = field(repr=False)
    token_expires_at: datetime

    def to_credential(self) -> CredentialRecord:
        return CredentialRecord(
            facebook_user_id=self.facebook_user_id,
            facebook_page_id=self.facebook_page_id,
            facebook_page_name=self.facebook_page_name,
            instagram_user_id=self.instagram_user_id,
            instagram_username=self.instagram_username,
            access_token=self.access_token,
            token_expires_at=self.token_expires_at,
        )


def authorization_url(state: str = None) -> str:
    """Facebook login dialog URL requesting the publishing scopes"""
    params = {
        "client_id": settings.FACEBOOK_APP_ID,
        "redirect_uri": settings.oauth_redirect_uri,
        "scope": ",".join(INSTAGRAM_SCOPES),
        "response_type": "code",
    }
    if state:
        params["state"] = state
    return f"{FACEBOOK_DIALOG_URL}?{urlencode(params)}"


class OAuthExchangeService:
    """Turns an authorization code into the Instagram accounts it can publish to"""

    def __init__(self, client: InstagramGraphClient):
        self.client = client

    async def complete_oauth_flow(self, code: str) -> List[DiscoveredAccount]:
        if not code:
            raise ExchangeError("Authorization code is required")

        # Steps 1-4 are terminal: without a user token nothing can be discovered
        try:
            short_lived = await self.client.exchange_code_for_token(code)
            long_lived = await self.client.get_long_lived_token(short_lived["access_token"])
            user_token = long_lived["access_token"]
            facebook_user_id = await self.client.get_me_id(user_token)
            pages = await self.client.get_pages(user_token)
        except GraphAPIError as e:
            oauth_logger.error(f"OAuth token exchange failed: {e.message} ({e.detail})")
            raise ExchangeError("Failed to exchange authorization code", detail=e.message) from e

        oauth_logger.info(
            f"Facebook user {facebook_user_id} authorized with token {mask_token(user_token)}, "
            f"{len(pages)} page(s) found"
        )

        if not pages:
            raise OAuthDiscoveryError(
                "No Facebook pages found. Connect a Facebook page linked to an Instagram Business account.",
                code="NO_PAGES",
            )

        accounts = []
        for page in pages:
            page_id = page.get("id")
            page_token = page.get("access_token")
            if not page_id or not page_token:
                oauth_logger.warning(f"Skipping page without id or access token: {page.get('name')}")
                continue

            try:
                instagram_user_id = await self.client.get_page_instagram_account(page_id, page_token)
                if not instagram_user_id:
                    oauth_logger.info(f"Page {page_id} ({page.get('name')}) has no Instagram Business account")
                    continue
                profile = await self.client.get_instagram_account(instagram_user_id, page_token)
            except GraphAPIError as e:
                oauth_logger.warning(f"Skipping page {page_id}: Instagram lookup failed: {e.message}")
                continue

            accounts.append(DiscoveredAccount(
                facebook_user_id=facebook_user_id,
                facebook_page_id=page_id,
                facebook_page_name=page.get("name"),
                instagram_user_id=instagram_user_id,
                instagram_username=profile.get("username"),
                access_token=page_token,
                # Page tokens derived from a long-lived user token share its lifetime
                token_expires_at=long_lived["expires_at"],
            ))

        if not accounts:
            raise OAuthDiscoveryError(
                "None of your Facebook pages is linked to an Instagram Business account.",
                code="NO_INSTAGRAM_ACCOUNT",
            )

        oauth_logger.info(f"Discovered {len(accounts)} Instagram account(s) for Facebook user {facebook_user_id}")
        return accounts


def persist_discovered_accounts(repository: CredentialRepository,
                                accounts: List[DiscoveredAccount]) -> List[CredentialRecord]:
    """Upsert each discovered account by page id"""
    saved = []
    for account in accounts:
        saved.append(repository.upsert_by_page_id(account.to_credential()))
        oauth_logger.info(
            f"Stored Instagram account @{account.instagram_username} for page {account.facebook_page_id}"
        )
    return saved
