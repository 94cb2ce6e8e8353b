"""Token service - renewal of stored long-lived page tokens"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from igbridge.core.errors import CredentialNotFoundError, TokenExpiredError
from igbridge.core.metrics import token_refresh_counter
from igbridge.db.repositories import CredentialRecord, CredentialRepository
from igbridge.services.graph_client import InstagramGraphClient
from igbridge.utils.timeutils import isoformat

token_refresh_logger = logging.getLogger("token_refresh")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RefreshReport:
    refreshed: int = 0
    failed: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"refreshed": self.refreshed, "failed": self.failed, "results": self.results}


class TokenRefresher:
    """Renews page tokens through the long-lived exchange and stores the result"""

    def __init__(self, repository: CredentialRepository, client: InstagramGraphClient,
                 sleep: Optional[Sleep] = None):
        self.repository = repository
        self.client = client
        self.sleep = sleep or asyncio.sleep

    async def refresh_credential(self, credential: CredentialRecord) -> CredentialRecord:
        # An expired token cannot be exchanged; the account has to log in again
        if credential.is_expired():
            raise TokenExpiredError(
                f"Token for page {credential.facebook_page_id} has expired. Please re-authenticate."
            )

        result = await self.client.refresh_long_lived_token(credential.access_token)
        updated = self.repository.update_token(
            credential.facebook_page_id, result["access_token"], result["expires_at"]
        )
        if updated is None:
            raise CredentialNotFoundError(
                f"Credential for page {credential.facebook_page_id} disappeared during refresh"
            )
        token_refresh_logger.info(
            f"Refreshed token for {credential.facebook_page_name} (@{credential.instagram_username}). "
            f"New expiry: {isoformat(updated.token_expires_at)}"
        )
        return updated

    async def refresh_one(self, facebook_page_id: str) -> Dict[str, Any]:
        """Refresh a single page token; provider failures propagate"""
        credential = self.repository.find_by_page_id(facebook_page_id)
        if not credential:
            raise CredentialNotFoundError(f"No Instagram account stored for page {facebook_page_id}")

        try:
            updated = await self.refresh_credential(credential)
        except Exception:
            token_refresh_counter.labels(result="failed").inc()
            raise

        token_refresh_counter.labels(result="refreshed").inc()
        return {
            **updated.to_public_dict(),
            "previousExpiry": isoformat(credential.token_expires_at),
        }

    async def refresh_batch(self, credentials: List[CredentialRecord],
                            delay_seconds: float = 1.0) -> RefreshReport:
        """Refresh credentials one at a time.

        A failure for one credential is recorded in the report and never stops
        the batch. ``delay_seconds`` is waited between consecutive credentials
        to stay under the provider rate limit.
        """
        report = RefreshReport()

        for index, credential in enumerate(credentials):
            if index > 0 and delay_seconds > 0:
                await self.sleep(delay_seconds)

            try:
                updated = await self.refresh_credential(credential)
            except Exception as e:
                report.failed += 1
                report.results.append({
                    "facebookPageId": credential.facebook_page_id,
                    "facebookPageName": credential.facebook_page_name,
                    "success": False,
                    "error": str(e),
                })
                token_refresh_counter.labels(result="failed").inc()
                token_refresh_logger.error(
                    f"Failed to refresh token for {credential.facebook_page_name} "
                    f"({credential.facebook_page_id}): {type(e).__name__}: {e}"
                )
                continue

            report.refreshed += 1
            report.results.append({
                "facebookPageId": credential.facebook_page_id,
                "facebookPageName": credential.facebook_page_name,
                "success": True,
                "newExpiresAt": isoformat(updated.token_expires_at),
            })
            token_refresh_counter.labels(result="refreshed").inc()

        token_refresh_logger.info(f"Token refresh completed. Refreshed: {report.refreshed}, Failed: {report.failed}")
        return report
