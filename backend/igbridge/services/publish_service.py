"""Publish service - single-photo Instagram publishing with attempt bookkeeping"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from igbridge.core.config import settings
from igbridge.core.errors import (
    BrokerError, CredentialNotFoundError, GraphAPIError, RateLimitExceededError,
    RequestValidationFailed, TokenExpiredError
)
from igbridge.core.metrics import publish_attempts_counter
from igbridge.db.repositories import (
    CredentialRecord, CredentialRepository, PostHistoryRecord, PostHistoryRepository,
    PublishAttemptRecord, PublishAttemptRepository
)
from igbridge.services.graph_client import InstagramGraphClient
from igbridge.services.token_service import Sleep
from igbridge.utils.timeutils import isoformat, utcnow

instagram_logger = logging.getLogger("instagram")

# Attempt status recorded for each terminal error code
ATTEMPT_STATUS_BY_CODE = {
    "TOKEN_EXPIRED": "token_expired",
    "RATE_LIMIT_EXCEEDED": "rate_limited",
    "CONTAINER_ERROR": "container_error",
    "CONTAINER_EXPIRED": "container_error",
    "CONTAINER_TIMEOUT": "container_error",
    "PUBLISH_ERROR": "publish_error",
}


def _provider_failure(message: str, code: str, error: GraphAPIError) -> BrokerError:
    """Fixed client-facing message; the provider text only travels as detail"""
    instagram_logger.warning(
        f"Graph API call failed ({code}): {error.message}",
        extra={"provider_code": error.provider_code, "http_status": error.http_status, "detail": error.detail}
    )
    return BrokerError(message, code=code, status_code=502, detail=error.message)


@dataclass(frozen=True)
class PublishRequest:
    facebook_page_id: str
    image_url: str
    caption: str
    wordpress_post_id: Optional[str] = None
    license_id: Optional[int] = None


@dataclass
class PublishOutcome:
    success: bool
    media_id: Optional[str] = None
    permalink: Optional[str] = None
    posted_at: Optional[datetime] = None
    error: Optional[BrokerError] = None

    def to_data(self) -> Dict[str, Any]:
        return {
            "instagramMediaId": self.media_id,
            "permalink": self.permalink,
            "postedAt": isoformat(self.posted_at),
        }


@dataclass
class _AttemptState:
    """What the workflow has observed so far; becomes the attempt row"""
    stage: str = "validate"
    quota_usage: Optional[int] = None
    quota_total: Optional[int] = None
    container_id: Optional[str] = None
    media_id: Optional[str] = None


class MediaPublishWorkflow:
    """Create container, wait until it is ready, publish, fetch the permalink.

    Every call to ``publish_photo`` appends exactly one row to the attempt log,
    whatever the outcome. Nothing is retried across attempts.
    """

    def __init__(
        self,
        credentials: CredentialRepository,
        attempts: PublishAttemptRepository,
        history: PostHistoryRepository,
        client: InstagramGraphClient,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        caption_max_length: Optional[int] = None,
        default_quota_total: Optional[int] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.credentials = credentials
        self.attempts = attempts
        self.history = history
        self.client = client
        self.poll_interval = poll_interval if poll_interval is not None else settings.PUBLISH_POLL_INTERVAL_SECONDS
        self.max_polls = max_polls if max_polls is not None else settings.PUBLISH_POLL_MAX_ATTEMPTS
        self.caption_max_length = caption_max_length or settings.CAPTION_MAX_LENGTH
        self.default_quota_total = default_quota_total or settings.DEFAULT_QUOTA_TOTAL
        self.sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # Pre-checks
    # ------------------------------------------------------------------

    def _usable_credential(self, facebook_page_id: str) -> CredentialRecord:
        credential = self.credentials.find_by_page_id(facebook_page_id)
        if not credential:
            raise CredentialNotFoundError(
                "This Facebook Page ID is not registered. Complete the OAuth login first."
            )
        if credential.is_expired():
            raise TokenExpiredError()
        return credential

    async def _publishing_limit(self, credential: CredentialRecord) -> Dict[str, int]:
        try:
            limit = await self.client.get_publishing_limit(credential.instagram_user_id, credential.access_token)
        except GraphAPIError as e:
            raise _provider_failure("Failed to check the publishing limit", "QUOTA_CHECK_FAILED", e) from e
        return {
            "quota_usage": limit.get("quota_usage") or 0,
            "quota_total": limit.get("quota_total") or self.default_quota_total,
        }

    async def check_limit(self, facebook_page_id: str) -> Dict[str, int]:
        """Current publishing quota for a page; writes no attempt"""
        credential = self._usable_credential(facebook_page_id)
        limit = await self._publishing_limit(credential)
        return {
            "quotaUsage": limit["quota_usage"],
            "quotaTotal": limit["quota_total"],
            "remaining": max(0, limit["quota_total"] - limit["quota_usage"]),
        }

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    async def publish_photo(self, request: PublishRequest) -> PublishOutcome:
        state = _AttemptState()

        try:
            outcome = await self._run(request, state)
        except BrokerError as e:
            self._record(request, state, ATTEMPT_STATUS_BY_CODE.get(e.code, "failed"), error=e)
            instagram_logger.error(
                f"Instagram publish FAILED - Page {request.facebook_page_id} at stage {state.stage}: "
                f"{e.code} - {e.message}",
                extra={
                    "facebook_page_id": request.facebook_page_id,
                    "stage": state.stage,
                    "error_code": e.code,
                    "container_id": state.container_id,
                    "detail": e.detail,
                }
            )
            return PublishOutcome(success=False, error=e)
        except Exception as e:
            self._record(request, state, "failed",
                         error=BrokerError(str(e) or type(e).__name__, code="INTERNAL_ERROR"))
            raise

        self._record(request, state, "success")
        return outcome

    async def _run(self, request: PublishRequest, state: _AttemptState) -> PublishOutcome:
        if len(request.caption) > self.caption_max_length:
            raise RequestValidationFailed(
                f"Caption must be {self.caption_max_length} characters or fewer",
                code="CAPTION_TOO_LONG",
            )

        state.stage = "credential"
        credential = self._usable_credential(request.facebook_page_id)
        token = credential.access_token
        ig_user_id = credential.instagram_user_id

        state.stage = "quota"
        limit = await self._publishing_limit(credential)
        state.quota_usage = limit["quota_usage"]
        state.quota_total = limit["quota_total"]
        if state.quota_usage >= state.quota_total:
            raise RateLimitExceededError(
                f"The 24-hour publishing limit ({state.quota_total} posts) has been reached. Try again later.",
                quotaUsage=state.quota_usage,
                quotaTotal=state.quota_total,
            )

        state.stage = "create_container"
        try:
            state.container_id = await self.client.create_media_container(
                ig_user_id, token, request.image_url, request.caption
            )
        except GraphAPIError as e:
            raise _provider_failure("Failed to create media container", "CONTAINER_ERROR", e) from e
        instagram_logger.info(f"Created container {state.container_id} for page {request.facebook_page_id}")

        state.stage = "poll"
        await self._wait_until_ready(state.container_id, token)

        state.stage = "publish"
        try:
            state.media_id = await self.client.publish_container(ig_user_id, token, state.container_id)
        except GraphAPIError as e:
            raise _provider_failure("Failed to publish media", "PUBLISH_ERROR", e) from e
        instagram_logger.info(f"Published to Instagram: {state.media_id}")

        state.stage = "permalink"
        try:
            permalink = await self.client.get_permalink(state.media_id, token)
        except GraphAPIError as e:
            instagram_logger.warning(f"Permalink lookup failed for media {state.media_id}: {e.message}")
            permalink = None

        state.stage = "done"
        self.history.add(PostHistoryRecord(
            license_id=request.license_id,
            facebook_page_id=request.facebook_page_id,
            instagram_media_id=state.media_id,
            wordpress_post_id=request.wordpress_post_id,
            caption=request.caption,
            image_url=request.image_url,
            permalink=permalink,
        ))
        return PublishOutcome(success=True, media_id=state.media_id, permalink=permalink, posted_at=utcnow())

    async def _wait_until_ready(self, container_id: str, access_token: str) -> None:
        """Poll the container until FINISHED; every other outcome raises"""
        for poll in range(1, self.max_polls + 1):
            try:
                status = await self.client.get_container_status(container_id, access_token)
            except GraphAPIError as e:
                # Transient lookup failures count against the budget and are retried
                instagram_logger.warning(
                    f"Container {container_id} status check failed (attempt {poll}/{self.max_polls}): {e.message}"
                )
            else:
                instagram_logger.info(f"Container {container_id} status: {status} (attempt {poll}/{self.max_polls})")
                if status == "FINISHED":
                    return
                if status == "ERROR":
                    raise BrokerError("Instagram failed to process the media container",
                                      code="CONTAINER_ERROR", status_code=502)
                if not status or status == "EXPIRED":
                    raise BrokerError(f"Media container is not usable (status: {status or 'missing'})",
                                      code="CONTAINER_EXPIRED", status_code=502)

            if poll < self.max_polls:
                await self.sleep(self.poll_interval)

        raise BrokerError(
            f"Media container was not ready after {self.max_polls} status checks",
            code="CONTAINER_TIMEOUT", status_code=504,
        )

    def _record(self, request: PublishRequest, state: _AttemptState, status: str,
                error: Optional[BrokerError] = None) -> PublishAttemptRecord:
        publish_attempts_counter.labels(status=status).inc()
        return self.attempts.add(PublishAttemptRecord(
            license_id=request.license_id,
            facebook_page_id=request.facebook_page_id,
            image_url=request.image_url,
            caption=request.caption,
            wordpress_post_id=request.wordpress_post_id,
            status=status,
            stage=state.stage,
            error_code=error.code if error else None,
            error_message=error.message if error else None,
            quota_usage=state.quota_usage,
            quota_total=state.quota_total if state.quota_total is not None else self.default_quota_total,
            container_id=state.container_id,
            media_id=state.media_id,
        ))
