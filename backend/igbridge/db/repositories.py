"""Persistence interfaces and the immutable records they exchange.

Services depend on these interfaces only, so the publish workflow, the refresh
scheduler and the license gate can run against in-memory fakes in tests.
``igbridge.db.sql_repositories`` holds the SQLAlchemy implementations.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from igbridge.utils.timeutils import ensure_utc, isoformat, utcnow


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class CredentialRecord:
    """One publishable Instagram account and its page-scoped token"""
    facebook_user_id: str
    facebook_page_id: str
    facebook_page_name: Optional[str]
    instagram_user_id: str
    instagram_username: Optional[str]
    access_token: str = field(repr=False)
    token_expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return ensure_utc(self.token_expires_at) < (now or utcnow())

    def days_until_expiry(self, now: Optional[datetime] = None) -> int:
        remaining = ensure_utc(self.token_expires_at) - (now or utcnow())
        # Round up partial days, like a calendar countdown
        return -((-int(remaining.total_seconds())) // 86400)

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view without the access token"""
        return {
            "facebookUserId": self.facebook_user_id,
            "facebookPageId": self.facebook_page_id,
            "facebookPageName": self.facebook_page_name,
            "instagramUserId": self.instagram_user_id,
            "instagramUsername": self.instagram_username,
            "tokenExpiresAt": isoformat(self.token_expires_at),
            "createdAt": isoformat(self.created_at),
        }


@dataclass(frozen=True)
class PublishAttemptRecord:
    facebook_page_id: str
    status: str
    stage: str
    license_id: Optional[int] = None
    image_url: Optional[str] = None
    caption: Optional[str] = None
    wordpress_post_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    quota_usage: Optional[int] = None
    quota_total: Optional[int] = None
    container_id: Optional[str] = None
    media_id: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class PostHistoryRecord:
    facebook_page_id: str
    instagram_media_id: str
    license_id: Optional[int] = None
    wordpress_post_id: Optional[str] = None
    caption: Optional[str] = None
    image_url: Optional[str] = None
    permalink: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class LicenseRecord:
    id: int
    license_key: str
    domain: Optional[str]
    is_active: bool
    activated_at: Optional[datetime] = None
    billing_account_id: Optional[int] = None
    user_no: Optional[str] = None
    user_name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BillingAccountRecord:
    id: int
    login_account: str
    stripe_customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_plan: Optional[str] = None
    subscription_current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


# ============================================================================
# INTERFACES
# ============================================================================

class CredentialRepository(ABC):
    """Keyed access to stored Instagram credentials"""

    @abstractmethod
    def find_by_page_id(self, facebook_page_id: str) -> Optional[CredentialRecord]:
        pass

    @abstractmethod
    def find_by_account_id(self, instagram_user_id: str) -> Optional[CredentialRecord]:
        pass

    @abstractmethod
    def find_by_facebook_user_id(self, facebook_user_id: str) -> List[CredentialRecord]:
        """All pages discovered for one Facebook user, newest first"""
        pass

    @abstractmethod
    def upsert_by_page_id(self, credential: CredentialRecord) -> CredentialRecord:
        """Insert if the page id is new, otherwise update the row in place"""
        pass

    @abstractmethod
    def update_token(self, facebook_page_id: str, access_token: str,
                     token_expires_at: datetime) -> Optional[CredentialRecord]:
        pass

    @abstractmethod
    def list_all(self) -> List[CredentialRecord]:
        pass

    @abstractmethod
    def list_expiring_within(self, days: int) -> List[CredentialRecord]:
        """Not yet expired, but expiring before now + days; soonest first"""
        pass

    @abstractmethod
    def list_expired(self) -> List[CredentialRecord]:
        pass


class PublishAttemptRepository(ABC):
    """Append-only attempt log"""

    @abstractmethod
    def add(self, attempt: PublishAttemptRecord) -> PublishAttemptRecord:
        pass

    @abstractmethod
    def list_by_license(self, license_id: int, limit: int = 50, offset: int = 0) -> List[PublishAttemptRecord]:
        pass

    @abstractmethod
    def count(self, license_id: Optional[int] = None, status: Optional[str] = None) -> int:
        pass

    @abstractmethod
    def status_counts(self, license_id: int, since: datetime) -> List[Dict[str, Any]]:
        """Rows of {status, count, max_quota_usage} for attempts after ``since``"""
        pass

    @abstractmethod
    def error_trends(self, since: datetime, limit: int = 20) -> List[Dict[str, Any]]:
        """Rows of {error_code, error_message, count, last_occurred}, most frequent first"""
        pass


class PostHistoryRepository(ABC):

    @abstractmethod
    def add(self, entry: PostHistoryRecord) -> PostHistoryRecord:
        pass

    @abstractmethod
    def list_by_license(self, license_id: int, facebook_page_id: Optional[str] = None,
                        limit: int = 20, offset: int = 0) -> List[PostHistoryRecord]:
        pass

    @abstractmethod
    def count(self, license_id: int, facebook_page_id: Optional[str] = None) -> int:
        pass


class LicenseRepository(ABC):

    @abstractmethod
    def find_by_key(self, license_key: str) -> Optional[LicenseRecord]:
        pass

    @abstractmethod
    def create(self, license_key: str, user_no: Optional[str] = None, user_name: Optional[str] = None,
               billing_account_id: Optional[int] = None) -> LicenseRecord:
        pass

    @abstractmethod
    def bind_domain_if_unbound(self, license_key: str, domain: str) -> Optional[LicenseRecord]:
        """Set the domain only where none is set; None if another writer got there first"""
        pass

    @abstractmethod
    def reset_domain(self, license_key: str) -> Optional[LicenseRecord]:
        pass

    @abstractmethod
    def deactivate(self, license_key: str) -> Optional[LicenseRecord]:
        pass

    @abstractmethod
    def update_user_info(self, license_key: str, user_no: Optional[str],
                         user_name: Optional[str]) -> Optional[LicenseRecord]:
        pass

    @abstractmethod
    def delete_if_unbound(self, license_key: str) -> bool:
        pass

    @abstractmethod
    def list_all(self) -> List[LicenseRecord]:
        pass


class BillingAccountRepository(ABC):

    @abstractmethod
    def get(self, account_id: int) -> Optional[BillingAccountRecord]:
        pass

    @abstractmethod
    def update_subscription(self, account_id: int, **fields: Any) -> Optional[BillingAccountRecord]:
        pass
