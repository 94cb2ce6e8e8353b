"""SQLAlchemy implementations of the persistence interfaces"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from igbridge.core.config import settings
from igbridge.db.repositories import (
    BillingAccountRecord, BillingAccountRepository, CredentialRecord, CredentialRepository,
    LicenseRecord, LicenseRepository, PostHistoryRecord, PostHistoryRepository,
    PublishAttemptRecord, PublishAttemptRepository
)
from igbridge.models.billing_account import BillingAccount
from igbridge.models.instagram_account import InstagramAccount
from igbridge.models.license import License
from igbridge.models.post_history import PostHistory
from igbridge.models.publish_attempt import PublishAttempt
from igbridge.utils.encryption import decrypt, encrypt
from igbridge.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class SqlCredentialRepository(CredentialRepository):
    """Credential store backed by the instagram_accounts table (tokens encrypted)"""

    def __init__(self, db: Session):
        self.db = db

    def _to_record(self, row: InstagramAccount) -> CredentialRecord:
        return CredentialRecord(
            facebook_user_id=row.facebook_user_id,
            facebook_page_id=row.facebook_page_id,
            facebook_page_name=row.facebook_page_name,
            instagram_user_id=row.instagram_user_id,
            instagram_username=row.instagram_username,
            access_token=decrypt(row.access_token),
            token_expires_at=ensure_utc(row.token_expires_at),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    def _readable(self, row: Optional[InstagramAccount]) -> Optional[CredentialRecord]:
        """Record for a row, or None when its token cannot be decrypted"""
        if row is None:
            return None
        try:
            return self._to_record(row)
        except ValueError as e:
            logger.warning(f"Failed to decrypt token for page {row.facebook_page_id}: {e}")
            return None

    def _readable_all(self, rows: List[InstagramAccount]) -> List[CredentialRecord]:
        records = (self._readable(row) for row in rows)
        return [record for record in records if record is not None]

    def _query(self):
        return self.db.query(InstagramAccount)

    def find_by_page_id(self, facebook_page_id: str) -> Optional[CredentialRecord]:
        return self._readable(self._query().filter(InstagramAccount.facebook_page_id == facebook_page_id).first())

    def find_by_account_id(self, instagram_user_id: str) -> Optional[CredentialRecord]:
        return self._readable(self._query().filter(InstagramAccount.instagram_user_id == instagram_user_id).first())

    def find_by_facebook_user_id(self, facebook_user_id: str) -> List[CredentialRecord]:
        rows = self._query().filter(
            InstagramAccount.facebook_user_id == facebook_user_id
        ).order_by(InstagramAccount.created_at.desc()).all()
        return self._readable_all(rows)

    def upsert_by_page_id(self, credential: CredentialRecord) -> CredentialRecord:
        row = self._query().filter(InstagramAccount.facebook_page_id == credential.facebook_page_id).first()
        encrypted = encrypt(credential.access_token)

        if row:
            row.facebook_user_id = credential.facebook_user_id
            row.facebook_page_name = credential.facebook_page_name
            row.instagram_user_id = credential.instagram_user_id
            row.instagram_username = credential.instagram_username
            row.access_token = encrypted
            row.token_expires_at = credential.token_expires_at
            row.updated_at = utcnow()
        else:
            row = InstagramAccount(
                facebook_user_id=credential.facebook_user_id,
                facebook_page_id=credential.facebook_page_id,
                facebook_page_name=credential.facebook_page_name,
                instagram_user_id=credential.instagram_user_id,
                instagram_username=credential.instagram_username,
                access_token=encrypted,
                token_expires_at=credential.token_expires_at,
            )
            self.db.add(row)

        self.db.commit()
        self.db.refresh(row)
        return self._to_record(row)

    def update_token(self, facebook_page_id: str, access_token: str,
                     token_expires_at: datetime) -> Optional[CredentialRecord]:
        result = self.db.execute(
            update(InstagramAccount)
            .where(InstagramAccount.facebook_page_id == facebook_page_id)
            .values(access_token=encrypt(access_token), token_expires_at=token_expires_at, updated_at=utcnow())
        )
        self.db.commit()
        if result.rowcount == 0:
            return None
        return self.find_by_page_id(facebook_page_id)

    def list_all(self) -> List[CredentialRecord]:
        rows = self._query().order_by(InstagramAccount.created_at.desc()).all()
        return self._readable_all(rows)

    def list_expiring_within(self, days: int) -> List[CredentialRecord]:
        now = utcnow()
        rows = self._query().filter(
            InstagramAccount.token_expires_at < now + timedelta(days=days),
            InstagramAccount.token_expires_at > now
        ).order_by(InstagramAccount.token_expires_at.asc()).all()
        return self._readable_all(rows)

    def list_expired(self) -> List[CredentialRecord]:
        rows = self._query().filter(
            InstagramAccount.token_expires_at < utcnow()
        ).order_by(InstagramAccount.token_expires_at.asc()).all()
        return self._readable_all(rows)


class SqlPublishAttemptRepository(PublishAttemptRepository):

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_record(row: PublishAttempt) -> PublishAttemptRecord:
        return PublishAttemptRecord(
            id=row.id,
            license_id=row.license_id,
            facebook_page_id=row.facebook_page_id,
            image_url=row.image_url,
            caption=row.caption,
            wordpress_post_id=row.wordpress_post_id,
            status=row.status,
            stage=row.stage,
            error_code=row.error_code,
            error_message=row.error_message,
            quota_usage=row.quota_usage,
            quota_total=row.quota_total,
            container_id=row.container_id,
            media_id=row.media_id,
            created_at=ensure_utc(row.created_at),
        )

    def add(self, attempt: PublishAttemptRecord) -> PublishAttemptRecord:
        row = PublishAttempt(
            license_id=attempt.license_id,
            facebook_page_id=attempt.facebook_page_id,
            image_url=attempt.image_url,
            caption=attempt.caption,
            wordpress_post_id=attempt.wordpress_post_id,
            status=attempt.status,
            stage=attempt.stage,
            error_code=attempt.error_code,
            error_message=attempt.error_message,
            quota_usage=attempt.quota_usage,
            quota_total=attempt.quota_total if attempt.quota_total is not None else settings.DEFAULT_QUOTA_TOTAL,
            container_id=attempt.container_id,
            media_id=attempt.media_id,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return self._to_record(row)

    def list_by_license(self, license_id: int, limit: int = 50, offset: int = 0) -> List[PublishAttemptRecord]:
        rows = self.db.query(PublishAttempt).filter(
            PublishAttempt.license_id == license_id
        ).order_by(PublishAttempt.created_at.desc(), PublishAttempt.id.desc()).limit(limit).offset(offset).all()
        return [self._to_record(row) for row in rows]

    def count(self, license_id: Optional[int] = None, status: Optional[str] = None) -> int:
        query = self.db.query(func.count(PublishAttempt.id))
        if license_id is not None:
            query = query.filter(PublishAttempt.license_id == license_id)
        if status is not None:
            query = query.filter(PublishAttempt.status == status)
        return query.scalar() or 0

    def status_counts(self, license_id: int, since: datetime) -> List[Dict[str, Any]]:
        rows = self.db.query(
            PublishAttempt.status,
            func.count(PublishAttempt.id),
            func.max(PublishAttempt.quota_usage)
        ).filter(
            PublishAttempt.license_id == license_id,
            PublishAttempt.created_at > since
        ).group_by(PublishAttempt.status).all()
        return [
            {"status": status, "count": count, "max_quota_usage": max_usage}
            for status, count, max_usage in rows
        ]

    def error_trends(self, since: datetime, limit: int = 20) -> List[Dict[str, Any]]:
        count_col = func.count(PublishAttempt.id)
        rows = self.db.query(
            PublishAttempt.error_code,
            PublishAttempt.error_message,
            count_col,
            func.max(PublishAttempt.created_at)
        ).filter(
            PublishAttempt.status != "success",
            PublishAttempt.created_at > since
        ).group_by(
            PublishAttempt.error_code, PublishAttempt.error_message
        ).order_by(count_col.desc()).limit(limit).all()
        return [
            {"error_code": code, "error_message": message, "count": count,
             "last_occurred": ensure_utc(last)}
            for code, message, count, last in rows
        ]


class SqlPostHistoryRepository(PostHistoryRepository):

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_record(row: PostHistory) -> PostHistoryRecord:
        return PostHistoryRecord(
            id=row.id,
            license_id=row.license_id,
            facebook_page_id=row.facebook_page_id,
            instagram_media_id=row.instagram_media_id,
            wordpress_post_id=row.wordpress_post_id,
            caption=row.caption,
            image_url=row.image_url,
            permalink=row.permalink,
            created_at=ensure_utc(row.created_at),
        )

    def _filtered(self, license_id: int, facebook_page_id: Optional[str]):
        query = self.db.query(PostHistory).filter(PostHistory.license_id == license_id)
        if facebook_page_id:
            query = query.filter(PostHistory.facebook_page_id == facebook_page_id)
        return query

    def add(self, entry: PostHistoryRecord) -> PostHistoryRecord:
        row = PostHistory(
            license_id=entry.license_id,
            facebook_page_id=entry.facebook_page_id,
            instagram_media_id=entry.instagram_media_id,
            wordpress_post_id=entry.wordpress_post_id,
            caption=entry.caption,
            image_url=entry.image_url,
            permalink=entry.permalink,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return self._to_record(row)

    def list_by_license(self, license_id: int, facebook_page_id: Optional[str] = None,
                        limit: int = 20, offset: int = 0) -> List[PostHistoryRecord]:
        rows = self._filtered(license_id, facebook_page_id).order_by(
            PostHistory.created_at.desc(), PostHistory.id.desc()
        ).limit(limit).offset(offset).all()
        return [self._to_record(row) for row in rows]

    def count(self, license_id: int, facebook_page_id: Optional[str] = None) -> int:
        return self._filtered(license_id, facebook_page_id).count()


class SqlLicenseRepository(LicenseRepository):

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_record(row: License) -> LicenseRecord:
        return LicenseRecord(
            id=row.id,
            license_key=row.license_key,
            domain=row.domain,
            is_active=row.is_active,
            activated_at=ensure_utc(row.activated_at),
            billing_account_id=row.billing_account_id,
            user_no=row.user_no,
            user_name=row.user_name,
            created_at=ensure_utc(row.created_at),
        )

    def _row(self, license_key: str) -> Optional[License]:
        return self.db.query(License).filter(License.license_key == license_key).first()

    def _update(self, license_key: str, *criteria, **values) -> Optional[LicenseRecord]:
        result = self.db.execute(
            update(License)
            .where(License.license_key == license_key, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return None
        self.db.expire_all()
        return self.find_by_key(license_key)

    def find_by_key(self, license_key: str) -> Optional[LicenseRecord]:
        row = self._row(license_key)
        return self._to_record(row) if row else None

    def create(self, license_key: str, user_no: Optional[str] = None, user_name: Optional[str] = None,
               billing_account_id: Optional[int] = None) -> LicenseRecord:
        row = License(
            license_key=license_key,
            user_no=user_no,
            user_name=user_name,
            billing_account_id=billing_account_id,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return self._to_record(row)

    def bind_domain_if_unbound(self, license_key: str, domain: str) -> Optional[LicenseRecord]:
        # Single conditional statement: concurrent first uses cannot both win
        return self._update(license_key, License.domain.is_(None), domain=domain, activated_at=utcnow())

    def reset_domain(self, license_key: str) -> Optional[LicenseRecord]:
        return self._update(license_key, domain=None, activated_at=None)

    def deactivate(self, license_key: str) -> Optional[LicenseRecord]:
        return self._update(license_key, is_active=False)

    def update_user_info(self, license_key: str, user_no: Optional[str],
                         user_name: Optional[str]) -> Optional[LicenseRecord]:
        return self._update(license_key, user_no=user_no, user_name=user_name)

    def delete_if_unbound(self, license_key: str) -> bool:
        deleted = self.db.query(License).filter(
            License.license_key == license_key,
            License.domain.is_(None)
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted > 0

    def list_all(self) -> List[LicenseRecord]:
        rows = self.db.query(License).order_by(License.created_at.desc(), License.id.desc()).all()
        return [self._to_record(row) for row in rows]


class SqlBillingAccountRepository(BillingAccountRepository):

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_record(row: BillingAccount) -> BillingAccountRecord:
        return BillingAccountRecord(
            id=row.id,
            login_account=row.login_account,
            stripe_customer_id=row.stripe_customer_id,
            subscription_id=row.subscription_id,
            subscription_status=row.subscription_status,
            subscription_plan=row.subscription_plan,
            subscription_current_period_end=ensure_utc(row.subscription_current_period_end),
            trial_end=ensure_utc(row.trial_end),
            cancel_at_period_end=bool(row.cancel_at_period_end),
        )

    def get(self, account_id: int) -> Optional[BillingAccountRecord]:
        row = self.db.query(BillingAccount).filter(BillingAccount.id == account_id).first()
        return self._to_record(row) if row else None

    def update_subscription(self, account_id: int, **fields: Any) -> Optional[BillingAccountRecord]:
        row = self.db.query(BillingAccount).filter(BillingAccount.id == account_id).first()
        if not row:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(row)
        return self._to_record(row)
