"""License service - key validation, first-use domain binding and admin operations"""
import logging
import re
import secrets
import string
from typing import Any, Dict, List, Optional

from igbridge.core.errors import LicenseError, RequestValidationFailed, SubscriptionRequiredError
from igbridge.core.metrics import license_validations_counter
from igbridge.db.repositories import LicenseRecord, LicenseRepository
from igbridge.services.subscription_service import SubscriptionService
from igbridge.utils.timeutils import isoformat

license_logger = logging.getLogger("license")

LICENSE_KEY_LENGTH = 32
LICENSE_KEY_ALPHABET = string.ascii_uppercase + string.digits
LICENSE_KEY_PATTERN = re.compile(r"^[A-Z0-9]{32}$")


def generate_key() -> str:
    """Random 32-character key from A-Z and 0-9"""
    return "".join(secrets.choice(LICENSE_KEY_ALPHABET) for _ in range(LICENSE_KEY_LENGTH))


def is_valid_key_format(license_key: Optional[str]) -> bool:
    return bool(license_key) and LICENSE_KEY_PATTERN.match(license_key) is not None


def license_to_dict(license: LicenseRecord) -> Dict[str, Any]:
    return {
        "licenseId": license.id,
        "licenseKey": license.license_key,
        "domain": license.domain,
        "isActive": license.is_active,
        "activatedAt": isoformat(license.activated_at),
        "userNo": license.user_no,
        "userName": license.user_name,
        "createdAt": isoformat(license.created_at),
    }


class LicenseService:
    """Validates license keys for publishing callers and manages the license table"""

    def __init__(self, licenses: LicenseRepository, subscriptions: Optional[SubscriptionService] = None):
        self.licenses = licenses
        self.subscriptions = subscriptions

    def _reject(self, result: str, error: LicenseError, domain: str) -> LicenseError:
        license_validations_counter.labels(result=result).inc()
        license_logger.warning(f"License validation failed for domain {domain}: {error.code}")
        return error

    def validate(self, license_key: str, domain: str) -> LicenseRecord:
        """Check a key for use from ``domain``; binds the domain on first use.

        Raises:
            RequestValidationFailed: Missing values or malformed key
            LicenseError: Unknown, inactive or bound to another domain
            SubscriptionRequiredError: Linked billing account is not paid up
        """
        if not license_key or not domain:
            raise RequestValidationFailed("License key and domain are required")
        if not is_valid_key_format(license_key):
            raise self._reject("invalid_format", RequestValidationFailed(
                "Invalid license key format (32 uppercase letters or digits)",
                code="INVALID_LICENSE_FORMAT",
            ), domain)

        license_logger.info(f"License validation request for domain {domain}, key {license_key[:8]}...")

        license = self.licenses.find_by_key(license_key)
        if not license:
            raise self._reject("not_found", LicenseError(
                "License key not found", code="NOT_FOUND", status_code=404
            ), domain)
        if not license.is_active:
            raise self._reject("inactive", LicenseError(
                "License has been deactivated", code="INACTIVE"
            ), domain)

        if license.domain is None:
            bound = self.licenses.bind_domain_if_unbound(license_key, domain)
            if bound is None:
                # Another request bound it first; decide on what it wrote
                license = self.licenses.find_by_key(license_key)
            else:
                license = bound
                license_logger.info(f"License {license_key[:8]}... activated for domain {domain}")

        if license.domain != domain:
            raise self._reject("domain_mismatch", LicenseError(
                "This license is already in use on another domain", code="DOMAIN_MISMATCH"
            ), domain)

        if license.billing_account_id is not None and self.subscriptions is not None:
            if not self.subscriptions.is_active(license.billing_account_id):
                raise self._reject("subscription_required", SubscriptionRequiredError(
                    "An active subscription is required to use this license"
                ), domain)

        license_validations_counter.labels(result="valid").inc()
        return license

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def _require(self, license: Optional[LicenseRecord]) -> LicenseRecord:
        if license is None:
            raise LicenseError("License not found", code="NOT_FOUND", status_code=404)
        return license

    def find_by_key(self, license_key: str) -> LicenseRecord:
        return self._require(self.licenses.find_by_key(license_key))

    def generate(self, user_no: Optional[str] = None, user_name: Optional[str] = None) -> LicenseRecord:
        license = self.licenses.create(generate_key(), user_no=user_no, user_name=user_name)
        license_logger.info(f"Issued license {license.license_key[:8]}... (user_no={user_no})")
        return license

    def list(self) -> List[Dict[str, Any]]:
        rows = []
        for license in self.licenses.list_all():
            entry = license_to_dict(license)
            account = None
            if license.billing_account_id is not None and self.subscriptions is not None:
                account = self.subscriptions.accounts.get(license.billing_account_id)
            entry["loginAccount"] = account.login_account if account else None
            entry["subscriptionStatus"] = account.subscription_status if account else None
            entry["subscriptionPeriodEnd"] = isoformat(account.subscription_current_period_end) if account else None
            rows.append(entry)
        return rows

    def update_user_info(self, license_key: str, user_no: Optional[str], user_name: Optional[str]) -> LicenseRecord:
        return self._require(self.licenses.update_user_info(license_key, user_no, user_name))

    def deactivate(self, license_key: str) -> LicenseRecord:
        license = self._require(self.licenses.deactivate(license_key))
        license_logger.info(f"License {license_key[:8]}... deactivated")
        return license

    def reset_domain(self, license_key: str) -> LicenseRecord:
        license = self._require(self.licenses.reset_domain(license_key))
        license_logger.info(f"License {license_key[:8]}... domain reset")
        return license

    def delete_unused(self, license_key: str) -> None:
        """Delete a license that was never bound to a domain"""
        license = self._require(self.licenses.find_by_key(license_key))
        if license.domain is not None or not self.licenses.delete_if_unbound(license_key):
            raise LicenseError("A license in use cannot be deleted", code="LICENSE_IN_USE", status_code=400)
        license_logger.info(f"License {license_key[:8]}... deleted")
