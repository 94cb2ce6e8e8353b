"""License gate tests"""
from datetime import datetime, timedelta, timezone

import pytest

from igbridge.core.errors import LicenseError, RequestValidationFailed, SubscriptionRequiredError
from igbridge.db.repositories import BillingAccountRecord
from igbridge.services.license_service import LicenseService, generate_key, is_valid_key_format, license_to_dict
from igbridge.services.subscription_service import SubscriptionService

from fakes import InMemoryBillingAccountRepository, InMemoryLicenseRepository

KEY = "ABCDEFGHIJKLMNOPQRSTUVWXYZ012345"


@pytest.fixture
def licenses():
    repo = InMemoryLicenseRepository()
    repo.create(KEY)
    return repo


@pytest.fixture
def service(licenses):
    return LicenseService(licenses)


@pytest.mark.critical
class TestValidate:
    """Test first-use binding and rejection reasons"""

    def test_first_use_binds_domain(self, service, licenses):
        license = service.validate(KEY, "a.example.com")

        assert license.domain == "a.example.com"
        assert license.activated_at is not None
        assert licenses.find_by_key(KEY).domain == "a.example.com"

    def test_same_domain_validates_again(self, service):
        service.validate(KEY, "a.example.com")
        assert service.validate(KEY, "a.example.com").domain == "a.example.com"

    def test_other_domain_is_rejected_until_reset(self, service, licenses):
        """Test bind A, reject B, reset, then B binds"""
        service.validate(KEY, "a.example.com")

        with pytest.raises(LicenseError) as exc_info:
            service.validate(KEY, "b.example.com")
        assert exc_info.value.code == "DOMAIN_MISMATCH"
        assert exc_info.value.status_code == 403
        assert licenses.find_by_key(KEY).domain == "a.example.com"

        service.reset_domain(KEY)
        assert service.validate(KEY, "b.example.com").domain == "b.example.com"

    def test_lost_binding_race_decides_on_stored_domain(self, service, licenses, monkeypatch):
        """Test a concurrent binder that wins first makes this request a mismatch"""
        original_bind = licenses.bind_domain_if_unbound

        def bind_after_competitor(license_key, domain):
            original_bind(license_key, "winner.example.com")
            return original_bind(license_key, domain)

        monkeypatch.setattr(licenses, "bind_domain_if_unbound", bind_after_competitor)

        with pytest.raises(LicenseError) as exc_info:
            service.validate(KEY, "loser.example.com")
        assert exc_info.value.code == "DOMAIN_MISMATCH"

    @pytest.mark.parametrize("bad_key", ["short", KEY.lower(), KEY[:-1] + "-", KEY + "A"])
    def test_invalid_format(self, service, bad_key):
        with pytest.raises(RequestValidationFailed) as exc_info:
            service.validate(bad_key, "a.example.com")
        assert exc_info.value.code == "INVALID_LICENSE_FORMAT"
        assert exc_info.value.status_code == 400

    def test_missing_values(self, service):
        with pytest.raises(RequestValidationFailed):
            service.validate(KEY, "")
        with pytest.raises(RequestValidationFailed):
            service.validate(None, "a.example.com")

    def test_unknown_key(self, service):
        with pytest.raises(LicenseError) as exc_info:
            service.validate("Z" * 32, "a.example.com")
        assert exc_info.value.code == "NOT_FOUND"
        assert exc_info.value.status_code == 404

    def test_inactive_key(self, service):
        service.deactivate(KEY)
        with pytest.raises(LicenseError) as exc_info:
            service.validate(KEY, "a.example.com")
        assert exc_info.value.code == "INACTIVE"
        assert exc_info.value.status_code == 403


class TestSubscriptionGate:
    """Test licenses linked to a billing account"""

    def _service(self, account):
        licenses = InMemoryLicenseRepository()
        licenses.create(KEY, billing_account_id=account.id)
        accounts = InMemoryBillingAccountRepository([account])
        return LicenseService(licenses, SubscriptionService(accounts, stripe_enabled=False))

    def test_lapsed_subscription_is_rejected(self):
        account = BillingAccountRecord(
            id=1, login_account="shop@example.com", subscription_status="canceled",
            subscription_current_period_end=datetime.now(timezone.utc) - timedelta(days=1),
        )
        with pytest.raises(SubscriptionRequiredError) as exc_info:
            self._service(account).validate(KEY, "a.example.com")
        assert exc_info.value.status_code == 402

    def test_active_subscription_passes(self):
        account = BillingAccountRecord(
            id=1, login_account="shop@example.com", subscription_status="active",
            subscription_current_period_end=datetime.now(timezone.utc) + timedelta(days=10),
        )
        assert self._service(account).validate(KEY, "a.example.com").domain == "a.example.com"

    def test_list_includes_billing_fields(self):
        account = BillingAccountRecord(id=1, login_account="shop@example.com", subscription_status="trialing")
        rows = self._service(account).list()
        assert rows[0]["loginAccount"] == "shop@example.com"
        assert rows[0]["subscriptionStatus"] == "trialing"


class TestAdminOperations:

    def test_generate_key_format(self):
        keys = {generate_key() for _ in range(20)}
        assert len(keys) == 20
        assert all(is_valid_key_format(key) for key in keys)

    def test_generate_stores_user_info(self, service, licenses):
        license = service.generate(user_no="007", user_name="Shop")
        assert is_valid_key_format(license.license_key)
        assert licenses.find_by_key(license.license_key).user_name == "Shop"
        assert license.domain is None

    def test_update_user_info(self, service):
        updated = service.update_user_info(KEY, "100", "New name")
        assert license_to_dict(updated)["userName"] == "New name"

    def test_unknown_key_operations(self, service):
        for operation in (service.deactivate, service.reset_domain, service.find_by_key, service.delete_unused):
            with pytest.raises(LicenseError) as exc_info:
                operation("Z" * 32)
            assert exc_info.value.code == "NOT_FOUND"

    def test_delete_unused(self, service, licenses):
        service.delete_unused(KEY)
        assert licenses.find_by_key(KEY) is None

    def test_delete_in_use_is_refused(self, service, licenses):
        service.validate(KEY, "a.example.com")
        with pytest.raises(LicenseError) as exc_info:
            service.delete_unused(KEY)
        assert exc_info.value.code == "LICENSE_IN_USE"
        assert licenses.find_by_key(KEY) is not None
