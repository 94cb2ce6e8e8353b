"""API route tests"""
import json
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import status

from igbridge.core.config import settings
from igbridge.core.errors import GraphAPIError
from igbridge.db.repositories import PublishAttemptRecord
from igbridge.db.sql_repositories import SqlCredentialRepository, SqlLicenseRepository, SqlPublishAttemptRepository
from igbridge.models.instagram_account import InstagramAccount
from igbridge.models.publish_attempt import PublishAttempt

from conftest import ADMIN_AUTH
from fakes import make_credential

KEY = "K" * 32
DOMAIN = "blog.example.com"
LICENSE_HEADERS = {"X-License-Key": KEY, "X-License-Domain": DOMAIN}


@pytest.fixture
def credentials(db_session):
    return SqlCredentialRepository(db_session)


@pytest.fixture
def license(db_session):
    return SqlLicenseRepository(db_session).create(KEY, user_no="001", user_name="Blog")


def publish_body(**overrides):
    body = {"facebookPageId": "page_1", "imageUrl": "https://blog.example.com/a.jpg",
            "caption": "New post", "wordpressPostId": 42}
    body.update(overrides)
    return body


class TestOAuthRoutes:

    def test_login_redirects_to_facebook(self, client):
        response = client.get("/auth/login", follow_redirects=False)
        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"].startswith("https://www.facebook.com/")

    @pytest.mark.critical
    def test_callback_stores_accounts_without_exposing_tokens(self, client, graph_client, db_session):
        """Test the frontend redirect carries account data but never a token"""
        graph_client.pages = [{"id": "page_1", "name": "Blog", "access_token": "secret-page-token"}]
        graph_client.page_instagram = {"page_1": "ig_1"}

        response = client.get("/auth/callback?code=abc", follow_redirects=False)

        assert response.status_code == status.HTTP_302_FOUND
        location = response.headers["location"]
        assert "secret-page-token" not in location
        query = parse_qs(urlparse(location).query)
        assert query["success"] == ["true"]
        accounts = json.loads(query["data"][0])
        assert accounts[0]["facebookPageId"] == "page_1"
        assert db_session.query(InstagramAccount).count() == 1

    def test_callback_provider_error(self, client):
        response = client.get("/auth/callback?error=access_denied&error_description=User+denied",
                              follow_redirects=False)
        query = parse_qs(urlparse(response.headers["location"]).query)
        assert query["error"] == ["User denied"]

    def test_callback_exchange_failure_hides_provider_text(self, client, graph_client):
        graph_client.exchange_error = GraphAPIError("Code already used internal-fbtrace-XYZ", http_status=400)

        response = client.get("/auth/callback?code=abc", follow_redirects=False)

        query = parse_qs(urlparse(response.headers["location"]).query)
        assert query["error"] == ["Failed to exchange authorization code"]
        assert "fbtrace" not in response.headers["location"]

    def test_callback_discovery_failure(self, client, graph_client, db_session):
        graph_client.pages = []
        response = client.get("/auth/callback?code=abc", follow_redirects=False)
        assert "error=" in response.headers["location"]
        assert db_session.query(InstagramAccount).count() == 0

    def test_status_lists_accounts(self, client, credentials):
        credentials.upsert_by_page_id(make_credential("page_1", token="hidden-token"))

        response = client.get("/auth/status")

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert "hidden-token" not in response.text

    def test_status_skips_undecryptable_accounts(self, client, credentials, db_session):
        credentials.upsert_by_page_id(make_credential("page_1"))
        credentials.upsert_by_page_id(make_credential("page_2"))
        db_session.query(InstagramAccount).filter(InstagramAccount.facebook_page_id == "page_2").update(
            {"access_token": "not-a-fernet-token"}
        )
        db_session.commit()

        response = client.get("/auth/status")

        assert response.status_code == 200
        assert [u["facebookPageId"] for u in response.json()["users"]] == ["page_1"]


class TestAccountRoutes:

    def test_page_lookup(self, client, credentials):
        credentials.upsert_by_page_id(make_credential("page_1"))
        response = client.get("/api/instagram/page/page_1")
        assert response.status_code == 200
        assert response.json()["data"]["instagramUserId"] == "ig_page_1"
        assert "accessToken" not in response.json()["data"]

    def test_expired_page_lookup(self, client, credentials):
        credentials.upsert_by_page_id(make_credential("page_1", expires_in_days=-2))
        response = client.get("/api/instagram/page/page_1")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "TOKEN_EXPIRED"
        assert response.json()["tokenExpired"] is True

    def test_unknown_user(self, client):
        response = client.get("/api/instagram/user/nobody")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_admin_routes_require_credentials(self, client):
        assert client.get("/api/instagram/users").status_code == status.HTTP_401_UNAUTHORIZED
        response = client.get("/api/instagram/users", auth=("admin", "wrong"))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_token_status(self, client, credentials):
        credentials.upsert_by_page_id(make_credential("soon", expires_in_days=3))
        credentials.upsert_by_page_id(make_credential("gone", expires_in_days=-1))
        credentials.upsert_by_page_id(make_credential("far", expires_in_days=90))

        response = client.get("/api/instagram/tokens/status?days=30", auth=ADMIN_AUTH)

        data = response.json()["data"]
        assert [c["facebookPageId"] for c in data["expiring"]] == ["soon"]
        assert data["expiring"][0]["daysUntilExpiry"] == 3
        assert [c["facebookPageId"] for c in data["expired"]] == ["gone"]

    def test_refresh_one(self, client, credentials):
        credentials.upsert_by_page_id(make_credential("page_1", token="old-token"))

        response = client.post("/api/instagram/tokens/refresh/page_1", auth=ADMIN_AUTH)

        assert response.status_code == 200
        assert "previousExpiry" in response.json()["data"]
        assert credentials.find_by_page_id("page_1").access_token == "refreshed-old-token"

    def test_refresh_expired_token(self, client, credentials, graph_client):
        credentials.upsert_by_page_id(make_credential("page_1", expires_in_days=-3))

        response = client.post("/api/instagram/tokens/refresh/page_1", auth=ADMIN_AUTH)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "TOKEN_EXPIRED"
        assert "refresh_long_lived_token" not in graph_client.calls

    def test_refresh_unknown_page(self, client):
        response = client.post("/api/instagram/tokens/refresh/missing", auth=ADMIN_AUTH)
        assert response.status_code == 404

    def test_refresh_all(self, client, credentials, graph_client):
        credentials.upsert_by_page_id(make_credential("page_1", token="t1"))
        credentials.upsert_by_page_id(make_credential("page_2", token="t2"))
        graph_client.failing_tokens = {"t1"}

        response = client.post("/api/instagram/tokens/refresh-all", auth=ADMIN_AUTH)

        data = response.json()["data"]
        assert (data["refreshed"], data["failed"]) == (1, 1)


@pytest.mark.critical
class TestPublishRoutes:
    """Test the license-gated publishing endpoints"""

    def test_license_headers_required(self, client):
        response = client.post("/api/post/instagram", json=publish_body())
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "LICENSE_REQUIRED"

    def test_unknown_license(self, client):
        response = client.post("/api/post/instagram", json=publish_body(), headers=LICENSE_HEADERS)
        assert response.status_code == 404

    def test_publish_success(self, client, license, credentials, db_session):
        credentials.upsert_by_page_id(make_credential("page_1"))

        response = client.post("/api/post/instagram", json=publish_body(), headers=LICENSE_HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["instagramMediaId"] == "media_1"
        attempt = db_session.query(PublishAttempt).one()
        assert attempt.status == "success"
        assert attempt.license_id == license.id

        history = client.get("/api/post/history", headers=LICENSE_HEADERS).json()["data"]
        assert history["total"] == 1
        assert history["items"][0]["wordpressPostId"] == "42"

    def test_publish_unknown_page(self, client, license, db_session):
        response = client.post("/api/post/instagram", json=publish_body(facebookPageId="nope"),
                               headers=LICENSE_HEADERS)
        assert response.status_code == 404
        assert response.json()["code"] == "IG_USER_NOT_FOUND"
        assert db_session.query(PublishAttempt).count() == 1

    def test_quota_exhausted(self, client, license, credentials, graph_client):
        credentials.upsert_by_page_id(make_credential("page_1"))
        graph_client.quota_usage = 25

        response = client.post("/api/post/instagram", json=publish_body(), headers=LICENSE_HEADERS)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["quotaUsage"] == 25
        assert "create_media_container" not in graph_client.calls

    def test_missing_params(self, client, license, db_session):
        response = client.post("/api/post/instagram", json={"imageUrl": "https://x/a.jpg"},
                               headers=LICENSE_HEADERS)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "MISSING_PARAMS"
        assert db_session.query(PublishAttempt).count() == 0

    def test_malformed_body_leaves_license_unbound(self, client, license, db_session):
        """Test a rejected body never reaches the license gate"""
        response = client.post("/api/post/instagram", json={"caption": "no page"}, headers=LICENSE_HEADERS)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        db_session.expire_all()
        assert SqlLicenseRepository(db_session).find_by_key(KEY).domain is None

    def test_provider_text_kept_out_of_production_responses(self, client, license, credentials, graph_client):
        credentials.upsert_by_page_id(make_credential("page_1"))
        graph_client.container_error = GraphAPIError("Invalid parameter (#100) internal-fbtrace-XYZ",
                                                     http_status=400, provider_code=100)

        with patch.object(settings, "ENVIRONMENT", "production"):
            response = client.post("/api/post/instagram", json=publish_body(), headers=LICENSE_HEADERS)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json() == {"success": False, "error": "Failed to create media container",
                                   "code": "CONTAINER_ERROR"}
        assert "fbtrace" not in response.text

    def test_provider_text_shown_as_detail_outside_production(self, client, license, credentials, graph_client):
        credentials.upsert_by_page_id(make_credential("page_1"))
        graph_client.container_error = GraphAPIError("Invalid parameter (#100)", http_status=400)

        response = client.post("/api/post/instagram", json=publish_body(), headers=LICENSE_HEADERS)

        assert response.json()["error"] == "Failed to create media container"
        assert response.json()["detail"] == "Invalid parameter (#100)"

    def test_limit(self, client, license, credentials, graph_client):
        credentials.upsert_by_page_id(make_credential("page_1"))
        graph_client.quota_usage = 4

        response = client.get("/api/post/limit/page_1", headers=LICENSE_HEADERS)

        assert response.json()["data"] == {"quotaUsage": 4, "quotaTotal": 25, "remaining": 21}

    def test_license_bound_to_other_domain(self, client, license):
        client.post("/api/license/validate", json={"license_key": KEY, "domain": DOMAIN})
        response = client.get("/api/post/history",
                              headers={"X-License-Key": KEY, "X-License-Domain": "other.example.com"})
        assert response.status_code == 403
        assert response.json()["code"] == "DOMAIN_MISMATCH"


class TestLicenseRoutes:

    def test_validate_binds_domain(self, client, license):
        response = client.post("/api/license/validate", json={"license_key": KEY, "domain": DOMAIN})
        assert response.status_code == 200
        assert response.json()["data"]["domain"] == DOMAIN

    def test_validate_bad_format(self, client):
        response = client.post("/api/license/validate", json={"license_key": "abc", "domain": DOMAIN})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_LICENSE_FORMAT"

    def test_validate_missing_fields(self, client):
        response = client.post("/api/license/validate", json={"domain": DOMAIN})
        assert response.json()["code"] == "MISSING_PARAMS"

    def test_generate_list_update(self, client):
        generated = client.post("/api/license/generate", json={"user_no": "9", "user_name": "Shop"},
                                auth=ADMIN_AUTH).json()["data"]
        assert len(generated["licenseKey"]) == 32

        client.post("/api/license/update", auth=ADMIN_AUTH,
                    json={"license_key": generated["licenseKey"], "user_no": "10", "user_name": "Shop 2"})

        listed = client.get("/api/license/list", auth=ADMIN_AUTH).json()
        assert listed["count"] == 1
        assert listed["data"][0]["userName"] == "Shop 2"

    def test_generate_without_body(self, client):
        response = client.post("/api/license/generate", auth=ADMIN_AUTH)
        assert response.status_code == 200

    def test_admin_required(self, client):
        assert client.post("/api/license/generate").status_code == status.HTTP_401_UNAUTHORIZED

    def test_reset_and_deactivate(self, client, license):
        client.post("/api/license/validate", json={"license_key": KEY, "domain": DOMAIN})

        reset = client.post("/api/license/reset", json={"license_key": KEY}, auth=ADMIN_AUTH)
        assert reset.json()["data"]["domain"] is None

        client.post("/api/license/deactivate", json={"license_key": KEY}, auth=ADMIN_AUTH)
        response = client.post("/api/license/validate", json={"license_key": KEY, "domain": DOMAIN})
        assert response.json()["code"] == "INACTIVE"

    def test_delete(self, client, license):
        client.post("/api/license/validate", json={"license_key": KEY, "domain": DOMAIN})
        refused = client.request("DELETE", "/api/license/delete", json={"license_key": KEY}, auth=ADMIN_AUTH)
        assert refused.json()["code"] == "LICENSE_IN_USE"

        client.post("/api/license/reset", json={"license_key": KEY}, auth=ADMIN_AUTH)
        deleted = client.request("DELETE", "/api/license/delete", json={"license_key": KEY}, auth=ADMIN_AUTH)
        assert deleted.status_code == 200

    def test_attempt_reports(self, client, license, db_session):
        attempts = SqlPublishAttemptRepository(db_session)
        attempts.add(PublishAttemptRecord(facebook_page_id="page_1", status="success", stage="done",
                                          license_id=license.id, quota_usage=3, quota_total=25))
        attempts.add(PublishAttemptRecord(facebook_page_id="page_1", status="container_error", stage="poll",
                                          license_id=license.id, error_code="CONTAINER_TIMEOUT",
                                          error_message="Container processing timeout"))

        listed = client.get(f"/api/license/attempts/{license.id}", auth=ADMIN_AUTH).json()["data"]
        assert len(listed["items"]) == 2

        stats = client.get(f"/api/license/attempts-stats/{license.id}", auth=ADMIN_AUTH).json()["data"]
        assert stats["total"] == 2
        assert stats["successRate"] == 50

        trends = client.get("/api/license/error-trends", auth=ADMIN_AUTH).json()["data"]["errors"]
        assert trends[0]["errorCode"] == "CONTAINER_TIMEOUT"


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
