"""OAuth exchange and account discovery tests"""
from urllib.parse import parse_qs, urlparse

import pytest

from igbridge.core.config import Settings, settings
from igbridge.core.errors import ExchangeError, GraphAPIError, OAuthDiscoveryError
from igbridge.services.oauth_service import OAuthExchangeService, authorization_url, persist_discovered_accounts

from fakes import FakeGraphClient, InMemoryCredentialRepository


@pytest.fixture
def graph():
    client = FakeGraphClient()
    client.pages = [
        {"id": "page_1", "name": "Shop", "access_token": "page-token-1"},
        {"id": "page_2", "name": "Blog", "access_token": "page-token-2"},
        {"id": "page_3", "name": "Unlinked", "access_token": "page-token-3"},
    ]
    client.page_instagram = {"page_1": "ig_1", "page_2": "ig_2", "page_3": None}
    client.profiles = {"ig_1": {"id": "ig_1", "username": "shop"}, "ig_2": {"id": "ig_2", "username": "blog"}}
    return client


@pytest.mark.critical
class TestCompleteOAuthFlow:
    """Test code exchange through Instagram account discovery"""

    async def test_discovers_linked_accounts(self, graph):
        accounts = await OAuthExchangeService(graph).complete_oauth_flow("auth-code")

        assert [a.facebook_page_id for a in accounts] == ["page_1", "page_2"]
        assert accounts[0].instagram_user_id == "ig_1"
        assert accounts[0].instagram_username == "shop"
        # Page tokens are stored, not the user token
        assert accounts[0].access_token == "page-token-1"
        assert accounts[0].facebook_user_id == "fb_user_1"
        assert graph.calls[:4] == ["exchange_code_for_token", "get_long_lived_token", "get_me_id", "get_pages"]

    async def test_lookup_failure_skips_page(self, graph):
        graph.page_instagram["page_1"] = GraphAPIError("Unsupported get request")

        accounts = await OAuthExchangeService(graph).complete_oauth_flow("auth-code")

        assert [a.facebook_page_id for a in accounts] == ["page_2"]

    async def test_no_pages(self, graph):
        graph.pages = []
        with pytest.raises(OAuthDiscoveryError) as exc_info:
            await OAuthExchangeService(graph).complete_oauth_flow("auth-code")
        assert exc_info.value.code == "NO_PAGES"

    async def test_no_linked_instagram_account(self, graph):
        graph.page_instagram = {}
        with pytest.raises(OAuthDiscoveryError) as exc_info:
            await OAuthExchangeService(graph).complete_oauth_flow("auth-code")
        assert exc_info.value.code == "NO_INSTAGRAM_ACCOUNT"
        assert exc_info.value.status_code == 404

    async def test_exchange_failure(self, graph):
        graph.exchange_error = GraphAPIError("This authorization code has been used", http_status=400,
                                             provider_code=100, detail='{"error": {}}')
        with pytest.raises(ExchangeError) as exc_info:
            await OAuthExchangeService(graph).complete_oauth_flow("used-code")
        assert exc_info.value.message == "Failed to exchange authorization code"
        assert "authorization code has been used" in exc_info.value.detail
        assert "get_pages" not in graph.calls

    async def test_missing_code(self, graph):
        with pytest.raises(ExchangeError):
            await OAuthExchangeService(graph).complete_oauth_flow("")
        assert graph.calls == []


class TestPersistence:

    async def test_reauthorization_upserts(self, graph):
        repository = InMemoryCredentialRepository()
        service = OAuthExchangeService(graph)

        persist_discovered_accounts(repository, await service.complete_oauth_flow("first"))
        graph.pages[0]["access_token"] = "page-token-1-new"
        saved = persist_discovered_accounts(repository, await service.complete_oauth_flow("second"))

        assert len(saved) == 2
        assert len(repository.list_all()) == 2
        assert repository.find_by_page_id("page_1").access_token == "page-token-1-new"


def test_authorization_url_requests_publishing_scopes():
    url = authorization_url(state="xyz")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://www.facebook.com/")
    assert query["response_type"] == ["code"]
    assert query["state"] == ["xyz"]
    assert "instagram_content_publish" in query["scope"][0].split(",")
    assert query["redirect_uri"] == [settings.oauth_redirect_uri]


def test_redirect_uri_defaults_to_backend_callback():
    assert Settings(BACKEND_URL="https://api.example.com/", REDIRECT_URI="").oauth_redirect_uri == \
        "https://api.example.com/auth/callback"
    assert Settings(REDIRECT_URI="https://other.example.com/cb").oauth_redirect_uri == "https://other.example.com/cb"
