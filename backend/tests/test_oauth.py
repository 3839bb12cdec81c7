"""Social account OAuth flow and token refresh tests"""
import hashlib
import json
import re
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import status

from reelcast.models.social_account import SocialMediaAccount
from reelcast.services import oauth_service
from reelcast.services.oauth_service import OAuthError
from reelcast.services.settings_service import save_social_credentials
from reelcast.utils.dates import as_utc, utcnow
from reelcast.utils.encryption import decrypt

from conftest import make_account

STATE_RE = re.compile(r"^\d+:[A-Z]+:[0-9a-f]{40}$")


@pytest.fixture
def tiktok_credentials(db_session):
    save_social_credentials("tiktok", "tt-client-key", "tt-client-secret", db_session)


@pytest.fixture
def youtube_credentials(db_session):
    save_social_credentials("youtube", "yt-client-id", "yt-client-secret", db_session)


def _mock_client(handler):
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _authorize(client, platform):
    response = client.get(f"/api/auth/authorize/{platform}")
    assert response.status_code == status.HTTP_200_OK
    return _query(response.json()["url"])


@pytest.mark.critical
class TestAuthorize:
    """Building provider consent URLs"""

    def test_tiktok_uses_pkce(self, authenticated_client, test_user, tiktok_credentials, mock_redis):
        """Test TikTok gets a hex S256 challenge of the stored verifier"""
        params = _authorize(authenticated_client, "tiktok")
        assert params["client_key"] == "tt-client-key"
        assert params["code_challenge_method"] == "S256"
        assert params["redirect_uri"] == "http://localhost:8000/api/auth/callback/tiktok"
        assert STATE_RE.match(params["state"])
        assert params["state"].startswith(f"{test_user.id}:TIKTOK:")

        stored = json.loads(mock_redis.get(f"development:oauth_state:{params['state']}"))
        assert stored["user_id"] == test_user.id
        assert params["code_challenge"] == hashlib.sha256(stored["code_verifier"].encode()).hexdigest()
        assert mock_redis.ttl(f"development:oauth_state:{params['state']}") > 0

    def test_youtube_requests_offline_access(self, authenticated_client, youtube_credentials):
        """Test Google is asked for a refresh token"""
        params = _authorize(authenticated_client, "youtube")
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert "youtube.upload" in params["scope"]
        assert "code_challenge" not in params

    def test_unconfigured_platform(self, authenticated_client):
        """Test platforms without client credentials return 400"""
        response = authenticated_client.get("/api/auth/authorize/instagram")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "not configured" in response.json()["detail"]

    def test_unknown_platform(self, authenticated_client):
        """Test unsupported platforms return 400"""
        response = authenticated_client.get("/api/auth/authorize/myspace")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_requires_login(self, client, tiktok_credentials):
        """Test only logged in users can start a connection"""
        assert client.get("/api/auth/authorize/tiktok").status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.critical
class TestState:
    """State parsing and single use"""

    def test_parse_state(self):
        """Test a well formed state splits into user and platform"""
        assert oauth_service.parse_state("12:YOUTUBE:" + "a" * 40) == (12, "YOUTUBE")

    @pytest.mark.parametrize("state", ["", "abc", "x:YOUTUBE:abc", "1:MYSPACE:abc", "1:YOUTUBE:", "1:YOUTUBE:a:b"])
    def test_malformed_states(self, state):
        """Test malformed states are rejected"""
        with pytest.raises(OAuthError, match="invalid_state"):
            oauth_service.parse_state(state)

    def test_state_is_single_use(self, authenticated_client, youtube_credentials):
        """Test a state can only be consumed once"""
        state = _authorize(authenticated_client, "youtube")["state"]
        assert oauth_service.consume_state(state, "YOUTUBE")["platform"] == "YOUTUBE"
        with pytest.raises(OAuthError, match="invalid_state"):
            oauth_service.consume_state(state, "YOUTUBE")

    def test_platform_mismatch(self, authenticated_client, youtube_credentials):
        """Test a state issued for one platform is refused by another callback"""
        state = _authorize(authenticated_client, "youtube")["state"]
        with pytest.raises(OAuthError, match="platform_mismatch"):
            oauth_service.consume_state(state, "TIKTOK")


@pytest.mark.critical
class TestCallback:
    """Provider redirects back to the API"""

    def _callback(self, client, platform, **params):
        response = client.get(f"/api/auth/callback/{platform}", params=params, follow_redirects=False)
        assert response.status_code == status.HTTP_302_FOUND
        location = response.headers["location"]
        assert location.startswith("http://localhost:3000/dashboard/social-accounts?")
        return _query(location)

    def test_provider_error(self, client):
        """Test a denied consent is passed through"""
        assert self._callback(client, "tiktok", error="access_denied") == {"error": "access_denied"}

    def test_missing_code(self, client):
        """Test a callback without code or state"""
        assert self._callback(client, "tiktok", state="1:TIKTOK:abc") == {"error": "missing_code"}

    def test_unknown_state(self, client):
        """Test a forged or expired state"""
        result = self._callback(client, "tiktok", code="abc", state="1:TIKTOK:" + "0" * 40)
        assert result == {"error": "invalid_state"}

    def test_unknown_platform(self, client):
        """Test callbacks for platforms we do not support"""
        result = self._callback(client, "myspace", code="abc", state="1:MYSPACE:" + "0" * 40)
        assert result == {"error": "unsupported_platform"}

    def test_internal_value_error_is_callback_failure(self, client):
        """Test errors while storing the account are not reported as an unknown platform"""
        failing = AsyncMock(side_effect=ValueError("Invalid encrypted token"))
        with patch("reelcast.api.oauth.complete_oauth_flow", failing):
            result = self._callback(client, "tiktok", code="abc", state="1:TIKTOK:" + "0" * 40)
        assert result == {"error": "callback_failed"}

    def test_connects_tiktok_account(self, authenticated_client, test_user, tiktok_credentials, db_session):
        """Test a successful flow stores the account with encrypted tokens"""
        state = _authorize(authenticated_client, "tiktok")["state"]
        seen = {}

        def handler(request):
            if request.url.path == "/v2/oauth/token/":
                seen["token_form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
                return httpx.Response(200, json={
                    "access_token": "act.tiktok", "refresh_token": "rft.tiktok", "expires_in": 86400,
                    "open_id": "open-123",
                })
            seen["user_fields"] = request.url.params["fields"].split(",")
            return httpx.Response(200, json={"data": {"user": {
                "display_name": "Creator TT", "username": "creator_tt", "avatar_url": "https://a.test/x.png",
            }}})

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            result = self._callback(authenticated_client, "tiktok", code="auth-code", state=state)

        assert result == {"connected": "tiktok"}
        assert seen["token_form"]["client_key"] == "tt-client-key"
        assert seen["token_form"]["code"] == "auth-code"
        assert seen["token_form"]["code_verifier"]

        account = db_session.query(SocialMediaAccount).one()
        assert account.user_id == test_user.id
        assert account.account_name == "Creator TT"
        assert account.account_id == "open-123"
        assert "username" in seen["user_fields"]
        assert account.extra_data["username"] == "creator_tt"
        assert decrypt(account.access_token) == "act.tiktok"
        assert decrypt(account.refresh_token) == "rft.tiktok"
        assert as_utc(account.token_expiry) > utcnow() + timedelta(hours=23)

    def test_token_exchange_failure(self, authenticated_client, youtube_credentials, db_session):
        """Test a rejected code redirects with token_exchange_failed"""
        state = _authorize(authenticated_client, "youtube")["state"]
        handler = lambda request: httpx.Response(400, json={"error": "invalid_grant"})

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            result = self._callback(authenticated_client, "youtube", code="bad", state=state)

        assert result == {"error": "token_exchange_failed"}
        assert db_session.query(SocialMediaAccount).count() == 0

    def test_reconnect_reactivates(self, test_user, db_session):
        """Test connecting the same account again reuses and reactivates the row"""
        account = make_account(test_user, db_session, name="Creator TT")
        account.is_active = False
        db_session.commit()

        again = oauth_service.save_social_account(
            user_id=test_user.id, platform="TIKTOK", account_name="Creator TT",
            access_token="fresh", refresh_token=None, expires_in=3600, db=db_session,
        )
        assert again.id == account.id
        assert again.is_active is True
        assert decrypt(again.access_token) == "fresh"


@pytest.mark.high
class TestTokenResponses:
    """Normalizing provider token payloads"""

    def _parse(self, platform, payload, status_code=200):
        return oauth_service._parse_token_response(platform, httpx.Response(status_code, json=payload))

    def test_tiktok_nested_data(self):
        """Test TikTok tokens nested under data are unwrapped"""
        data = self._parse("TIKTOK", {"data": {"access_token": "a", "open_id": "o"}, "error": {"code": "ok"}})
        assert data["access_token"] == "a"

    def test_tiktok_error_with_200(self):
        """Test TikTok errors reported with a 200 status are raised"""
        with pytest.raises(OAuthError, match="invalid code"):
            self._parse("TIKTOK", {"error": "invalid_request", "error_description": "invalid code"})
        with pytest.raises(OAuthError):
            self._parse("TIKTOK", {"data": {}, "error": {"code": "access_token_invalid", "message": "expired"}})

    def test_http_error(self):
        """Test non-200 responses are raised"""
        with pytest.raises(OAuthError, match="400"):
            self._parse("YOUTUBE", {"error": "invalid_grant"}, status_code=400)

    def test_missing_access_token(self):
        """Test a 200 without a token is an error"""
        with pytest.raises(OAuthError, match="No access_token"):
            self._parse("FACEBOOK", {"token_type": "bearer"})

    @pytest.mark.asyncio
    async def test_facebook_account_info_keeps_page(self):
        """Test the first managed Page and its encrypted token are kept"""

        def handler(request):
            if request.url.path.endswith("/me/accounts"):
                return httpx.Response(200, json={"data": [{"id": "page-1", "name": "My Page", "access_token": "page-tok"}]})
            return httpx.Response(200, json={"id": "u-1", "name": "Jamie"})

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            info = await oauth_service.fetch_account_info("FACEBOOK", "user-token", {})

        assert info["account_name"] == "My Page"
        assert info["account_id"] == "u-1"
        assert info["extra_data"]["page_id"] == "page-1"
        assert decrypt(info["extra_data"]["page_access_token"]) == "page-tok"

    @pytest.mark.asyncio
    async def test_account_info_failure_falls_back(self):
        """Test a failing profile lookup still yields a usable name"""
        def handler(request):
            raise httpx.ConnectError("down")

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            info = await oauth_service.fetch_account_info("YOUTUBE", "token", {})
        assert info["account_name"] == "Youtube Account"


@pytest.mark.critical
class TestTokenRefresh:
    """Keeping stored tokens fresh"""

    def test_needs_refresh_within_buffer(self, test_user, db_session):
        """Test tokens expiring inside the buffer are refreshed"""
        soon = make_account(test_user, db_session, name="a", token_expiry=utcnow() + timedelta(seconds=60))
        later = make_account(test_user, db_session, name="b", token_expiry=utcnow() + timedelta(hours=2))
        never = make_account(test_user, db_session, name="c")
        assert oauth_service.token_needs_refresh(soon) is True
        assert oauth_service.token_needs_refresh(later) is False
        assert oauth_service.token_needs_refresh(never) is False

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token(self, test_user, tiktok_credentials, db_session):
        """Test a response without refresh_token keeps the previous one"""
        account = make_account(test_user, db_session, token_expiry=utcnow() - timedelta(minutes=1), refresh_token="rt-old")
        seen = {}

        def handler(request):
            seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            return httpx.Response(200, json={"access_token": "at-new", "expires_in": 7200})

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            token = await oauth_service.get_valid_access_token(account, db_session)

        assert token == "at-new"
        assert seen["form"]["grant_type"] == "refresh_token"
        assert seen["form"]["refresh_token"] == "rt-old"
        assert decrypt(account.refresh_token) == "rt-old"
        assert as_utc(account.token_expiry) > utcnow() + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_refresh_failure_deactivates(self, test_user, tiktok_credentials, db_session):
        """Test a rejected refresh disables the account and raises"""
        account = make_account(test_user, db_session, token_expiry=utcnow() - timedelta(minutes=1), refresh_token="rt-old")
        handler = lambda request: httpx.Response(401, json={"error": "invalid_grant"})

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            with pytest.raises(OAuthError):
                await oauth_service.get_valid_access_token(account, db_session)

        db_session.refresh(account)
        assert account.is_active is False

    @pytest.mark.asyncio
    async def test_fresh_token_skips_refresh(self, test_user, db_session):
        """Test valid tokens are returned without calling the provider"""
        account = make_account(test_user, db_session, token_expiry=utcnow() + timedelta(days=1), refresh_token="rt")

        def handler(request):
            raise AssertionError("no HTTP call expected")

        with patch.object(oauth_service, "_http_client", _mock_client(handler)):
            assert await oauth_service.get_valid_access_token(account, db_session) == "access-token"
