"""OAuth service - connect YouTube, TikTok, Instagram and Facebook accounts and keep their tokens fresh"""
import base64
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from reelcast.core.config import (
    settings,
    YOUTUBE_AUTH_URL, YOUTUBE_TOKEN_URL, YOUTUBE_SCOPES, YOUTUBE_CHANNELS_URL,
    TIKTOK_AUTH_URL, TIKTOK_TOKEN_URL, TIKTOK_SCOPES, TIKTOK_USER_INFO_URL,
    INSTAGRAM_AUTH_URL, INSTAGRAM_TOKEN_URL, INSTAGRAM_SCOPES, INSTAGRAM_GRAPH_API_BASE,
    FACEBOOK_AUTH_URL, FACEBOOK_TOKEN_URL, FACEBOOK_SCOPES, FACEBOOK_GRAPH_API_BASE,
)
from reelcast.core.logging import oauth_logger
from reelcast.core.metrics import oauth_connections_counter
from reelcast.db.redis import store_oauth_state, pop_oauth_state
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.services.settings_service import get_platform_credentials
from reelcast.utils.dates import utcnow, as_utc
from reelcast.utils.encryption import encrypt, decrypt

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 30.0
DEFAULT_EXPIRES_IN = 3600

AUTH_URLS = {
    SocialPlatform.YOUTUBE: YOUTUBE_AUTH_URL,
    SocialPlatform.TIKTOK: TIKTOK_AUTH_URL,
    SocialPlatform.INSTAGRAM: INSTAGRAM_AUTH_URL,
    SocialPlatform.FACEBOOK: FACEBOOK_AUTH_URL,
}

TOKEN_URLS = {
    SocialPlatform.YOUTUBE: YOUTUBE_TOKEN_URL,
    SocialPlatform.TIKTOK: TIKTOK_TOKEN_URL,
    SocialPlatform.INSTAGRAM: INSTAGRAM_TOKEN_URL,
    SocialPlatform.FACEBOOK: FACEBOOK_TOKEN_URL,
}


class OAuthError(ValueError):
    """Raised when a provider rejects an authorization, exchange or refresh"""


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=HTTP_TIMEOUT)


def get_redirect_uri(platform: str) -> str:
    """Callback URL registered with the provider, e.g. {BACKEND_URL}/api/auth/callback/youtube"""
    return f"{settings.BACKEND_URL.rstrip('/')}/api/auth/callback/{platform.lower()}"


# ============================================================================
# STATE AND PKCE
# ============================================================================

def generate_state(user_id: int, platform: str) -> str:
    """Opaque state of the form '{user_id}:{PLATFORM}:{40 hex chars}'"""
    return f"{user_id}:{platform}:{secrets.token_hex(20)}"


def parse_state(state: str) -> Tuple[int, str]:
    """Split a state back into (user_id, platform)

    Raises:
        OAuthError: If the state is malformed
    """
    parts = (state or "").split(":")
    if len(parts) != 3 or not parts[0].isdigit() or parts[1] not in SocialPlatform.ALL or not parts[2]:
        raise OAuthError("invalid_state")
    return int(parts[0]), parts[1]


def generate_code_verifier() -> str:
    """PKCE verifier: 32 random bytes, base64url without padding"""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode().rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """TikTok expects the hex SHA-256 digest of the verifier"""
    return hashlib.sha256(verifier.encode()).hexdigest()


# ============================================================================
# AUTHORIZATION
# ============================================================================

def build_authorization_url(user_id: int, platform: str, db: Session) -> str:
    """Create a single-use state and return the provider's consent URL

    Raises:
        ValueError: If the platform is unknown or has no client credentials
    """
    platform = SocialPlatform.from_slug(platform)
    client_id, client_secret = get_platform_credentials(platform, db)
    if not client_id or not client_secret:
        raise ValueError(f"{platform} OAuth is not configured")

    state = generate_state(user_id, platform)
    redirect_uri = get_redirect_uri(platform)
    state_data = {"user_id": user_id, "platform": platform}

    if platform == SocialPlatform.YOUTUBE:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(YOUTUBE_SCOPES),
            # offline + consent makes Google return a refresh token every time
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
    elif platform == SocialPlatform.TIKTOK:
        code_verifier = generate_code_verifier()
        state_data["code_verifier"] = code_verifier
        params = {
            "client_key": client_id,
            "response_type": "code",
            "scope": ",".join(TIKTOK_SCOPES),
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": generate_code_challenge(code_verifier),
            "code_challenge_method": "S256",
        }
    elif platform == SocialPlatform.INSTAGRAM:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": ",".join(INSTAGRAM_SCOPES),
            "response_type": "code",
            "state": state,
        }
    else:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": ",".join(FACEBOOK_SCOPES),
            "response_type": "code",
            "state": state,
        }

    store_oauth_state(state, state_data)
    oauth_logger.info(f"Initiating {platform} auth flow for user {user_id}")
    return f"{AUTH_URLS[platform]}?{urlencode(params)}"


def consume_state(state: str, platform: str) -> Dict:
    """Validate the callback state against what was stored at authorization time

    Raises:
        OAuthError: If the state is malformed, unknown, already used or for another platform
    """
    user_id, state_platform = parse_state(state)
    if state_platform != platform:
        raise OAuthError("platform_mismatch")

    stored = pop_oauth_state(state)
    if not stored or stored.get("user_id") != user_id or stored.get("platform") != platform:
        raise OAuthError("invalid_state")
    return stored


# ============================================================================
# TOKEN EXCHANGE
# ============================================================================

def _client_params(platform: str, client_id: str, client_secret: str) -> Dict[str, str]:
    if platform == SocialPlatform.TIKTOK:
        return {"client_key": client_id, "client_secret": client_secret}
    return {"client_id": client_id, "client_secret": client_secret}


def _parse_token_response(platform: str, response: httpx.Response) -> Dict:
    if response.status_code != 200:
        oauth_logger.error(f"{platform} token request failed ({response.status_code}): {response.text[:500]}")
        raise OAuthError(f"Failed to exchange code for token: {response.status_code}")

    try:
        data = response.json()
    except ValueError:
        raise OAuthError(f"Invalid token response: {response.text[:100]}")

    # Some TikTok API versions nest the token under "data"
    if platform == SocialPlatform.TIKTOK and isinstance(data.get("data"), dict) and "access_token" in data["data"]:
        data = data["data"]

    # TikTok reports errors with a 200 status
    error = data.get("error")
    if isinstance(error, dict):
        error = None if error.get("code") in (None, "ok") else error.get("message") or error.get("code")
    if data.get("error_code") or error:
        message = data.get("error_description") or data.get("message") or error
        raise OAuthError(f"{platform} API error: {message}")
    if not data.get("access_token"):
        raise OAuthError("No access_token in response")
    return data


async def exchange_code_for_token(platform: str, code: str, db: Session, code_verifier: Optional[str] = None) -> Dict:
    """Trade an authorization code for tokens

    Returns:
        The provider's token JSON (access_token plus refresh_token / expires_in when given)
    """
    client_id, client_secret = get_platform_credentials(platform, db)
    payload = _client_params(platform, client_id, client_secret)
    payload.update({
        "code": code,
        "redirect_uri": get_redirect_uri(platform),
        "grant_type": "authorization_code",
    })
    if code_verifier:
        payload["code_verifier"] = code_verifier

    async with _http_client() as client:
        response = await client.post(
            TOKEN_URLS[platform],
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
    token_json = _parse_token_response(platform, response)

    oauth_logger.info(
        f"{platform} token exchange successful: "
        f"has_refresh_token={'refresh_token' in token_json}, expires_in={token_json.get('expires_in')}"
    )
    return token_json


async def fetch_account_info(platform: str, access_token: str, token_json: Dict) -> Dict:
    """Look up a display name and provider id for the connected account

    Failures fall back to a generic name; connecting should not fail because a profile lookup did.
    """
    info = {"account_name": f"{platform.title()} Account", "account_id": None, "extra_data": {}}
    try:
        async with _http_client() as client:
            if platform == SocialPlatform.YOUTUBE:
                response = await client.get(
                    YOUTUBE_CHANNELS_URL,
                    params={"part": "snippet", "mine": "true"},
                    headers={"Authorization": f"Bearer {access_token}"}
                )
                items = response.json().get("items", []) if response.status_code == 200 else []
                if items:
                    info["account_name"] = items[0]["snippet"]["title"]
                    info["account_id"] = items[0]["id"]

            elif platform == SocialPlatform.TIKTOK:
                info["account_id"] = token_json.get("open_id")
                response = await client.get(
                    TIKTOK_USER_INFO_URL,
                    params={"fields": "open_id,display_name,username,avatar_url"},
                    headers={"Authorization": f"Bearer {access_token}"}
                )
                if response.status_code == 200:
                    user = response.json().get("data", {}).get("user", {})
                    info["account_name"] = user.get("display_name") or info["account_name"]
                    info["extra_data"]["avatar_url"] = user.get("avatar_url")
                    # Public profile handle; post URLs are built from it
                    if user.get("username"):
                        info["extra_data"]["username"] = user["username"]

            elif platform == SocialPlatform.INSTAGRAM:
                ig_user_id = token_json.get("user_id")
                if ig_user_id:
                    info["account_id"] = str(ig_user_id)
                    response = await client.get(
                        f"{INSTAGRAM_GRAPH_API_BASE}/{ig_user_id}",
                        params={"fields": "username", "access_token": access_token}
                    )
                    if response.status_code == 200:
                        info["account_name"] = response.json().get("username") or f"Instagram User {ig_user_id}"
                    else:
                        info["account_name"] = f"Instagram User {ig_user_id}"

            else:
                response = await client.get(
                    f"{FACEBOOK_GRAPH_API_BASE}/me",
                    params={"fields": "id,name", "access_token": access_token}
                )
                if response.status_code == 200:
                    me = response.json()
                    info["account_name"] = me.get("name") or f"Facebook User {me.get('id')}"
                    info["account_id"] = me.get("id")

                # Publishing goes through a Page; keep the first one the user manages
                pages_response = await client.get(
                    f"{FACEBOOK_GRAPH_API_BASE}/me/accounts",
                    params={"access_token": access_token}
                )
                pages = pages_response.json().get("data", []) if pages_response.status_code == 200 else []
                if pages:
                    page = pages[0]
                    info["account_name"] = page.get("name") or info["account_name"]
                    info["extra_data"]["page_id"] = page.get("id")
                    if page.get("access_token"):
                        info["extra_data"]["page_access_token"] = encrypt(page["access_token"])
    except (httpx.HTTPError, ValueError, KeyError) as e:
        oauth_logger.warning(f"Could not fetch {platform} account info: {e}")

    return info


def save_social_account(
    user_id: int,
    platform: str,
    account_name: str,
    access_token: str,
    db: Session,
    refresh_token: Optional[str] = None,
    expires_in: Optional[int] = None,
    account_id: Optional[str] = None,
    extra_data: Optional[Dict] = None,
) -> SocialMediaAccount:
    """Create or update the (user, platform, account_name) account with encrypted tokens; reconnecting reactivates it"""
    token_expiry = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None

    account = db.query(SocialMediaAccount).filter(
        SocialMediaAccount.user_id == user_id,
        SocialMediaAccount.platform == platform,
        SocialMediaAccount.account_name == account_name
    ).first()

    if account:
        account.access_token = encrypt(access_token)
        account.refresh_token = encrypt(refresh_token) if refresh_token else None
        account.token_expiry = token_expiry
        account.is_active = True
        if account_id:
            account.account_id = account_id
        if extra_data:
            account.extra_data = {**(account.extra_data or {}), **extra_data}
    else:
        account = SocialMediaAccount(
            user_id=user_id,
            platform=platform,
            account_name=account_name,
            account_id=account_id,
            access_token=encrypt(access_token),
            refresh_token=encrypt(refresh_token) if refresh_token else None,
            token_expiry=token_expiry,
            is_active=True,
            extra_data=extra_data or {},
        )
        db.add(account)

    db.commit()
    db.refresh(account)
    return account


async def complete_oauth_flow(platform: str, code: str, state: str, db: Session) -> SocialMediaAccount:
    """Validate the state, exchange the code, look up the account and store it

    Raises:
        OAuthError: On an invalid state or a rejected exchange
    """
    platform = SocialPlatform.from_slug(platform)
    stored = consume_state(state, platform)
    user_id = stored["user_id"]

    try:
        token_json = await exchange_code_for_token(platform, code, db, code_verifier=stored.get("code_verifier"))
        access_token = token_json["access_token"]
        info = await fetch_account_info(platform, access_token, token_json)

        account = save_social_account(
            user_id=user_id,
            platform=platform,
            account_name=info["account_name"],
            access_token=access_token,
            refresh_token=token_json.get("refresh_token"),
            expires_in=token_json.get("expires_in"),
            account_id=info["account_id"],
            extra_data=info["extra_data"],
            db=db,
        )
    except Exception:
        oauth_connections_counter.labels(platform=platform, status="failure").inc()
        raise

    oauth_connections_counter.labels(platform=platform, status="success").inc()
    oauth_logger.info(f"{platform} account '{account.account_name}' connected for user {user_id}")
    return account


# ============================================================================
# TOKEN REFRESH
# ============================================================================

def token_needs_refresh(account: SocialMediaAccount) -> bool:
    """True when the token has expired or will within the refresh buffer"""
    expiry = as_utc(account.token_expiry)
    if expiry is None:
        return False
    return expiry <= utcnow() + timedelta(seconds=settings.TOKEN_REFRESH_BUFFER_SECONDS)


async def refresh_access_token(account: SocialMediaAccount, db: Session) -> SocialMediaAccount:
    """Refresh the account's access token

    A missing refresh token in the response keeps the previous one. On failure the
    account is deactivated and the error re-raised.
    """
    if not account.refresh_token:
        return account

    try:
        refresh_token = decrypt(account.refresh_token)
        client_id, client_secret = get_platform_credentials(account.platform, db)
        payload = _client_params(account.platform, client_id, client_secret)
        payload.update({"refresh_token": refresh_token, "grant_type": "refresh_token"})

        oauth_logger.info(f"Refreshing access token for {account.platform} account {account.id}")
        async with _http_client() as client:
            response = await client.post(
                TOKEN_URLS[account.platform],
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"}
            )
        data = _parse_token_response(account.platform, response)

        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        account.access_token = encrypt(data["access_token"])
        account.refresh_token = encrypt(data.get("refresh_token") or refresh_token)
        account.token_expiry = utcnow() + timedelta(seconds=expires_in)
        db.commit()
        db.refresh(account)
        oauth_logger.info(f"Token refresh successful for {account.platform} account {account.id} (expires in {expires_in}s)")
        return account
    except Exception as e:
        oauth_logger.error(f"Error refreshing access token for account {account.id}: {e}")
        db.rollback()
        account.is_active = False
        db.commit()
        raise


async def get_valid_access_token(account: SocialMediaAccount, db: Session) -> str:
    """Return a decrypted access token, refreshing it first when it is about to expire

    Raises:
        OAuthError: If the token is expired and cannot be refreshed
    """
    if token_needs_refresh(account):
        if not account.refresh_token:
            if as_utc(account.token_expiry) <= utcnow():
                raise OAuthError(f"{account.platform} token expired. Please reconnect the account.")
        else:
            account = await refresh_access_token(account, db)
    return decrypt(account.access_token)
