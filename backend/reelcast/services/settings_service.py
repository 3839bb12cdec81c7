"""System-wide settings and OAuth client credentials stored in app_settings"""
import json
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from reelcast.core.config import settings
from reelcast.models.app_setting import AppSetting
from reelcast.models.social_account import SocialPlatform
from reelcast.utils.encryption import encrypt, decrypt

logger = logging.getLogger(__name__)

MASKED_SECRET = "•••••••••••••••••"

DEFAULT_APP_SETTINGS: Dict[str, Any] = {
    "user_registration": True,
    "maintenance_mode": False,
    "max_upload_size": 500,  # MB
    "default_video_quality": "720p",
    "default_language": "en",
    "trial_period": 14,
    "default_plan": "basic",
    "grace_period": 3,
    "allow_cancellation": True,
    "data_retention_days": 90,
    "max_storage_gb": 50,
}

# Environment fallbacks for each platform's client credentials
ENV_CREDENTIALS = {
    SocialPlatform.YOUTUBE: ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"),
    SocialPlatform.TIKTOK: ("TIKTOK_CLIENT_KEY", "TIKTOK_CLIENT_SECRET"),
    SocialPlatform.INSTAGRAM: ("INSTAGRAM_CLIENT_ID", "INSTAGRAM_CLIENT_SECRET"),
    SocialPlatform.FACEBOOK: ("FACEBOOK_APP_ID", "FACEBOOK_APP_SECRET"),
}


def _get_raw(key: str, db: Session) -> Optional[str]:
    row = db.query(AppSetting).filter(AppSetting.key == key).first()
    return row.value if row else None


def _set_raw(key: str, value: str, db: Session) -> None:
    row = db.query(AppSetting).filter(AppSetting.key == key).first()
    if row:
        row.value = value
    else:
        db.add(AppSetting(key=key, value=value))


def get_app_settings(db: Session) -> Dict[str, Any]:
    """Return general settings merged over the defaults"""
    result = dict(DEFAULT_APP_SETTINGS)
    for key in DEFAULT_APP_SETTINGS:
        raw = _get_raw(f"general.{key}", db)
        if raw is not None:
            result[key] = json.loads(raw)
    return result


def get_app_setting(key: str, db: Session) -> Any:
    return get_app_settings(db).get(key)


def update_app_settings(updates: Dict[str, Any], db: Session) -> Dict[str, Any]:
    """Update known general settings; values must keep the type of their default"""
    for key, value in updates.items():
        if key not in DEFAULT_APP_SETTINGS:
            raise ValueError(f"Unknown setting: {key}")
        expected = type(DEFAULT_APP_SETTINGS[key])
        if expected is int and isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"Invalid value for {key}: expected {expected.__name__}")
        _set_raw(f"general.{key}", json.dumps(value), db)
    db.commit()
    logger.info(f"App settings updated: {sorted(updates)}")
    return get_app_settings(db)


def get_platform_credentials(platform: str, db: Session) -> Tuple[str, str]:
    """Resolve (client_id, client_secret) for a platform: admin-saved values win over the environment"""
    slug = platform.lower()
    client_id = _get_raw(f"oauth.{slug}.client_id", db)
    encrypted_secret = _get_raw(f"oauth.{slug}.client_secret", db)

    env_id_name, env_secret_name = ENV_CREDENTIALS[platform]
    client_secret = decrypt(encrypted_secret) if encrypted_secret else None

    return (
        client_id or getattr(settings, env_id_name),
        client_secret or getattr(settings, env_secret_name),
    )


def get_social_credentials(db: Session) -> Dict[str, Dict[str, str]]:
    """All platform credentials with secrets masked"""
    result = {}
    for platform in SocialPlatform.ALL:
        client_id, client_secret = get_platform_credentials(platform, db)
        result[platform.lower()] = {
            "client_id": client_id or "",
            "client_secret": MASKED_SECRET if client_secret else "",
        }
    return result


def save_social_credentials(platform: str, client_id: str, client_secret: Optional[str], db: Session) -> Dict[str, Dict[str, str]]:
    """Store a platform's client id and (unless masked or empty) its secret"""
    platform = SocialPlatform.from_slug(platform)
    slug = platform.lower()

    _set_raw(f"oauth.{slug}.client_id", client_id.strip(), db)
    if client_secret and client_secret != MASKED_SECRET:
        _set_raw(f"oauth.{slug}.client_secret", encrypt(client_secret.strip()), db)

    db.commit()
    logger.info(f"OAuth credentials updated for {platform}")
    return get_social_credentials(db)
