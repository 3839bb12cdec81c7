"""Authentication service - business logic for users and sessions"""
import logging
import secrets
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from reelcast.core.metrics import login_attempts_counter
from reelcast.db.redis import set_session, get_session, delete_session, delete_all_user_sessions
from reelcast.models.user import User, ROLE_USER, ROLE_ADMIN
from reelcast.services.settings_service import get_app_setting

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    if not password_hash or not password:
        return False
    return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))


def validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "role": user.role,
        "is_admin": user.is_admin,
        "is_subscribed": user.is_subscribed,
        "stripe_current_period_end": user.stripe_current_period_end.isoformat() if user.stripe_current_period_end else None,
        "created_at": user.created_at.isoformat(),
    }


def create_user(email: str, password: str = None, name: str = None, role: str = ROLE_USER, db: Session = None) -> User:
    """Create a new user.

    Args:
        email: User email (must be unique).
        password: Raw password for the user.
        name: Display name, defaults to the local part of the email.
        role: 'user' or 'admin'.
        db: Database session (if None, creates its own).
    """
    from reelcast.db.session import SessionLocal

    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        if role not in (ROLE_USER, ROLE_ADMIN):
            raise ValueError(f"Invalid role: {role}")

        email = email.strip().lower()
        existing_user = db.query(User).filter(User.email == email).first()
        if existing_user:
            raise ValueError("Email already registered")

        user = User(
            email=email,
            name=name or email.split("@")[0],
            password_hash=hash_password(password) if password else None,
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    finally:
        if should_close:
            db.close()


def get_user_by_id(user_id: int, db: Session = None) -> Optional[User]:
    """Get user by ID"""
    from reelcast.db.session import SessionLocal

    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        return db.query(User).filter(User.id == user_id).first()
    finally:
        if should_close:
            db.close()


def authenticate_user(email: str, password: str, db: Session) -> Optional[User]:
    """Authenticate a user by email and password"""
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def create_session(user_id: int) -> str:
    """Create a new session for a user and return its id"""
    session_id = secrets.token_urlsafe(32)
    set_session(session_id, user_id)
    return session_id


def register_user(email: str, password: str, name: Optional[str], db: Session) -> dict:
    """Create the account and log the new user in

    Raises:
        ValueError: If the password is too short or the email is taken
        PermissionError: If an admin has turned registration off
    """
    if not get_app_setting("user_registration", db):
        raise PermissionError("Registration is currently disabled")
    validate_password(password)
    user = create_user(email, password=password, name=name, db=db)
    session_id = create_session(user.id)
    logger.info(f"User registered: {user.email} (ID: {user.id})")
    return {"user": serialize_user(user), "session_id": session_id}


def login_user(email: str, password: str, db: Session) -> dict:
    """Authenticate, create a session and return user info

    Raises:
        ValueError: If the credentials are invalid
    """
    user = authenticate_user(email, password, db=db)
    if not user:
        login_attempts_counter.labels(status="failure").inc()
        raise ValueError("Invalid email or password")

    session_id = create_session(user.id)
    login_attempts_counter.labels(status="success").inc()
    logger.info(f"User logged in: {user.email} (ID: {user.id})")

    return {"user": serialize_user(user), "session_id": session_id}


def logout_user(session_id: Optional[str]) -> dict:
    if session_id:
        delete_session(session_id)
        logger.info(f"User logged out (session: {session_id[:16]}...)")
    return {"message": "Logged out successfully"}


def get_current_user_from_session(session_id: Optional[str], db: Session) -> dict:
    if not session_id:
        return {"user": None}

    user_id = get_session(session_id)
    if not user_id:
        return {"user": None}

    user = get_user_by_id(user_id, db=db)
    if not user:
        return {"user": None}

    return {"user": serialize_user(user)}


def change_password(user_id: int, current_password: str, new_password: str, db: Session) -> dict:
    """Verify the current password and store the new one

    Raises:
        ValueError: If user not found, password too short, or current password incorrect
    """
    user = get_user_by_id(user_id, db=db)
    if not user:
        raise ValueError("User not found")

    validate_password(new_password)

    if not verify_password(current_password, user.password_hash):
        raise ValueError("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    db.commit()
    logger.info(f"Password changed for user {user_id}")
    return {"message": "Password changed successfully"}


def update_profile(user_id: int, db: Session, name: Optional[str] = None, image: Optional[str] = None) -> dict:
    user = get_user_by_id(user_id, db=db)
    if not user:
        raise ValueError("User not found")

    if name is not None:
        if not name.strip():
            raise ValueError("Name cannot be empty")
        user.name = name.strip()
    if image is not None:
        user.image = image or None

    db.commit()
    db.refresh(user)
    return {"user": serialize_user(user)}


def delete_user_account(user_id: int, db: Session) -> dict:
    """Delete the user, cascading to their subscription, videos, accounts and posts"""
    user = get_user_by_id(user_id, db=db)
    if not user:
        raise ValueError("User not found")

    if user.stripe_subscription_id:
        from reelcast.services.stripe_service import cancel_stripe_subscription
        cancel_stripe_subscription(user.stripe_subscription_id)

    email = user.email
    db.delete(user)
    db.commit()

    sessions_deleted = delete_all_user_sessions(user_id)
    logger.info(f"Deleted account {email} (ID: {user_id}), {sessions_deleted} session(s) removed")
    return {"message": "Account deleted successfully"}
