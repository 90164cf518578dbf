"""
Authentication provider: password sign-in, bearer sessions, email
confirmation and password reset.

Bearer tokens and email tokens are random strings handed to the client once;
only their sha256 digest is stored.
"""
import logging
from datetime import timedelta
from typing import Optional, Tuple

from fastapi import Depends, Header
from passlib.hash import pbkdf2_sha256
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import config, models
from .database import get_db_session
from .errors import AuthenticationError, AuthorizationError, ValidationError
from .utils import as_utc, hash_token, new_token, utcnow

logger = logging.getLogger(__name__)

PURPOSE_CONFIRM_EMAIL = "confirm_email"
PURPOSE_RESET_PASSWORD = "reset_password"

_EMAIL_LINKS = {
    PURPOSE_CONFIRM_EMAIL: "/confirm-email",
    PURPOSE_RESET_PASSWORD: "/reset-password",
}


def hash_password(password: str) -> str:
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pbkdf2_sha256.verify(password, password_hash)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[models.User]:
    result = await db.execute(
        select(models.User).where(models.User.email == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def sign_in(db: AsyncSession, email: str, password: str) -> Tuple[str, models.User]:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed sign-in for '%s'", email)
        raise AuthenticationError("Invalid email or password")
    if not user.email_confirmed:
        logger.info("Sign-in refused for '%s': email not confirmed", email)
        raise AuthenticationError("Email not confirmed")

    token = new_token()
    db.add(
        models.AuthSession(
            token_hash=hash_token(token),
            user_id=user.id,
            created_at=utcnow(),
            expires_at=utcnow() + timedelta(hours=config.SESSION_TTL_HOURS),
        )
    )
    await db.flush()
    logger.info("User '%s' signed in", user.email)
    return token, user


async def sign_out(db: AsyncSession, token: str) -> None:
    await db.execute(
        delete(models.AuthSession).where(models.AuthSession.token_hash == hash_token(token))
    )
    await db.flush()


async def get_current_session(db: AsyncSession, token: str) -> Optional[models.User]:
    """Returns the user behind a bearer token, or None for unknown/expired tokens."""
    auth_session = await db.get(models.AuthSession, hash_token(token))
    if auth_session is None:
        return None
    if as_utc(auth_session.expires_at) <= utcnow():
        await db.delete(auth_session)
        # Committed here, the caller rejects the request and rolls back
        await db.commit()
        return None
    return auth_session.user


def dispatch_email_token(user: models.User, purpose: str, token: str) -> None:
    """Hands the token link to the mail transport; this deployment only logs it."""
    link = f"{config.FRONTEND_BASE_URL}{_EMAIL_LINKS[purpose]}?code={token}"
    logger.info("Queued %s email for %s", purpose, user.email)
    logger.debug("Email link for %s: %s", user.email, link)


async def issue_email_token(db: AsyncSession, user: models.User, purpose: str) -> str:
    if purpose not in _EMAIL_LINKS:
        raise ValueError(f"unknown email token purpose: {purpose}")
    token = new_token()
    db.add(
        models.EmailToken(
            user_id=user.id,
            purpose=purpose,
            token_hash=hash_token(token),
            expires_at=utcnow() + timedelta(hours=config.EMAIL_TOKEN_TTL_HOURS),
        )
    )
    await db.flush()
    dispatch_email_token(user, purpose, token)
    return token


async def _consume_email_token(db: AsyncSession, token: str, purpose: str) -> models.User:
    result = await db.execute(
        select(models.EmailToken).where(
            models.EmailToken.token_hash == hash_token(token),
            models.EmailToken.purpose == purpose,
        )
    )
    email_token = result.scalar_one_or_none()
    if email_token is None or email_token.used_at is not None:
        raise ValidationError("Invalid or already used code")
    if as_utc(email_token.expires_at) <= utcnow():
        raise ValidationError("Code expired")

    user = await db.get(models.User, email_token.user_id)
    if user is None:
        raise ValidationError("Invalid or already used code")
    email_token.used_at = utcnow()
    return user


async def verify_email_confirmation(db: AsyncSession, token: str) -> models.User:
    user = await _consume_email_token(db, token, PURPOSE_CONFIRM_EMAIL)
    user.email_confirmed = True
    await db.flush()
    logger.info("Email confirmed for %s", user.email)
    return user


async def request_password_reset(db: AsyncSession, email: str) -> Optional[str]:
    user = await get_user_by_email(db, email)
    if user is None:
        # Same outward behaviour for unknown addresses
        logger.info("Password reset requested for unknown email")
        return None
    return await issue_email_token(db, user, PURPOSE_RESET_PASSWORD)


async def update_password(db: AsyncSession, user: models.User, new_password: str) -> None:
    user.password_hash = hash_password(new_password)
    user.first_access = False
    await db.flush()
    logger.info("Password updated for %s", user.email)


async def reset_password(db: AsyncSession, token: str, new_password: str) -> models.User:
    user = await _consume_email_token(db, token, PURPOSE_RESET_PASSWORD)
    # Following a mailed link proves ownership of the address
    user.email_confirmed = True
    await update_password(db, user, new_password)
    await db.execute(
        delete(models.AuthSession).where(models.AuthSession.user_id == user.id)
    )
    await db.flush()
    return user


async def ensure_admin_user(db: AsyncSession) -> models.User:
    """Creates the bootstrap administrator from ADMIN_EMAIL/ADMIN_PASSWORD if missing."""
    admin = await get_user_by_email(db, config.ADMIN_EMAIL)
    if admin is not None:
        return admin
    admin = models.User(
        name=config.ADMIN_NAME,
        email=config.ADMIN_EMAIL.strip().lower(),
        role=models.ROLE_ADMIN,
        password_hash=hash_password(config.ADMIN_PASSWORD),
        email_confirmed=True,
        first_access=True,
    )
    db.add(admin)
    await db.flush()
    logger.info("Bootstrap admin '%s' created", admin.email)
    return admin


# --- FastAPI dependencies ---
def parse_bearer(authorization: Optional[str]) -> str:
    if authorization is None:
        raise AuthenticationError("Not authenticated: token required")
    parts = authorization.split()
    # Expected format: "Bearer <token>"
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid token format, expected 'Bearer <token>'")
    return parts[1]


async def get_current_token(authorization: Optional[str] = Header(None)) -> str:
    return parse_bearer(authorization)


async def get_current_user(
    token: str = Depends(get_current_token),
    db: AsyncSession = Depends(get_db_session),
) -> models.User:
    user = await get_current_session(db, token)
    if user is None:
        raise AuthenticationError("Invalid or expired token")
    return user


async def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.is_admin:
        logger.info("Admin access refused for %s", user.email)
        raise AuthorizationError("Administrator access required")
    return user
