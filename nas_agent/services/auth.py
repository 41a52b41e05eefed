"""
Password hashing and bearer tokens.

Passwords are stored as passlib pbkdf2_sha256 hashes. Tokens are JWTs
signed with settings.jwt_secret; their claims carry the user id (sub),
role and expiry (exp).
"""

import logging
import time
from typing import Dict, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from passlib.hash import pbkdf2_sha256

from nas_agent.config import settings
from nas_agent.db.models import ROLE_ADMIN, User
from nas_agent.db.repository import UserRepository
from nas_agent.errors import AuthenticationError

logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with pbkdf2_sha256."""
    if rounds:
        return pbkdf2_sha256.using(rounds=rounds).hash(password)
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash or not pbkdf2_sha256.identify(password_hash):
        return False
    return pbkdf2_sha256.verify(password, password_hash)


def issue_token(user: User, secret: Optional[str] = None, ttl_seconds: Optional[int] = None) -> str:
    """Create a signed token for a user."""
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "exp": int(time.time()) + (ttl_seconds or settings.token_ttl_seconds),
    }
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, secret: Optional[str] = None) -> Dict:
    """
    Validate a token and return its claims.

    Raises AuthenticationError when the token is malformed, tampered with
    or expired.
    """
    try:
        payload = jwt.decode(
            token,
            secret or settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]}
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}")

    if not str(payload["sub"]).isdigit():
        raise AuthenticationError("Invalid token subject")
    return payload


def ensure_admin_user(users: UserRepository) -> User:
    """Create the initial admin account if no user has the admin email yet."""
    admin = users.get_by_email(settings.admin_email)
    if admin is not None:
        return admin
    logger.info(f"Creating initial admin account {settings.admin_email}")
    return users.insert(User(
        name="Admin",
        email=settings.admin_email,
        nas_client_ip=settings.admin_client_ip,
        role=ROLE_ADMIN,
        password_hash=hash_password(settings.admin_password)
    ))
