"""
Account and session management.

This module provides:
- Salted password hashing and verification
- Registration and login, both issuing a bearer session
- Session validation with lazy expiry and logout
"""

import hashlib
import hmac
import logging
import re
from datetime import timedelta
from typing import Optional, Tuple

from movecar.clients.repositories import DatabaseManager, get_db
from movecar.config import settings
from movecar.errors import AuthError, DuplicatePhoneError, NotFoundError, ValidationError
from movecar.models.internal_models import User, UserSession, utcnow
from movecar.observability import trace_function
from movecar.utils.ids import generate_session_token, generate_unique_id

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 32
INVALID_CREDENTIALS_MESSAGE = "Phone number or password incorrect"


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Hash ``password`` with the application-wide salt (hex SHA-256)."""
    salted = (salt if salt is not None else settings.password_salt) + password
    return hashlib.sha256(salted.encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str, salt: Optional[str] = None) -> bool:
    """Re-hash ``password`` and compare digests in constant time."""
    return hmac.compare_digest(hash_password(password, salt), password_hash)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthService:
    """
    Registration, login and bearer session handling.

    All sessions share one validity window, ``SESSION_TTL_DAYS``.
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        """
        Initialize authentication service.

        Args:
            db_manager: Database manager instance. If None, uses the global one.
        """
        self.db = db_manager or get_db()
        self.session_ttl = timedelta(days=settings.session_ttl_days)

    async def _issue_session(self, user: User) -> UserSession:
        session = UserSession(
            user_id=user.id,
            token=generate_session_token(),
            expires_at=utcnow() + self.session_ttl
        )
        await self.db.sessions.create(session)
        return session

    @trace_function("auth.register")
    async def register(self, phone: str, password: str) -> Tuple[User, UserSession]:
        """
        Create an account and log it in.

        Raises:
            ValidationError: If phone format or password length is invalid
            DuplicatePhoneError: If the phone number already has an account
        """
        phone = phone.strip()
        if not re.fullmatch(settings.phone_pattern, phone):
            raise ValidationError("Invalid phone number format")

        if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be {MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters long"
            )

        if await self.db.users.phone_exists(phone):
            raise DuplicatePhoneError()

        user_id = await generate_unique_id(
            self.db.users.exists,
            length=settings.user_id_length,
            max_attempts=settings.id_generation_max_attempts,
            namespace="user"
        )
        user = User(id=user_id, phone=phone, password_hash=hash_password(password))
        await self.db.users.create(user)

        session = await self._issue_session(user)
        logger.info(f"Registered user {user.id}")
        return user, session

    @trace_function("auth.login")
    async def login(self, phone: str, password: str) -> Tuple[User, UserSession]:
        """
        Verify credentials and open a session.

        Raises:
            AuthError: With one generic message whether the phone is unknown
                or the password is wrong
        """
        user = await self.db.users.get_by_phone(phone.strip())
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Login rejected")
            raise AuthError(INVALID_CREDENTIALS_MESSAGE, code="INVALID_CREDENTIALS")

        session = await self._issue_session(user)
        logger.info(f"User {user.id} logged in")
        return user, session

    async def validate(self, token: Optional[str]) -> Optional[UserSession]:
        """Return the live session for ``token`` or None."""
        if not token:
            return None
        return await self.db.sessions.get(token)

    async def require_session(self, token: Optional[str]) -> UserSession:
        """
        Like ``validate`` but raising on failure.

        Raises:
            AuthError: If the token is missing, unknown or expired
        """
        if not token:
            raise AuthError("Not logged in")

        session = await self.validate(token)
        if session is None:
            raise AuthError("Session expired, please log in again", code="SESSION_EXPIRED")
        return session

    async def logout(self, token: Optional[str]) -> None:
        """Invalidate ``token``; unknown tokens are ignored."""
        if token:
            await self.db.sessions.delete(token)

    async def get_current_user(self, token: Optional[str]) -> User:
        """
        Resolve the account behind a bearer token.

        Raises:
            AuthError: If the session is invalid
            NotFoundError: If the account no longer exists
        """
        session = await self.require_session(token)
        user = await self.db.users.get(session.user_id)
        if user is None:
            raise NotFoundError("User", session.user_id)
        return user


# Global service instance
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """
    Get the global authentication service instance.

    Returns:
        AuthService: The global authentication service instance
    """
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
