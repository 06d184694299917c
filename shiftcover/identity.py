"""
Identity provider: users, bearer sessions and the one-time codes behind
invite, magic-link and password-recovery emails.

Users live in the same database as the domain tables (`auth_user:<id>`) so
roster procedures can join claimant emails.
"""

import logging
import secrets
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from passlib.context import CryptContext
from pydantic import BaseModel, Field

from shiftcover.config import AUTH_CODE_TTL_MINUTES, SESSION_TTL_HOURS
from shiftcover.database import DaycareDatabase
from shiftcover.errors import AuthenticationError, IdentityProviderError
from shiftcover.models import NowFn, new_id
from shiftcover.notifier import (
    send_invite_email,
    send_magic_link_email,
    send_password_reset_email,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class CodePurpose(StrEnum):
    INVITE = "invite"
    MAGIC_LINK = "magic_link"
    RECOVERY = "recovery"


class AuthUser(BaseModel):
    id: str = Field(default_factory=new_id)
    email: str
    created_at: datetime
    password_hash: str | None = Field(default=None, exclude=True)


class AuthSession(BaseModel):
    access_token: str
    user_id: str
    expires_at: datetime


class AuthCode(BaseModel):
    code: str
    user_id: str
    purpose: CodePurpose
    expires_at: datetime


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def with_code(redirect_to: str, code: str) -> str:
    separator = "&" if "?" in redirect_to else "?"
    return f"{redirect_to}{separator}code={code}"


class IdentityProvider:
    def __init__(
        self, db: DaycareDatabase, *, now_fn: NowFn | None = None
    ) -> None:
        self._db = db
        self._now = now_fn or (lambda: datetime.now(UTC))

    # -- users -------------------------------------------------------------

    def get_user_by_id(self, user_id: str) -> AuthUser | None:
        value = self._db.get(f"auth_user:{user_id}")
        return value if isinstance(value, AuthUser) else None

    def get_user_by_email(self, email: str) -> AuthUser | None:
        email = normalize_email(email)
        return next(
            (
                u
                for u in self._db.scan("auth_user:")
                if isinstance(u, AuthUser) and u.email == email
            ),
            None,
        )

    def create_user(self, email: str, password: str | None = None) -> AuthUser:
        """
        Create a user, or return the existing one for this email.
        """
        email = normalize_email(email)
        if not email or "@" not in email:
            raise IdentityProviderError("Invalid email address")

        with self._db.transaction():
            user = self.get_user_by_email(email)
            if user is None:
                user = AuthUser(email=email, created_at=self._now())
                logger.info(f"created auth user {user.id} for {email}")
            if password is not None:
                user = user.model_copy(
                    update={"password_hash": pwd_context.hash(password)}
                )
            self._db.put(f"auth_user:{user.id}", user)
        return user

    async def invite_user_by_email(self, email: str, redirect_to: str) -> AuthUser:
        """
        Create the user if needed and email them a one-time sign-in link.
        Inviting an existing email re-sends the link to the same user.
        """
        user = self.create_user(email)
        code = self._issue_code(user.id, CodePurpose.INVITE)
        await send_invite_email(user.email, with_code(redirect_to, code.code))
        logger.info(f"invite sent to {user.email}")
        return user

    def update_password(self, user_id: str, password: str) -> None:
        with self._db.transaction():
            user = self.get_user_by_id(user_id)
            if user is None:
                raise IdentityProviderError("User not found")
            self._db.put(
                f"auth_user:{user_id}",
                user.model_copy(update={"password_hash": pwd_context.hash(password)}),
            )
        logger.info(f"password updated for user {user_id}")

    # -- sessions ----------------------------------------------------------

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        user = self.get_user_by_email(email)
        if (
            user is None
            or user.password_hash is None
            or not pwd_context.verify(password, user.password_hash)
        ):
            logger.warning(f"failed sign-in for {normalize_email(email)}")
            raise AuthenticationError("Invalid login credentials")
        return self.create_session(user.id)

    async def send_magic_link(self, email: str, redirect_to: str) -> None:
        user = self.get_user_by_email(email)
        if user is None:
            logger.info(f"magic link requested for unknown email {normalize_email(email)}")
            return
        code = self._issue_code(user.id, CodePurpose.MAGIC_LINK)
        await send_magic_link_email(user.email, with_code(redirect_to, code.code))

    async def send_password_reset(self, email: str, redirect_to: str) -> None:
        user = self.get_user_by_email(email)
        if user is None:
            logger.info(f"password reset requested for unknown email {normalize_email(email)}")
            return
        code = self._issue_code(user.id, CodePurpose.RECOVERY)
        await send_password_reset_email(user.email, with_code(redirect_to, code.code))

    def exchange_code_for_session(
        self, code: str
    ) -> tuple[AuthSession, CodePurpose]:
        """
        Trade a one-time emailed code for a session. A code works once.
        """
        with self._db.transaction():
            stored = self._db.get(f"auth_code:{code}")
            self._db.delete(f"auth_code:{code}")

        if not isinstance(stored, AuthCode) or stored.expires_at <= self._now():
            raise AuthenticationError("Invalid or expired code")
        return self.create_session(stored.user_id), stored.purpose

    def get_user(self, access_token: str) -> AuthUser:
        session = self._db.get(f"auth_session:{access_token}")
        if not isinstance(session, AuthSession):
            raise AuthenticationError("Invalid session")
        if session.expires_at <= self._now():
            self._db.delete(f"auth_session:{access_token}")
            raise AuthenticationError("Invalid session")
        user = self.get_user_by_id(session.user_id)
        if user is None:
            raise AuthenticationError("Invalid session")
        return user

    def sign_out(self, access_token: str) -> None:
        self._db.delete(f"auth_session:{access_token}")

    def create_session(self, user_id: str) -> AuthSession:
        """Issue a bearer session for a user that has already been verified"""
        session = AuthSession(
            access_token=secrets.token_urlsafe(32),
            user_id=user_id,
            expires_at=self._now() + timedelta(hours=SESSION_TTL_HOURS),
        )
        self._purge_expired()
        self._db.put(f"auth_session:{session.access_token}", session)
        return session

    def _issue_code(self, user_id: str, purpose: CodePurpose) -> AuthCode:
        code = AuthCode(
            code=secrets.token_urlsafe(24),
            user_id=user_id,
            purpose=purpose,
            expires_at=self._now() + timedelta(minutes=AUTH_CODE_TTL_MINUTES),
        )
        self._purge_expired()
        self._db.put(f"auth_code:{code.code}", code)
        return code

    def _purge_expired(self) -> None:
        # drop sessions and codes past their expiry
        now = self._now()
        with self._db.transaction():
            for session in self._db.scan("auth_session:"):
                if isinstance(session, AuthSession) and session.expires_at <= now:
                    self._db.delete(f"auth_session:{session.access_token}")
            for code in self._db.scan("auth_code:"):
                if isinstance(code, AuthCode) and code.expires_at <= now:
                    self._db.delete(f"auth_code:{code.code}")
