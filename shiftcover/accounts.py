import logging

from pydantic import BaseModel

from shiftcover.config import PASSWORD_MIN_LENGTH, SITE_URL
from shiftcover.database import DaycareDatabase
from shiftcover.errors import ConflictError, ValidationError
from shiftcover.identity import AuthSession, AuthUser, CodePurpose, IdentityProvider
from shiftcover.models import Role
from shiftcover.roles import resolve_role

logger = logging.getLogger(__name__)


class AuthResult(BaseModel):
    session: AuthSession
    next: str  # where the client goes after signing in


class OrganizationSummary(BaseModel):
    id: str
    name: str
    role: Role


class Dashboard(BaseModel):
    id: str
    email: str
    role: Role | None
    password_set: bool
    organizations: list[OrganizationSummary]


class AccountService:
    def __init__(self, db: DaycareDatabase, identity: IdentityProvider) -> None:
        self._db = db
        self._identity = identity

    def sign_in(self, email: str | None, password: str | None) -> AuthResult:
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("Enter your email and password.")
        session = self._identity.sign_in_with_password(email, password)
        return AuthResult(session=session, next=self._next_path(session.user_id))

    async def send_magic_link(self, email: str | None) -> None:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Enter your email first.")
        await self._identity.send_magic_link(email, f"{SITE_URL}/auth/callback")

    def exchange_code(self, code: str | None) -> AuthResult:
        if not code:
            raise ValidationError("Missing code")
        session, purpose = self._identity.exchange_code_for_session(code)
        if purpose == CodePurpose.RECOVERY:
            return AuthResult(session=session, next="/reset-password")
        return AuthResult(session=session, next=self._next_path(session.user_id))

    def sign_out(self, access_token: str) -> None:
        self._identity.sign_out(access_token)

    async def request_password_reset(self, email: str | None) -> None:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Enter your email first, then click 'Forgot password'.")
        await self._identity.send_password_reset(email, f"{SITE_URL}/auth/callback")

    def set_initial_password(
        self, user: AuthUser, password: str | None, confirm: str | None
    ) -> None:
        """
        First-time setup after accepting an invite. Only allowed while the
        profile still says no password has been set.
        """
        profile = self._db.get_profile(user.id)
        if profile is not None and profile.password_set:
            raise ConflictError("Password has already been set")

        password = _checked_password(password, confirm)
        self._identity.update_password(user.id, password)
        self._db.mark_password_set(user.id)
        logger.info(f"user {user.id} completed first-time password setup")

    def update_password(
        self, user: AuthUser, password: str | None, confirm: str | None
    ) -> None:
        password = _checked_password(password, confirm)
        self._identity.update_password(user.id, password)

    def dashboard(self, user: AuthUser) -> Dashboard:
        profile = self._db.get_profile(user.id)
        organizations = []
        for membership in self._db.memberships_for_user(user.id):
            organization = self._db.get_organization(membership.organization_id)
            if organization is None:
                continue
            organizations.append(
                OrganizationSummary(
                    id=organization.id, name=organization.name, role=membership.role
                )
            )

        return Dashboard(
            id=user.id,
            email=user.email,
            role=resolve_role(self._db, user.id),
            password_set=profile is None or profile.password_set,
            organizations=organizations,
        )

    def _next_path(self, user_id: str) -> str:
        # invited users must choose a password before anything else
        profile = self._db.get_profile(user_id)
        if profile is not None and not profile.password_set:
            return "/set-password"
        return "/dashboard"


def _checked_password(password: str | None, confirm: str | None) -> str:
    password = password or ""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters."
        )
    if password != confirm:
        raise ValidationError("Passwords do not match.")
    return password
