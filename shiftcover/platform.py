"""
Platform-admin operations: creating organizations and inviting users.
"""

import logging
from datetime import UTC, datetime

from shiftcover.database import DaycareDatabase
from shiftcover.errors import AuthorizationError, NotFoundError, ValidationError
from shiftcover.identity import AuthUser, IdentityProvider, normalize_email
from shiftcover.models import MEMBERSHIP_ROLES, Membership, NowFn, Organization, Role

logger = logging.getLogger(__name__)


class PlatformService:
    def __init__(
        self,
        db: DaycareDatabase,
        identity: IdentityProvider,
        *,
        now_fn: NowFn | None = None,
    ) -> None:
        self._db = db
        self._identity = identity
        self._now = now_fn or (lambda: datetime.now(UTC))

    def require_platform_admin(self, caller_id: str) -> None:
        if not self._db.is_platform_admin(caller_id):
            logger.warning(f"user {caller_id} is not a platform admin")
            raise AuthorizationError("Forbidden")

    def list_organizations(self, caller_id: str) -> list[Organization]:
        self.require_platform_admin(caller_id)
        return self._db.list_organizations()

    def create_organization(self, caller_id: str, name: str | None) -> Organization:
        """
        Create an organization and make its creator an admin of it. If the
        membership cannot be written the organization is removed again.
        """
        self.require_platform_admin(caller_id)

        name = (name or "").strip()
        if not name:
            raise ValidationError("Missing name")

        organization = self._db.insert_organization(
            Organization(name=name, created_by=caller_id, created_at=self._now())
        )
        try:
            self._db.upsert_membership(
                Membership(
                    organization_id=organization.id,
                    user_id=caller_id,
                    role=Role.ADMIN,
                    created_at=self._now(),
                )
            )
        except Exception:
            logger.exception(
                f"admin membership for organization {organization.id} failed, removing it"
            )
            self._db.delete_organization(organization.id)
            raise

        logger.info(f"organization {organization.id} ({name}) created by {caller_id}")
        return organization

    async def invite_user(
        self,
        caller_id: str,
        *,
        email: str | None,
        organization_id: str | None,
        role: str | None,
        redirect_to: str,
    ) -> AuthUser:
        """
        Invite a user into an organization with a role.

        Every step is keyed by the user's identity, so repeating an invite
        after a partial failure converges on the same user, profile and
        membership. An existing profile keeps its password_set flag.
        """
        self.require_platform_admin(caller_id)

        email = normalize_email(email)
        organization_id = (organization_id or "").strip()
        role = (role or "").strip()

        if not email or not organization_id:
            raise ValidationError("Missing email or organization_id")
        if role not in MEMBERSHIP_ROLES:
            raise ValidationError("Invalid role")
        if self._db.get_organization(organization_id) is None:
            raise NotFoundError("Organization not found")

        user = await self._identity.invite_user_by_email(email, redirect_to)
        self._db.ensure_profile(user.id)
        self._db.upsert_membership(
            Membership(
                organization_id=organization_id,
                user_id=user.id,
                role=Role(role),
                created_at=self._now(),
            )
        )

        logger.info(
            f"{email} invited to organization {organization_id} as {role} by {caller_id}"
        )
        return user

    def bootstrap_platform_admin(self, email: str, password: str) -> AuthUser:
        """
        Make sure a platform admin with this email exists. Used at startup.
        """
        user = self._identity.get_user_by_email(email)
        if user is None:
            user = self._identity.create_user(email, password)
        self._db.mark_password_set(user.id)
        if not self._db.is_platform_admin(user.id):
            self._db.add_platform_admin(user.id, self._now())
            logger.info(f"platform admin {user.email} bootstrapped")
        return user
