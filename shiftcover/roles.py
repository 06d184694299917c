import logging

from shiftcover.database import DaycareDatabase
from shiftcover.models import Role

logger = logging.getLogger(__name__)


def resolve_role(db: DaycareDatabase, user_id: str) -> Role | None:
    """
    Effective role of a user across the platform.

    Platform admin wins; otherwise the role of the user's earliest
    membership, or None for a user with no memberships.
    """
    if db.is_platform_admin(user_id):
        return Role.PLATFORM_ADMIN

    memberships = db.memberships_for_user(user_id)
    if not memberships:
        logger.debug(f"user {user_id} has no memberships")
        return None
    return memberships[0].role


def organization_role(
    db: DaycareDatabase, organization_id: str, user_id: str
) -> Role | None:
    membership = db.get_membership(organization_id, user_id)
    return membership.role if membership else None


def is_manager_role(role: Role | None) -> bool:
    return role in (Role.ADMIN, Role.MANAGER)
