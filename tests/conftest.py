from datetime import UTC, date, datetime, time
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import shiftcover.identity as identity_module
from shiftcover.api import create_app
from shiftcover.models import Membership, Organization, Role, Shift

SEEDED_AT = datetime(2025, 7, 1, 12, 0, 0, tzinfo=UTC)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def email_mocks(monkeypatch):
    """
    Patch identity-level imports (identity.py does `from shiftcover.notifier
    import ...`), so patching shiftcover.notifier.* would not affect it.
    """
    invite = AsyncMock(return_value=None)
    magic_link = AsyncMock(return_value=None)
    reset = AsyncMock(return_value=None)
    monkeypatch.setattr(identity_module, "send_invite_email", invite)
    monkeypatch.setattr(identity_module, "send_magic_link_email", magic_link)
    monkeypatch.setattr(identity_module, "send_password_reset_email", reset)
    return SimpleNamespace(invite=invite, magic_link=magic_link, reset=reset)


@pytest.fixture
def app():
    return create_app()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest.fixture
def seed(app):
    """
    One daycare with an admin, a manager, two substitutes and an open shift,
    a platform admin, and a user with no membership anywhere.
    """
    db = app.state.database
    identity = app.state.identity

    def user(email: str):
        u = identity.create_user(email)
        db.mark_password_set(u.id)
        return u, identity.create_session(u.id).access_token

    platform_admin, platform_admin_token = user("root@platform.test")
    db.add_platform_admin(platform_admin.id, SEEDED_AT)

    org = db.insert_organization(
        Organization(
            name="Sunny Days", created_by=platform_admin.id, created_at=SEEDED_AT
        )
    )

    def member(email: str, role: Role):
        u, token = user(email)
        db.upsert_membership(
            Membership(
                organization_id=org.id,
                user_id=u.id,
                role=role,
                created_at=SEEDED_AT,
            )
        )
        return u, token

    admin, admin_token = member("admin@sunny.test", Role.ADMIN)
    manager, manager_token = member("manager@sunny.test", Role.MANAGER)
    alice, alice_token = member("alice@subs.test", Role.SUBSTITUTE)
    bob, bob_token = member("bob@subs.test", Role.SUBSTITUTE)
    outsider, outsider_token = user("outsider@elsewhere.test")

    shift = db.insert_shift(
        Shift(
            organization_id=org.id,
            shift_date=date(2025, 7, 2),
            start_time=time(8, 0),
            end_time=time(16, 0),
            title="Pre-K",
            created_by=manager.id,
            created_at=SEEDED_AT,
        )
    )

    return SimpleNamespace(
        org=org,
        shift=shift,
        platform_admin=platform_admin,
        platform_admin_token=platform_admin_token,
        admin=admin,
        admin_token=admin_token,
        manager=manager,
        manager_token=manager_token,
        alice=alice,
        alice_token=alice_token,
        bob=bob,
        bob_token=bob_token,
        outsider=outsider,
        outsider_token=outsider_token,
    )
