"""
Domain records for organizations, memberships, shifts and claims.
"""

from collections.abc import Callable
from datetime import date, datetime, time
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

NowFn = Callable[[], datetime]


def new_id() -> str:
    return str(uuid4())


class Role(StrEnum):
    PLATFORM_ADMIN = "platform_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    SUBSTITUTE = "substitute"


MEMBERSHIP_ROLES = (Role.ADMIN, Role.MANAGER, Role.SUBSTITUTE)


class ShiftStatus(StrEnum):
    OPEN = "open"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    VERIFIED = "verified"


# no check-in, check-out or cancel once a shift reaches one of these
FINISHED_STATUSES = (ShiftStatus.COMPLETED, ShiftStatus.VERIFIED)


class Organization(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    created_by: str
    created_at: datetime


class Membership(BaseModel):
    organization_id: str
    user_id: str
    role: Role
    created_at: datetime

    @field_validator("role")
    @classmethod
    def _membership_role(cls, value: Role) -> Role:
        if value not in MEMBERSHIP_ROLES:
            raise ValueError(f"invalid membership role: {value}")
        return value


class Profile(BaseModel):
    user_id: str
    password_set: bool = False  # flipped once first-time setup completes


class PlatformAdmin(BaseModel):
    user_id: str
    created_at: datetime


class Shift(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    shift_date: date
    start_time: time
    end_time: time
    title: str | None = None
    notes: str | None = None
    status: ShiftStatus = ShiftStatus.OPEN
    created_by: str | None = None
    created_at: datetime | None = None
    verified_at: datetime | None = None
    verified_by: str | None = None  # user ID of the verifying manager


class ShiftClaim(BaseModel):
    id: str = Field(default_factory=new_id)
    shift_id: str
    user_id: str
    claimed_at: datetime
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None


class RosterRow(BaseModel):
    shift_id: str
    organization_id: str
    shift_date: date
    start_time: time
    end_time: time
    status: ShiftStatus
    claimant_user_id: str | None = None
    claimant_email: str | None = None
    claimed_at: datetime | None = None
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
