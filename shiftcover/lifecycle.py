"""
Shift lifecycle: open -> claimed -> (checked in) -> completed -> verified,
with cancel/unclaim taking a claimed shift back to open.

Guards are evaluated here before any write; the database re-checks the same
preconditions atomically, so a write it refuses means another caller got
there first. Every mutation returns a freshly loaded view.
"""

import logging
from datetime import UTC, date, datetime, time

from pydantic import BaseModel, Field

from shiftcover.database import DaycareDatabase
from shiftcover.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ShiftCoverError,
    ValidationError,
)
from shiftcover.models import (
    FINISHED_STATUSES,
    NowFn,
    Organization,
    Role,
    RosterRow,
    Shift,
    ShiftClaim,
    ShiftStatus,
)
from shiftcover.roles import is_manager_role, organization_role

logger = logging.getLogger(__name__)


class ShiftActions(BaseModel):
    can_claim: bool = False
    can_start: bool = False
    can_end: bool = False
    can_verify: bool = False
    can_cancel: bool = False
    cancel_label: str | None = None


class ShiftView(BaseModel):
    shift: Shift
    claim: ShiftClaim | None
    role: Role
    claimed_by_me: bool
    actions: ShiftActions
    roster: RosterRow | None = None  # admins and managers only


class ShiftBoard(BaseModel):
    organization: Organization
    role: Role
    open: list[Shift] = Field(default_factory=list)
    mine: list[Shift] = Field(default_factory=list)
    needs_verification: list[Shift] = Field(default_factory=list)
    verified: list[Shift] = Field(default_factory=list)
    other: list[Shift] = Field(default_factory=list)


# -- guards ------------------------------------------------------------------
# Each returns the error that refuses the transition, or None if it is legal.


def claim_refusal(
    shift: Shift, claim: ShiftClaim | None
) -> ShiftCoverError | None:
    if claim is not None:
        return ConflictError("Shift has already been claimed")
    if shift.status != ShiftStatus.OPEN:
        return ConflictError("Shift is not open")
    return None


def start_refusal(
    shift: Shift, claim: ShiftClaim | None, caller_id: str
) -> ShiftCoverError | None:
    if claim is None:
        return ConflictError("Shift has not been claimed")
    if claim.user_id != caller_id:
        return AuthorizationError("Only the claimant can start this shift")
    if claim.check_in_at is not None:
        return ConflictError("Shift has already been started")
    if shift.status in FINISHED_STATUSES:
        return ConflictError(f"Shift is already {shift.status}")
    return None


def end_refusal(
    shift: Shift, claim: ShiftClaim | None, caller_id: str
) -> ShiftCoverError | None:
    if claim is None:
        return ConflictError("Shift has not been claimed")
    if claim.user_id != caller_id:
        return AuthorizationError("Only the claimant can end this shift")
    if claim.check_in_at is None:
        return ConflictError("Shift has not been started")
    if claim.check_out_at is not None or shift.status in FINISHED_STATUSES:
        return ConflictError("Shift has already ended")
    return None


def verify_refusal(shift: Shift, role: Role | None) -> ShiftCoverError | None:
    if not is_manager_role(role):
        return AuthorizationError("Only admins and managers can verify shifts")
    if shift.status != ShiftStatus.COMPLETED:
        return ConflictError("Only completed shifts can be verified")
    return None


def cancel_refusal(
    shift: Shift, claim: ShiftClaim | None, caller_id: str, role: Role | None
) -> ShiftCoverError | None:
    if claim is None:
        return ConflictError("Shift has no claim to cancel")
    if claim.user_id != caller_id and not is_manager_role(role):
        return AuthorizationError(
            "Only the claimant or a manager can cancel this claim"
        )
    if claim.check_in_at is not None:
        return ConflictError("Cannot cancel a claim after check-in")
    if shift.status in FINISHED_STATUSES:
        return ConflictError(f"Shift is already {shift.status}")
    return None


def evaluate_actions(
    shift: Shift, claim: ShiftClaim | None, caller_id: str, role: Role | None
) -> ShiftActions:
    mine = claim is not None and claim.user_id == caller_id
    can_cancel = cancel_refusal(shift, claim, caller_id, role) is None
    return ShiftActions(
        can_claim=role is not None and claim_refusal(shift, claim) is None,
        can_start=start_refusal(shift, claim, caller_id) is None,
        can_end=end_refusal(shift, claim, caller_id) is None,
        can_verify=verify_refusal(shift, role) is None,
        can_cancel=can_cancel,
        cancel_label=(
            ("Cancel Claim" if mine else "Unclaim Substitute")
            if can_cancel
            else None
        ),
    )


class ShiftLifecycle:
    def __init__(
        self, db: DaycareDatabase, *, now_fn: NowFn | None = None
    ) -> None:
        self._db = db
        self._now = now_fn or (lambda: datetime.now(UTC))

    # -- reads -------------------------------------------------------------

    def load(self, shift_id: str, caller_id: str) -> ShiftView:
        shift = self._db.get_shift(shift_id)
        if shift is None:
            raise NotFoundError("Shift not found")

        role = self._member_role(shift.organization_id, caller_id)
        claim = self._db.get_claim(shift_id)

        roster = None
        if is_manager_role(role):
            rows = self._db.get_shift_roster(shift_id)
            roster = rows[0] if rows else None

        return ShiftView(
            shift=shift,
            claim=claim,
            role=role,
            claimed_by_me=claim is not None and claim.user_id == caller_id,
            actions=evaluate_actions(shift, claim, caller_id, role),
            roster=roster,
        )

    def board(self, organization_id: str, caller_id: str) -> ShiftBoard:
        organization = self._organization(organization_id)
        role = self._member_role(organization_id, caller_id)

        shifts = self._db.shifts_for_organization(organization_id)
        my_shift_ids = {c.shift_id for c in self._db.claims_for_user(caller_id)}

        board = ShiftBoard(organization=organization, role=role)
        for shift in shifts:
            if shift.status == ShiftStatus.COMPLETED:
                board.needs_verification.append(shift)
            elif shift.status == ShiftStatus.VERIFIED:
                board.verified.append(shift)
            elif shift.id in my_shift_ids:
                board.mine.append(shift)
            elif shift.status == ShiftStatus.OPEN:
                board.open.append(shift)
            else:
                board.other.append(shift)
        return board

    def roster(self, organization_id: str, caller_id: str) -> list[RosterRow]:
        self._organization(organization_id)
        role = self._member_role(organization_id, caller_id)
        if not is_manager_role(role):
            raise AuthorizationError("Only admins and managers can view the roster")
        return self._db.get_daycare_roster(organization_id)

    # -- writes ------------------------------------------------------------

    def create_shift(
        self,
        organization_id: str,
        caller_id: str,
        *,
        shift_date: date | None,
        start_time: time | None,
        end_time: time | None,
        title: str | None = None,
        notes: str | None = None,
    ) -> Shift:
        self._organization(organization_id)
        role = self._member_role(organization_id, caller_id)
        if not is_manager_role(role):
            raise AuthorizationError("Only admins and managers can create shifts")

        if shift_date is None or start_time is None or end_time is None:
            raise ValidationError("Please enter date, start time, and end time.")
        if end_time <= start_time:
            raise ValidationError(
                "End time must be after start time. Overnight shifts are not supported."
            )

        shift = Shift(
            organization_id=organization_id,
            shift_date=shift_date,
            start_time=start_time,
            end_time=end_time,
            title=_blank_to_none(title),
            notes=_blank_to_none(notes),
            status=ShiftStatus.OPEN,
            created_by=caller_id,
            created_at=self._now(),
        )
        self._db.insert_shift(shift)
        logger.info(
            f"shift {shift.id} created in organization {organization_id} by {caller_id}"
        )
        return shift

    def claim(self, shift_id: str, caller_id: str) -> ShiftView:
        view = self.load(shift_id, caller_id)
        self._guard("claim", shift_id, caller_id, claim_refusal(view.shift, view.claim))

        claim = ShiftClaim(
            shift_id=shift_id, user_id=caller_id, claimed_at=self._now()
        )
        if not self._db.insert_claim_if_open(claim):
            logger.warning(f"claim on shift {shift_id} by {caller_id} lost a race")
            raise ConflictError("Shift has already been claimed")

        logger.info(f"shift {shift_id} claimed by {caller_id}")
        return self.load(shift_id, caller_id)

    def start(self, shift_id: str, caller_id: str) -> ShiftView:
        view = self.load(shift_id, caller_id)
        self._guard(
            "start",
            shift_id,
            caller_id,
            start_refusal(view.shift, view.claim, caller_id),
        )

        if not self._db.check_in_if_not_started(
            shift_id, view.claim.id, caller_id, self._now()
        ):
            raise ConflictError("Shift has already been started")

        logger.info(f"shift {shift_id} started by {caller_id}")
        return self.load(shift_id, caller_id)

    def end(self, shift_id: str, caller_id: str) -> ShiftView:
        view = self.load(shift_id, caller_id)
        self._guard(
            "end", shift_id, caller_id, end_refusal(view.shift, view.claim, caller_id)
        )

        if not self._db.check_out_if_started(
            shift_id, view.claim.id, caller_id, self._now()
        ):
            raise ConflictError("Shift has already ended")

        logger.info(f"shift {shift_id} ended by {caller_id}")
        return self.load(shift_id, caller_id)

    def verify(self, shift_id: str, caller_id: str) -> ShiftView:
        view = self.load(shift_id, caller_id)
        self._guard("verify", shift_id, caller_id, verify_refusal(view.shift, view.role))

        if not self._db.verify_if_completed(shift_id, caller_id, self._now()):
            raise ConflictError("Only completed shifts can be verified")

        logger.info(f"shift {shift_id} verified by {caller_id}")
        return self.load(shift_id, caller_id)

    def cancel(self, shift_id: str, caller_id: str) -> ShiftView:
        view = self.load(shift_id, caller_id)
        self._guard(
            "cancel",
            shift_id,
            caller_id,
            cancel_refusal(view.shift, view.claim, caller_id, view.role),
        )

        if not self._db.delete_claim_if_not_started(shift_id, view.claim.id):
            raise ConflictError("Claim changed before it could be cancelled")

        logger.info(
            f"claim {view.claim.id} by {view.claim.user_id} on shift {shift_id} "
            f"cancelled by {caller_id}"
        )
        return self.load(shift_id, caller_id)

    # -- helpers -----------------------------------------------------------

    def _organization(self, organization_id: str) -> Organization:
        organization = self._db.get_organization(organization_id)
        if organization is None:
            raise NotFoundError("Organization not found")
        return organization

    def _member_role(self, organization_id: str, caller_id: str) -> Role:
        role = organization_role(self._db, organization_id, caller_id)
        if role is None:
            raise AuthorizationError("You are not a member of this organization")
        return role

    @staticmethod
    def _guard(
        action: str,
        shift_id: str,
        caller_id: str,
        refusal: ShiftCoverError | None,
    ) -> None:
        if refusal is not None:
            logger.warning(
                f"{action} on shift {shift_id} by {caller_id} refused: {refusal.message}"
            )
            raise refusal


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None
