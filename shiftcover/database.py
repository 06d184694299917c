import threading
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel

from shiftcover.models import (
    FINISHED_STATUSES,
    Membership,
    Organization,
    PlatformAdmin,
    Profile,
    RosterRow,
    Shift,
    ShiftClaim,
    ShiftStatus,
)

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Compound operations in subclasses hold `_lock` so each check-and-set is
    atomic even when requests are served from several threads.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator["InMemoryKeyValueDatabase[K, V]"]:
        """
        Hold the store lock across several reads and writes.
        """
        with self._lock:
            yield self

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def delete(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)

    def all(self) -> list[V]:
        with self._lock:
            return list(self._store.values())

    def scan(self, prefix: str) -> list[V]:
        with self._lock:
            return [
                v for k, v in self._store.items() if str(k).startswith(prefix)
            ]


class DaycareDatabase(InMemoryKeyValueDatabase[str, BaseModel]):
    """
    Tables for the scheduling domain, keyed `<table>:<id>`.

    Stored records are replaced, never mutated, so a record handed out
    earlier keeps showing the state it was read at. Every status change of a
    shift happens in the same critical section as the claim write that
    causes it.
    """

    # -- organizations ---------------------------------------------------

    def insert_organization(self, organization: Organization) -> Organization:
        self.put(f"organization:{organization.id}", organization)
        return organization

    def get_organization(self, organization_id: str) -> Organization | None:
        value = self.get(f"organization:{organization_id}")
        return value if isinstance(value, Organization) else None

    def delete_organization(self, organization_id: str) -> None:
        self.delete(f"organization:{organization_id}")

    def list_organizations(self) -> list[Organization]:
        orgs = [o for o in self.scan("organization:") if isinstance(o, Organization)]
        return sorted(orgs, key=lambda o: o.created_at)

    # -- memberships -----------------------------------------------------

    def upsert_membership(self, membership: Membership) -> Membership:
        key = f"membership:{membership.organization_id}:{membership.user_id}"
        with self._lock:
            existing = self.get(key)
            if isinstance(existing, Membership):
                # keep the original creation time, it orders role resolution
                membership = membership.model_copy(
                    update={"created_at": existing.created_at}
                )
            self.put(key, membership)
        return membership

    def get_membership(
        self, organization_id: str, user_id: str
    ) -> Membership | None:
        value = self.get(f"membership:{organization_id}:{user_id}")
        return value if isinstance(value, Membership) else None

    def memberships_for_user(self, user_id: str) -> list[Membership]:
        rows = [
            m
            for m in self.scan("membership:")
            if isinstance(m, Membership) and m.user_id == user_id
        ]
        return sorted(rows, key=lambda m: m.created_at)

    # -- profiles / platform admins --------------------------------------

    def get_profile(self, user_id: str) -> Profile | None:
        value = self.get(f"profile:{user_id}")
        return value if isinstance(value, Profile) else None

    def ensure_profile(self, user_id: str) -> Profile:
        """
        Insert a profile with password_set=False unless one already exists.
        """
        with self._lock:
            profile = self.get_profile(user_id)
            if profile is None:
                profile = Profile(user_id=user_id)
                self.put(f"profile:{user_id}", profile)
            return profile

    def mark_password_set(self, user_id: str) -> Profile:
        with self._lock:
            profile = Profile(user_id=user_id, password_set=True)
            self.put(f"profile:{user_id}", profile)
            return profile

    def add_platform_admin(self, user_id: str, created_at: datetime) -> None:
        self.put(
            f"platform_admin:{user_id}",
            PlatformAdmin(user_id=user_id, created_at=created_at),
        )

    def is_platform_admin(self, user_id: str) -> bool:
        return isinstance(self.get(f"platform_admin:{user_id}"), PlatformAdmin)

    # -- shifts and claims -----------------------------------------------

    def insert_shift(self, shift: Shift) -> Shift:
        self.put(f"shift:{shift.id}", shift)
        return shift

    def get_shift(self, shift_id: str) -> Shift | None:
        value = self.get(f"shift:{shift_id}")
        return value if isinstance(value, Shift) else None

    def shifts_for_organization(self, organization_id: str) -> list[Shift]:
        shifts = [
            s
            for s in self.scan("shift:")
            if isinstance(s, Shift) and s.organization_id == organization_id
        ]
        return sorted(shifts, key=lambda s: (s.shift_date, s.start_time))

    def get_claim(self, shift_id: str) -> ShiftClaim | None:
        # claims are keyed by shift, so a shift has at most one
        value = self.get(f"claim:{shift_id}")
        return value if isinstance(value, ShiftClaim) else None

    def claims_for_user(self, user_id: str) -> list[ShiftClaim]:
        return [
            c
            for c in self.scan("claim:")
            if isinstance(c, ShiftClaim) and c.user_id == user_id
        ]

    def insert_claim_if_open(self, claim: ShiftClaim) -> bool:
        """
        Atomically insert a claim if the shift is open and unclaimed, moving
        the shift to `claimed`. Returns False if the shift is gone, not open,
        or already has a claim.
        """
        with self._lock:
            shift = self.get_shift(claim.shift_id)
            if shift is None or shift.status != ShiftStatus.OPEN:
                return False
            if self.get_claim(claim.shift_id) is not None:
                return False
            self.put(f"claim:{claim.shift_id}", claim)
            self._set_status(shift, ShiftStatus.CLAIMED)
            return True

    def check_in_if_not_started(
        self, shift_id: str, claim_id: str, user_id: str, at: datetime
    ) -> bool:
        with self._lock:
            shift, claim = self._active_claim(shift_id, claim_id)
            if claim is None or claim.user_id != user_id:
                return False
            if claim.check_in_at is not None or claim.check_out_at is not None:
                return False
            self.put(
                f"claim:{shift_id}", claim.model_copy(update={"check_in_at": at})
            )
            return True

    def check_out_if_started(
        self, shift_id: str, claim_id: str, user_id: str, at: datetime
    ) -> bool:
        """
        Set check_out_at once check_in_at is set, moving the shift to
        `completed`.
        """
        with self._lock:
            shift, claim = self._active_claim(shift_id, claim_id)
            if claim is None or claim.user_id != user_id:
                return False
            if claim.check_in_at is None or claim.check_out_at is not None:
                return False
            self.put(
                f"claim:{shift_id}", claim.model_copy(update={"check_out_at": at})
            )
            self._set_status(shift, ShiftStatus.COMPLETED)
            return True

    def delete_claim_if_not_started(self, shift_id: str, claim_id: str) -> bool:
        """
        Remove a claim that has not been checked in, reopening the shift.
        """
        with self._lock:
            shift, claim = self._active_claim(shift_id, claim_id)
            if claim is None or claim.check_in_at is not None:
                return False
            self.delete(f"claim:{shift_id}")
            self._set_status(shift, ShiftStatus.OPEN)
            return True

    def verify_if_completed(
        self, shift_id: str, verified_by: str, at: datetime
    ) -> bool:
        with self._lock:
            shift = self.get_shift(shift_id)
            if shift is None or shift.status != ShiftStatus.COMPLETED:
                return False
            self.put(
                f"shift:{shift_id}",
                shift.model_copy(
                    update={
                        "status": ShiftStatus.VERIFIED,
                        "verified_at": at,
                        "verified_by": verified_by,
                    }
                ),
            )
            return True

    def _active_claim(
        self, shift_id: str, claim_id: str
    ) -> tuple[Shift | None, ShiftClaim | None]:
        # the claim the caller acted on, if it still exists and its shift
        # is not finished
        shift = self.get_shift(shift_id)
        claim = self.get_claim(shift_id)
        if shift is None or shift.status in FINISHED_STATUSES:
            return shift, None
        if claim is None or claim.id != claim_id:
            return shift, None
        return shift, claim

    def _set_status(self, shift: Shift, status: ShiftStatus) -> None:
        self.put(f"shift:{shift.id}", shift.model_copy(update={"status": status}))

    # -- roster procedures -----------------------------------------------

    def get_daycare_roster(self, organization_id: str) -> list[RosterRow]:
        with self._lock:
            return [
                self._roster_row(s)
                for s in self.shifts_for_organization(organization_id)
            ]

    def get_shift_roster(self, shift_id: str) -> list[RosterRow]:
        with self._lock:
            shift = self.get_shift(shift_id)
            return [] if shift is None else [self._roster_row(shift)]

    def _roster_row(self, shift: Shift) -> RosterRow:
        claim = self.get_claim(shift.id)
        row = RosterRow(
            shift_id=shift.id,
            organization_id=shift.organization_id,
            shift_date=shift.shift_date,
            start_time=shift.start_time,
            end_time=shift.end_time,
            status=shift.status,
        )
        if claim is None:
            return row

        user = self.get(f"auth_user:{claim.user_id}")
        return row.model_copy(
            update={
                "claimant_user_id": claim.user_id,
                "claimant_email": getattr(user, "email", None),
                "claimed_at": claim.claimed_at,
                "check_in_at": claim.check_in_at,
                "check_out_at": claim.check_out_at,
            }
        )
