import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from freezegun import freeze_time
from httpx import AsyncClient

from shiftcover.database import DaycareDatabase
from shiftcover.models import Shift, ShiftClaim
from tests.conftest import auth


def _p(msg: str) -> None:
    # pytest captures stdout unless you run with -s
    print(msg, flush=True)


def _banner(name: str) -> None:
    _p("\n" + "=" * 88)
    _p(f"test: {name}")
    _p("=" * 88)


def _dump_db(app) -> None:
    db: DaycareDatabase = app.state.database
    _p("db shifts:")
    for s in sorted(
        (s for s in db.all() if isinstance(s, Shift)), key=lambda x: x.id
    ):
        _p(f"  - {s.id} | {s.shift_date} {s.start_time}-{s.end_time} | status={s.status}")
    _p("db claims:")
    for c in (c for c in db.all() if isinstance(c, ShiftClaim)):
        _p(
            f"  - shift={c.shift_id} user={c.user_id} "
            f"in={c.check_in_at} out={c.check_out_at}"
        )


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    _banner("health_check returns ok")
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_routing_errors_use_error_body(client: AsyncClient) -> None:
    _banner("unknown routes and wrong methods answer with an error body")
    resp = await client.get("/nope")
    _p(f"unknown route -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found"}

    resp = await client.delete("/health")
    _p(f"wrong method -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 405
    assert resp.json() == {"error": "Method Not Allowed"}
    assert "GET" in resp.headers["allow"]


@pytest.mark.asyncio
async def test_shift_requires_bearer_token(client: AsyncClient, seed) -> None:
    _banner("shift routes reject missing and invalid tokens")
    resp = await client.get(f"/shifts/{seed.shift.id}")
    _p(f"no token -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Missing auth token"}

    resp = await client.get(f"/shifts/{seed.shift.id}", headers=auth("bogus"))
    _p(f"bad token -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid session"}


@pytest.mark.asyncio
async def test_shift_not_found(client: AsyncClient, seed) -> None:
    _banner("unknown shift is 404")
    resp = await client.get("/shifts/nope", headers=auth(seed.alice_token))
    assert resp.status_code == 404
    assert "not found" in resp.json()["error"].lower()


@pytest.mark.asyncio
async def test_non_member_is_forbidden(client: AsyncClient, seed) -> None:
    _banner("user without membership cannot see or claim the shift")
    resp = await client.get(
        f"/shifts/{seed.shift.id}", headers=auth(seed.outsider_token)
    )
    assert resp.status_code == 403

    resp = await client.post(
        f"/shifts/{seed.shift.id}/claim", headers=auth(seed.outsider_token)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_shift_view_lists_legal_actions(client: AsyncClient, seed) -> None:
    _banner("open shift: substitute may claim, manager sees roster")
    resp = await client.get(f"/shifts/{seed.shift.id}", headers=auth(seed.alice_token))
    data = resp.json()
    _p(f"alice view -> {data}")
    assert resp.status_code == 200
    assert data["shift"]["status"] == "open"
    assert data["role"] == "substitute"
    assert data["claim"] is None
    assert data["actions"]["can_claim"] is True
    assert data["roster"] is None

    resp = await client.get(
        f"/shifts/{seed.shift.id}", headers=auth(seed.manager_token)
    )
    data = resp.json()
    assert data["role"] == "manager"
    assert data["roster"]["claimant_user_id"] is None


@pytest.mark.asyncio
async def test_full_lifecycle_claim_start_end_verify(
    client: AsyncClient, app, seed
) -> None:
    _banner("scenario: claim -> start -> end -> verify")
    shift_id = seed.shift.id

    with freeze_time("2025-07-02 07:55:00", real_asyncio=True) as frozen:
        resp = await client.post(
            f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token)
        )
        _p(f"claim -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["shift"]["status"] == "claimed"
        assert data["claim"]["user_id"] == seed.alice.id
        assert data["claimed_by_me"] is True
        assert data["actions"]["can_start"] is True
        assert data["actions"]["cancel_label"] == "Cancel Claim"

        frozen.tick(delta=timedelta(minutes=5))
        resp = await client.post(
            f"/shifts/{shift_id}/start", headers=auth(seed.alice_token)
        )
        _p(f"start -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 200
        data = resp.json()
        assert datetime.fromisoformat(data["claim"]["check_in_at"]) == datetime(
            2025, 7, 2, 8, 0, tzinfo=UTC
        )
        assert data["actions"]["can_end"] is True
        assert data["actions"]["can_cancel"] is False

        frozen.tick(delta=timedelta(hours=8))
        resp = await client.post(
            f"/shifts/{shift_id}/end", headers=auth(seed.alice_token)
        )
        _p(f"end -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["shift"]["status"] == "completed"
        assert data["claim"]["check_out_at"] is not None

        resp = await client.post(
            f"/shifts/{shift_id}/verify", headers=auth(seed.manager_token)
        )
        _p(f"verify -> {resp.status_code} {resp.json()}")
        _dump_db(app)
        assert resp.status_code == 200
        data = resp.json()
        assert data["shift"]["status"] == "verified"
        assert data["shift"]["verified_by"] == seed.manager.id
        assert datetime.fromisoformat(data["shift"]["verified_at"]) == datetime(
            2025, 7, 2, 16, 0, tzinfo=UTC
        )
        assert data["roster"]["claimant_email"] == "alice@subs.test"


@pytest.mark.asyncio
async def test_only_one_substitute_can_claim_even_if_two_claim(
    client: AsyncClient, app, seed
) -> None:
    _banner("race: two substitutes claim at the same time -> only one wins")
    shift_id = seed.shift.id

    r1, r2 = await asyncio.gather(
        client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token)),
        client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.bob_token)),
    )
    _p(f"alice response: {r1.status_code} {r1.json()}")
    _p(f"bob response:   {r2.status_code} {r2.json()}")
    _dump_db(app)

    statuses = sorted([r1.status_code, r2.status_code])
    assert statuses == [200, 409]
    loser = r1 if r1.status_code == 409 else r2
    assert loser.json() == {"error": "Shift has already been claimed"}

    db: DaycareDatabase = app.state.database
    claims = [c for c in db.all() if isinstance(c, ShiftClaim)]
    assert len(claims) == 1

    # the loser refreshes and sees the winner's claim
    winner_id = seed.alice.id if r1.status_code == 200 else seed.bob.id
    loser_token = seed.bob_token if winner_id == seed.alice.id else seed.alice_token
    resp = await client.get(f"/shifts/{shift_id}", headers=auth(loser_token))
    data = resp.json()
    assert data["shift"]["status"] == "claimed"
    assert data["claim"]["user_id"] == winner_id
    assert data["claimed_by_me"] is False
    assert data["actions"]["can_claim"] is False


@pytest.mark.asyncio
async def test_cancel_before_start_reopens_shift(client: AsyncClient, seed) -> None:
    _banner("scenario: claim then cancel before starting -> open again")
    shift_id = seed.shift.id
    await client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token))

    resp = await client.post(
        f"/shifts/{shift_id}/cancel", headers=auth(seed.alice_token)
    )
    _p(f"cancel -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["claim"] is None
    assert data["shift"]["status"] == "open"
    assert data["actions"]["can_claim"] is True


@pytest.mark.asyncio
async def test_manager_unclaims_substitute(client: AsyncClient, seed) -> None:
    _banner("manager unclaims a substitute who has not started")
    shift_id = seed.shift.id
    await client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.bob_token))

    view = await client.get(f"/shifts/{shift_id}", headers=auth(seed.manager_token))
    assert view.json()["actions"]["cancel_label"] == "Unclaim Substitute"

    resp = await client.post(
        f"/shifts/{shift_id}/cancel", headers=auth(seed.manager_token)
    )
    assert resp.status_code == 200
    assert resp.json()["shift"]["status"] == "open"


@pytest.mark.asyncio
async def test_cancel_after_check_in_is_rejected(client: AsyncClient, seed) -> None:
    _banner("cancel after check-in is rejected for claimant and manager")
    shift_id = seed.shift.id
    await client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token))
    await client.post(f"/shifts/{shift_id}/start", headers=auth(seed.alice_token))

    for token in (seed.alice_token, seed.manager_token, seed.admin_token):
        resp = await client.post(f"/shifts/{shift_id}/cancel", headers=auth(token))
        _p(f"cancel -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 409
        assert resp.json() == {"error": "Cannot cancel a claim after check-in"}

    resp = await client.get(f"/shifts/{shift_id}", headers=auth(seed.alice_token))
    assert resp.json()["claim"]["check_in_at"] is not None


@pytest.mark.asyncio
async def test_second_start_is_rejected(client: AsyncClient, seed) -> None:
    _banner("start twice -> second call is rejected and does not overwrite")
    shift_id = seed.shift.id
    await client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token))
    first = await client.post(
        f"/shifts/{shift_id}/start", headers=auth(seed.alice_token)
    )
    check_in_at = first.json()["claim"]["check_in_at"]

    second = await client.post(
        f"/shifts/{shift_id}/start", headers=auth(seed.alice_token)
    )
    assert second.status_code == 409

    resp = await client.get(f"/shifts/{shift_id}", headers=auth(seed.alice_token))
    assert resp.json()["claim"]["check_in_at"] == check_in_at


@pytest.mark.asyncio
async def test_end_before_start_is_rejected(client: AsyncClient, seed) -> None:
    _banner("end before start is rejected")
    shift_id = seed.shift.id
    await client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token))

    resp = await client.post(f"/shifts/{shift_id}/end", headers=auth(seed.alice_token))
    assert resp.status_code == 409
    assert resp.json() == {"error": "Shift has not been started"}


@pytest.mark.asyncio
async def test_verify_rejected_unless_completed(client: AsyncClient, seed) -> None:
    _banner("verify is rejected on open shift and for substitutes")
    shift_id = seed.shift.id
    resp = await client.post(
        f"/shifts/{shift_id}/verify", headers=auth(seed.manager_token)
    )
    assert resp.status_code == 409

    resp = await client.post(
        f"/shifts/{shift_id}/verify", headers=auth(seed.alice_token)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_only_claimant_can_start(client: AsyncClient, seed) -> None:
    _banner("another substitute cannot start someone else's claim")
    shift_id = seed.shift.id
    await client.post(f"/shifts/{shift_id}/claim", headers=auth(seed.alice_token))

    resp = await client.post(f"/shifts/{shift_id}/start", headers=auth(seed.bob_token))
    assert resp.status_code == 403
    assert resp.json() == {"error": "Only the claimant can start this shift"}


@pytest.mark.asyncio
async def test_manager_creates_shift(client: AsyncClient, seed) -> None:
    _banner("manager creates a shift; substitute cannot")
    body = {
        "shift_date": "2025-07-10",
        "start_time": "09:00",
        "end_time": "13:30",
        "title": " Infants ",
        "notes": "",
    }
    resp = await client.post(
        f"/organizations/{seed.org.id}/shifts",
        json=body,
        headers=auth(seed.manager_token),
    )
    _p(f"create -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 201
    shift = resp.json()["shift"]
    assert shift["status"] == "open"
    assert shift["title"] == "Infants"
    assert shift["notes"] is None
    assert shift["start_time"] == "09:00:00"

    resp = await client.post(
        f"/organizations/{seed.org.id}/shifts",
        json=body,
        headers=auth(seed.alice_token),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_shift_validation(client: AsyncClient, seed) -> None:
    _banner("create shift: missing fields and malformed times are 400")
    resp = await client.post(
        f"/organizations/{seed.org.id}/shifts",
        json={"shift_date": "2025-07-10"},
        headers=auth(seed.admin_token),
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Please enter date, start time, and end time."}

    resp = await client.post(
        f"/organizations/{seed.org.id}/shifts",
        json={"shift_date": "2025-07-10", "start_time": "nine", "end_time": "10:00"},
        headers=auth(seed.admin_token),
    )
    _p(f"malformed -> {resp.status_code} {resp.json()}")
    assert resp.status_code == 400
    assert "start_time" in resp.json()["error"]


@pytest.mark.asyncio
async def test_shift_board_sections(client: AsyncClient, seed) -> None:
    _banner("board groups the caller's claims apart from open shifts")
    await client.post(
        f"/shifts/{seed.shift.id}/claim", headers=auth(seed.alice_token)
    )

    resp = await client.get(
        f"/organizations/{seed.org.id}/shifts", headers=auth(seed.alice_token)
    )
    data = resp.json()
    _p(f"alice board -> {data}")
    assert resp.status_code == 200
    assert data["organization"]["name"] == "Sunny Days"
    assert [s["id"] for s in data["mine"]] == [seed.shift.id]
    assert data["open"] == []

    resp = await client.get(
        f"/organizations/{seed.org.id}/shifts", headers=auth(seed.bob_token)
    )
    data = resp.json()
    assert data["mine"] == []
    assert [s["id"] for s in data["other"]] == [seed.shift.id]


@pytest.mark.asyncio
async def test_daycare_roster_for_managers_only(client: AsyncClient, seed) -> None:
    _banner("daycare roster joins claimant email; substitutes are refused")
    await client.post(
        f"/shifts/{seed.shift.id}/claim", headers=auth(seed.alice_token)
    )

    resp = await client.get(
        f"/organizations/{seed.org.id}/roster", headers=auth(seed.admin_token)
    )
    assert resp.status_code == 200
    roster = resp.json()["roster"]
    assert len(roster) == 1
    assert roster[0]["claimant_email"] == "alice@subs.test"
    assert roster[0]["status"] == "claimed"

    resp = await client.get(
        f"/organizations/{seed.org.id}/roster", headers=auth(seed.alice_token)
    )
    assert resp.status_code == 403
