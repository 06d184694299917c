import logging
from datetime import UTC, date, datetime, time

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from shiftcover.accounts import AccountService
from shiftcover.auth import get_access_token, get_current_user
from shiftcover.config import (
    LOG_LEVEL,
    PLATFORM_ADMIN_EMAIL,
    PLATFORM_ADMIN_PASSWORD,
    SITE_URL,
)
from shiftcover.database import DaycareDatabase
from shiftcover.errors import ShiftCoverError
from shiftcover.identity import AuthUser, IdentityProvider
from shiftcover.lifecycle import ShiftLifecycle
from shiftcover.platform import PlatformService

logger = logging.getLogger(__name__)

router = APIRouter()


class SignInRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class EmailRequest(BaseModel):
    email: str | None = None


class CodeRequest(BaseModel):
    code: str | None = None


class PasswordRequest(BaseModel):
    password: str | None = None
    confirm: str | None = None


class CreateShiftRequest(BaseModel):
    shift_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    title: str | None = None
    notes: str | None = None


class CreateOrganizationRequest(BaseModel):
    name: str | None = None


class InviteRequest(BaseModel):
    email: str | None = None
    organization_id: str | None = None
    role: str | None = None


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


# -- auth --------------------------------------------------------------------


@router.post("/auth/sign-in")
async def sign_in(body: SignInRequest, request: Request) -> dict:
    accounts: AccountService = request.app.state.accounts
    result = accounts.sign_in(body.email, body.password)
    return result.model_dump(mode="json")


@router.post("/auth/magic-link")
async def magic_link(body: EmailRequest, request: Request) -> dict:
    accounts: AccountService = request.app.state.accounts
    await accounts.send_magic_link(body.email)
    return {"ok": True}


@router.post("/auth/callback")
async def auth_callback(body: CodeRequest, request: Request) -> dict:
    accounts: AccountService = request.app.state.accounts
    result = accounts.exchange_code(body.code)
    return result.model_dump(mode="json")


@router.post("/auth/sign-out")
async def sign_out(request: Request, token: str = Depends(get_access_token)) -> dict:
    accounts: AccountService = request.app.state.accounts
    accounts.sign_out(token)
    return {"ok": True}


@router.post("/auth/password-reset")
async def password_reset(body: EmailRequest, request: Request) -> dict:
    accounts: AccountService = request.app.state.accounts
    await accounts.request_password_reset(body.email)
    return {"ok": True}


@router.post("/auth/set-password")
async def set_password(
    body: PasswordRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    accounts: AccountService = request.app.state.accounts
    accounts.set_initial_password(user, body.password, body.confirm)
    return {"ok": True, "next": "/dashboard"}


@router.post("/auth/update-password")
async def update_password(
    body: PasswordRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    accounts: AccountService = request.app.state.accounts
    accounts.update_password(user, body.password, body.confirm)
    return {"ok": True, "next": "/login"}


@router.get("/me")
async def me(request: Request, user: AuthUser = Depends(get_current_user)) -> dict:
    accounts: AccountService = request.app.state.accounts
    return accounts.dashboard(user).model_dump(mode="json")


# -- organizations and shifts ------------------------------------------------


@router.get("/organizations/{organization_id}/shifts")
async def shift_board(
    organization_id: str,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.board(organization_id, user.id).model_dump(mode="json")


@router.post("/organizations/{organization_id}/shifts", status_code=201)
async def create_shift(
    organization_id: str,
    body: CreateShiftRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    shift = lifecycle.create_shift(
        organization_id,
        user.id,
        shift_date=body.shift_date,
        start_time=body.start_time,
        end_time=body.end_time,
        title=body.title,
        notes=body.notes,
    )
    return {"ok": True, "shift": shift.model_dump(mode="json")}


@router.get("/organizations/{organization_id}/roster")
async def organization_roster(
    organization_id: str,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    rows = lifecycle.roster(organization_id, user.id)
    return {"roster": [r.model_dump(mode="json") for r in rows]}


@router.get("/shifts/{shift_id}")
async def get_shift(
    shift_id: str, request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.load(shift_id, user.id).model_dump(mode="json")


@router.post("/shifts/{shift_id}/claim")
async def claim_shift(
    shift_id: str, request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.claim(shift_id, user.id).model_dump(mode="json")


@router.post("/shifts/{shift_id}/start")
async def start_shift(
    shift_id: str, request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.start(shift_id, user.id).model_dump(mode="json")


@router.post("/shifts/{shift_id}/end")
async def end_shift(
    shift_id: str, request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.end(shift_id, user.id).model_dump(mode="json")


@router.post("/shifts/{shift_id}/verify")
async def verify_shift(
    shift_id: str, request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.verify(shift_id, user.id).model_dump(mode="json")


@router.post("/shifts/{shift_id}/cancel")
async def cancel_claim(
    shift_id: str, request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    # cancel by the claimant, unclaim by an admin or manager
    lifecycle: ShiftLifecycle = request.app.state.lifecycle
    return lifecycle.cancel(shift_id, user.id).model_dump(mode="json")


# -- platform admin ----------------------------------------------------------


@router.get("/platform/organizations")
async def list_organizations(
    request: Request, user: AuthUser = Depends(get_current_user)
) -> dict:
    platform: PlatformService = request.app.state.platform
    organizations = platform.list_organizations(user.id)
    return {
        "organizations": [{"id": o.id, "name": o.name} for o in organizations]
    }


@router.post("/platform/create-organization")
async def create_organization(
    body: CreateOrganizationRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    platform: PlatformService = request.app.state.platform
    organization = platform.create_organization(user.id, body.name)
    return {
        "ok": True,
        "organization": {"id": organization.id, "name": organization.name},
    }


@router.post("/platform/invite")
async def invite(
    body: InviteRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> dict:
    platform: PlatformService = request.app.state.platform
    origin = request.headers.get("origin") or SITE_URL
    invited = await platform.invite_user(
        user.id,
        email=body.email,
        organization_id=body.organization_id,
        role=body.role,
        redirect_to=f"{origin.rstrip('/')}/auth/callback",
    )
    return {"ok": True, "invited_user_id": invited.id}


# -- app ---------------------------------------------------------------------


async def handle_shiftcover_error(
    request: Request, exc: ShiftCoverError
) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_http_error(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # unknown routes and wrong methods
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid {field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Server error"})


def create_app() -> FastAPI:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(title="Daycare Scheduling")
    db = DaycareDatabase()
    app.state.database = db

    app.state.now_fn = lambda: datetime.now(UTC)

    # read through app.state so tests can swap the clock after startup
    def now() -> datetime:
        return app.state.now_fn()

    identity = IdentityProvider(db, now_fn=now)
    app.state.identity = identity
    app.state.accounts = AccountService(db, identity)
    app.state.lifecycle = ShiftLifecycle(db, now_fn=now)
    app.state.platform = PlatformService(db, identity, now_fn=now)

    if PLATFORM_ADMIN_EMAIL and PLATFORM_ADMIN_PASSWORD:
        app.state.platform.bootstrap_platform_admin(
            PLATFORM_ADMIN_EMAIL, PLATFORM_ADMIN_PASSWORD
        )

    app.add_exception_handler(ShiftCoverError, handle_shiftcover_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(router)
    return app
