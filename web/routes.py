"""
web/routes.py -- Jinja2 template routes for the CarLot web UI.

Every handler follows the same order:
  1. authorize  -- the require(Action) dependency runs before the body, so a
                   denied request gets 403 without its input being read
  2. not found  -- path ids that are not integers, or that name no record,
                   raise NotFoundError
  3. validate   -- form data goes through web.forms.parse_form(); field
                   errors re-render the form with 400 and nothing is written
  4. store call -- through core.timeouts.call_with_timeout
  5. respond    -- 303 redirect after a successful POST, rendered page otherwise

Errors the handler cannot recover from are raised as core.errors types and
turned into pages by the exception handlers in api/main.py.

Route registration order matters. /search and /register must not be shadowed
by a parameterized path, so parameterized routes sit under distinct prefixes.

Routes:
  GET  /                      -- vehicle listing
  GET  /add                   -- add form (admin)
  POST /add                   -- create vehicle, redirect /
  GET  /cardetails/{id}       -- vehicle detail
  GET  /update/{id}           -- update form (admin, salesperson)
  POST /update/{id}           -- update vehicle, redirect to detail
  POST /deleteCar/{id}        -- delete vehicle (admin), redirect /
  POST /markPendingSale/{id}  -- status -> pending sale, redirect to detail
  GET  /search                -- empty search form
  POST /search                -- filtered results
  GET  /register              -- registration form
  POST /register              -- create account, send confirmation, 200 text
  GET  /login                 -- login form
  POST /login                 -- authenticate, set session cookie, redirect /
  GET  /logout                -- destroy session, clear cookie, redirect /login
"""

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from auth.credentials import authenticate_user, hash_password
from auth.dependencies import require
from auth.models import Identity, User
from auth.policy import Action, allowed
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings
from core.errors import AuthorizationError, ConflictError, CredentialError, NotFoundError, ValidationError
from core.limiter import limiter
from core.timeouts import call_with_timeout
from inventory.models import Vehicle, VehicleSearch, VehicleStatus
from inventory.store import VehicleStore
from web.forms import (
    REGISTRATION_FIELDS,
    SEARCH_FIELDS,
    VEHICLE_FIELDS,
    RegistrationForm,
    SearchForm,
    VehicleForm,
    VehiclePatch,
    form_to_dict,
    parse_form,
)

logger = logging.getLogger("carlot.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Templates call allowed(identity, Action.X) to decide which controls to
# show. The routes still enforce the same rule on every request.
templates.env.globals["allowed"] = allowed
templates.env.globals["Action"] = Action
templates.env.globals["VehicleStatus"] = VehicleStatus
router = APIRouter()

REGISTRATION_OK = "Registration successful. A confirmation email has been sent."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _render(request: Request, name: str, context: Optional[dict] = None, status_code: int = 200) -> HTMLResponse:
    """Render a template with the current identity in the context.

    The identity was cached on request.state by the route's auth dependency.
    """
    ctx: dict[str, Any] = {"identity": getattr(request.state, "identity", None)}
    ctx.update(context or {})
    return templates.TemplateResponse(request, name, ctx, status_code=status_code)


def render_error(request: Request, status_code: int, message: str) -> HTMLResponse:
    """Error page used by the exception handlers in api/main.py (wired in asgi.py)."""
    return _render(request, "error.html", {"status_code": status_code, "message": message}, status_code)


def _vehicle_id(raw: str) -> int:
    """Parse a path id. Anything that cannot name a vehicle is a 404."""
    try:
        vehicle_id = int(raw)
    except ValueError:
        raise NotFoundError("Vehicle not found.") from None
    if vehicle_id < 1:
        raise NotFoundError("Vehicle not found.")
    return vehicle_id


async def _load_vehicle(request: Request, vehicle_id: int) -> Vehicle:
    store: VehicleStore = request.app.state.vehicle_store
    vehicle = await call_with_timeout(store.get_vehicle, vehicle_id)
    if vehicle is None:
        raise NotFoundError("Vehicle not found.")
    return vehicle


def _vehicle_form_data(vehicle: Vehicle) -> dict[str, Any]:
    data = asdict(vehicle)
    data["images"] = "\n".join(vehicle.images)
    data["status"] = vehicle.status.value
    return data


# ---------------------------------------------------------------------------
# GET / -- listing
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
async def index(request: Request, identity: Optional[Identity] = Depends(require(Action.VIEW_LISTING))) -> HTMLResponse:
    store: VehicleStore = request.app.state.vehicle_store
    vehicles = await call_with_timeout(store.list_vehicles)
    return _render(request, "index.html", {"vehicles": vehicles})


# ---------------------------------------------------------------------------
# Add vehicle (admin)
# ---------------------------------------------------------------------------


@router.get("/add", response_class=HTMLResponse)
async def add_form(request: Request, identity: Identity = Depends(require(Action.ADD_VEHICLE))) -> HTMLResponse:
    return _render(request, "add.html", {"form_data": {}, "errors": {}})


@router.post("/add", response_class=HTMLResponse)
async def add_post(request: Request, identity: Identity = Depends(require(Action.ADD_VEHICLE))) -> Response:
    data = form_to_dict(await request.form(), VEHICLE_FIELDS)
    try:
        form = parse_form(VehicleForm, data)
    except ValidationError as exc:
        return _render(request, "add.html", {"form_data": data, "errors": exc.field_errors}, 400)

    store: VehicleStore = request.app.state.vehicle_store
    vehicle_id = await call_with_timeout(store.create_vehicle, Vehicle(**form.model_dump()))
    logger.info("Vehicle %d added by user %d", vehicle_id, identity.user_id)
    return RedirectResponse("/", status_code=303)


# ---------------------------------------------------------------------------
# GET /cardetails/{id}
# ---------------------------------------------------------------------------


@router.get("/cardetails/{vehicle_id}", response_class=HTMLResponse)
async def car_details(
    request: Request,
    vehicle_id: str,
    identity: Optional[Identity] = Depends(require(Action.VIEW_DETAIL)),
) -> HTMLResponse:
    vehicle = await _load_vehicle(request, _vehicle_id(vehicle_id))
    return _render(request, "car_details.html", {"vehicle": vehicle})


# ---------------------------------------------------------------------------
# Update vehicle (admin, salesperson)
# ---------------------------------------------------------------------------


@router.get("/update/{vehicle_id}", response_class=HTMLResponse)
async def update_form(
    request: Request,
    vehicle_id: str,
    identity: Identity = Depends(require(Action.UPDATE_VEHICLE)),
) -> HTMLResponse:
    vehicle = await _load_vehicle(request, _vehicle_id(vehicle_id))
    return _render(
        request,
        "update_car.html",
        {"vehicle": vehicle, "form_data": _vehicle_form_data(vehicle), "errors": {}},
    )


@router.post("/update/{vehicle_id}", response_class=HTMLResponse)
async def update_post(
    request: Request,
    vehicle_id: str,
    identity: Identity = Depends(require(Action.UPDATE_VEHICLE)),
) -> Response:
    """Apply whichever vehicle fields were submitted. Omitted fields are untouched."""
    vehicle = await _load_vehicle(request, _vehicle_id(vehicle_id))
    data = form_to_dict(await request.form(), VEHICLE_FIELDS)
    try:
        patch = parse_form(VehiclePatch, data)
    except ValidationError as exc:
        form_data = {**_vehicle_form_data(vehicle), **data}
        return _render(
            request,
            "update_car.html",
            {"vehicle": vehicle, "form_data": form_data, "errors": exc.field_errors},
            400,
        )

    changes = patch.model_dump(exclude_unset=True)
    store: VehicleStore = request.app.state.vehicle_store
    # The row may have been deleted between the load above and this write.
    if not await call_with_timeout(store.update_vehicle, vehicle.id, **changes):
        raise NotFoundError("Vehicle not found.")
    logger.info("Vehicle %d updated by user %d (%s)", vehicle.id, identity.user_id, ", ".join(sorted(changes)) or "no fields")
    return RedirectResponse(f"/cardetails/{vehicle.id}", status_code=303)


# ---------------------------------------------------------------------------
# POST /deleteCar/{id} (admin)
# ---------------------------------------------------------------------------


@router.post("/deleteCar/{vehicle_id}")
async def delete_car(
    request: Request,
    vehicle_id: str,
    identity: Identity = Depends(require(Action.DELETE_VEHICLE)),
) -> RedirectResponse:
    """Delete a vehicle. Deleting one that is already gone still redirects to /."""
    try:
        target = _vehicle_id(vehicle_id)
    except NotFoundError:
        return RedirectResponse("/", status_code=303)
    store: VehicleStore = request.app.state.vehicle_store
    if await call_with_timeout(store.delete_vehicle, target):
        logger.info("Vehicle %d deleted by user %d", target, identity.user_id)
    else:
        logger.info("Vehicle %d already absent, delete by user %d was a no-op", target, identity.user_id)
    return RedirectResponse("/", status_code=303)


# ---------------------------------------------------------------------------
# POST /markPendingSale/{id} (admin, salesperson)
# ---------------------------------------------------------------------------


@router.post("/markPendingSale/{vehicle_id}")
async def mark_pending_sale(
    request: Request,
    vehicle_id: str,
    identity: Identity = Depends(require(Action.MARK_PENDING_SALE)),
) -> RedirectResponse:
    target = _vehicle_id(vehicle_id)
    store: VehicleStore = request.app.state.vehicle_store
    if not await call_with_timeout(store.set_status, target, VehicleStatus.PENDING_SALE):
        raise NotFoundError("Vehicle not found.")
    logger.info("Vehicle %d marked pending sale by user %d", target, identity.user_id)
    return RedirectResponse(f"/cardetails/{target}", status_code=303)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get("/search", response_class=HTMLResponse)
async def search_form(request: Request, identity: Optional[Identity] = Depends(require(Action.SEARCH))) -> HTMLResponse:
    return _render(request, "search.html", {"form_data": {}, "errors": {}, "results": None})


@router.post("/search", response_class=HTMLResponse)
async def search_post(request: Request, identity: Optional[Identity] = Depends(require(Action.SEARCH))) -> HTMLResponse:
    data = form_to_dict(await request.form(), SEARCH_FIELDS)
    try:
        form = parse_form(SearchForm, data)
    except ValidationError as exc:
        return _render(request, "search.html", {"form_data": data, "errors": exc.field_errors, "results": None}, 400)

    store: VehicleStore = request.app.state.vehicle_store
    results = await call_with_timeout(store.search, VehicleSearch(**form.model_dump()))
    return _render(request, "search.html", {"form_data": data, "errors": {}, "results": results})


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _check_registration_open() -> None:
    if not get_settings().self_registration_enabled:
        raise AuthorizationError()


@router.get("/register", response_class=HTMLResponse)
async def register_form(request: Request, identity: Optional[Identity] = Depends(require(Action.REGISTER))) -> HTMLResponse:
    _check_registration_open()
    return _render(request, "register.html", {"form_data": {}, "errors": {}})


@router.post("/register")
async def register_post(request: Request, identity: Optional[Identity] = Depends(require(Action.REGISTER))) -> Response:
    """Create an account and send the confirmation mail.

    The email UNIQUE constraint decides duplicates; there is no lookup first.
    If the confirmation mail fails the account still exists and the request
    answers 500.
    """
    _check_registration_open()
    data = form_to_dict(await request.form(), REGISTRATION_FIELDS)
    # Never echo the password back into the form.
    form_data = {k: v for k, v in data.items() if k != "password"}
    try:
        form = parse_form(RegistrationForm, data)
    except ValidationError as exc:
        return _render(request, "register.html", {"form_data": form_data, "errors": exc.field_errors}, 400)

    hashed = await call_with_timeout(hash_password, form.password, what="password hashing")
    user = User(
        first_name=form.first_name,
        last_name=form.last_name,
        email=form.email,
        hashed_password=hashed,
        role=form.role,
    )
    user_store: UserStore = request.app.state.user_store
    try:
        user.id = await call_with_timeout(user_store.create_user, user)
    except ConflictError as exc:
        logger.info("Registration rejected: email already registered")
        return _render(request, "register.html", {"form_data": form_data, "errors": {"email": exc.message}}, exc.status_code)
    logger.info("User %d registered (role=%s)", user.id, user.role.value)

    await call_with_timeout(request.app.state.mailer.send_registration_confirmation, user, what="mail")
    return PlainTextResponse(REGISTRATION_OK, status_code=200)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
async def login_form(request: Request, identity: Optional[Identity] = Depends(require(Action.LOGIN))) -> Response:
    if identity is not None:
        return RedirectResponse("/", status_code=302)
    return _render(request, "login.html", {"email": "", "error_msg": None})


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(get_settings().login_rate_limit)
async def login_post(request: Request, identity: Optional[Identity] = Depends(require(Action.LOGIN))) -> Response:
    """Authenticate and open a new session.

    Unknown email and wrong password produce the same 401 page. Each
    successful login creates an independent session; earlier ones stay valid.
    """
    form = await request.form()
    email = str(form.get("email", "")).strip()
    password = str(form.get("password", ""))

    user_store: UserStore = request.app.state.user_store
    try:
        user = await call_with_timeout(authenticate_user, user_store, email, password, what="authentication")
    except CredentialError as exc:
        logger.info("Failed login from %s", request.client.host if request.client else "unknown")
        return _render(request, "login.html", {"email": email, "error_msg": exc.message}, exc.status_code)

    sessions: SessionStore = request.app.state.session_store
    raw_token = await call_with_timeout(sessions.create, Identity.from_user(user))
    logger.info("User %d logged in", user.id)

    resp = RedirectResponse("/", status_code=303)
    set_session_cookie(resp, raw_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/logout")
async def logout(request: Request, identity: Optional[Identity] = Depends(require(Action.LOGOUT))) -> RedirectResponse:
    """Destroy the session and clear the cookie.

    Only a failure to delete the session row is reported (as 500). A missing
    or already-dead cookie still logs out cleanly.
    """
    raw_token = request.cookies.get(get_settings().session_cookie_name)
    if raw_token:
        sessions: SessionStore = request.app.state.session_store
        await call_with_timeout(sessions.destroy, raw_token)
    if identity is not None:
        logger.info("User %d logged out", identity.user_id)
    resp = RedirectResponse("/login", status_code=302)
    clear_session_cookie(resp)
    return resp
