"""FastAPI application for Cactoide."""

from __future__ import annotations

import logging
import time
import tomllib
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .crud import (
    PermissionDeniedError,
    add_rsvp,
    count_public_events,
    create_event,
    create_invite_token,
    delete_event,
    get_event,
    get_invite_token,
    list_discover_events,
    list_federation_events,
    list_user_events,
    remove_rsvp,
)
from .database import SessionLocal, ping_database
from .federation import fetch_all_federated_events, merge_with_local
from .healthcheck import ensure_database_connection
from .instances import load_instance_dashboard
from .models import RSVP, Event, InviteToken
from .scheduler import start_scheduler, stop_scheduler
from .schemas import EventCreatePayload, RSVPCreatePayload, event_record
from .storage import init_db
from .utils import generate_user_id, is_token_valid, isoformat
from .web import render_discover, render_error, render_instances

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")

FEDERATION_DISABLED_ERROR = {"error": "Federation API is not enabled on this instance"}
NO_STORE = {"cache-control": "no-store"}
USER_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("cactoide")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    await ensure_database_connection()
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Cactoide", version=APP_VERSION, lifespan=lifespan)


@app.middleware("http")
async def assign_user_cookie(request: Request, call_next):
    """Give every visitor a pseudo-identity cookie used to own events and RSVPs."""
    cookie_name = settings.user_cookie_name
    user_id = request.cookies.get(cookie_name)
    issued = not user_id
    request.state.user_id = user_id or generate_user_id()
    response = await call_next(request)
    if issued:
        response.set_cookie(
            cookie_name,
            request.state.user_id,
            max_age=USER_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )
    return response


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def current_user_id(request: Request) -> str:
    return request.state.user_id


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return request.url.path.startswith("/api/") or (
        "application/json" in accept and "text/html" not in accept
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return render_error(request, exc.status_code, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    detail = "The database is unavailable at the moment. Please try again."
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=503)
    return render_error(request, 503, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": jsonable_encoder(exc.errors())}, status_code=422)
    return render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


def _ensure_event(db: Session, event_id: str) -> Event:
    event = get_event(db, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _ensure_invite(db: Session, event_id: str, token: str) -> tuple[Event, InviteToken]:
    event = _ensure_event(db, event_id)
    invite = get_invite_token(db, event_id=event_id, token=token)
    if not invite:
        raise HTTPException(status_code=404, detail="Invalid invite token")
    if not is_token_valid(invite.expires_at):
        raise HTTPException(status_code=410, detail="Invite token has expired")
    if event.visibility != "invite-only":
        raise HTTPException(status_code=403, detail="This event does not require an invite")
    return event, invite


PROVENANCE_FIELDS = {"federation", "federation_url"}


def _serialize_event(event: Event) -> dict:
    """Every wire field, nulls included; provenance is only stamped by receivers."""
    return event_record(event).model_dump(mode="json", exclude=PROVENANCE_FIELDS)


def _serialize_rsvp(rsvp: RSVP) -> dict:
    return {
        "id": rsvp.id,
        "event_id": rsvp.event_id,
        "name": rsvp.name,
        "user_id": rsvp.user_id,
        "created_at": isoformat(rsvp.created_at),
    }


def _event_detail(event: Event) -> dict:
    return {
        "event": _serialize_event(event),
        "rsvps": [_serialize_rsvp(r) for r in event.rsvps],
        "attendees": event.attendee_count,
        "spots_left": event.spots_left,
    }


def _add_rsvps(db: Session, event: Event, payload: RSVPCreatePayload, user_id: str) -> dict:
    try:
        created = add_rsvp(
            db,
            event=event,
            name=payload.name,
            user_id=user_id,
            guests=payload.guests,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(
        "RSVP added to event %s (%d attendees incl. guests)", event.id, len(created)
    )
    return {**_event_detail(event), "created": [_serialize_rsvp(r) for r in created]}


# -------- Pages --------


@app.get("/", include_in_schema=False)
def homepage():
    return RedirectResponse("/discover", status_code=307)


@app.get("/discover")
async def discover_page(request: Request, db: Session = Depends(get_db)):
    """Local public and invite-only events, followed by federated ones."""
    local_events = await run_in_threadpool(list_discover_events, db)
    local = [event_record(event) for event in local_events]
    federated = (
        await fetch_all_federated_events()
        if settings.discover_include_federated
        else []
    )
    events = merge_with_local(local, federated)
    if _wants_json(request):
        return {
            "events": [e.model_dump(mode="json", exclude_none=True) for e in events],
            "local_count": len(local),
            "federated_count": len(federated),
        }
    return render_discover(request, events)


@app.get("/instance")
async def instance_page(request: Request):
    rows = await load_instance_dashboard()
    if _wants_json(request):
        return {
            "name": settings.instance_name,
            "instances": [row.model_dump() for row in rows],
        }
    return render_instances(request, rows)


# -------- Federation & health --------


@app.get("/api/healthz")
async def healthz():
    started = time.perf_counter()
    try:
        await run_in_threadpool(ping_database)
    except SQLAlchemyError as exc:
        response_time = round((time.perf_counter() - started) * 1000)
        logger.error("Health check failed: %s", exc)
        return JSONResponse(
            {
                "ok": False,
                "error": str(getattr(exc, "orig", None) or exc),
                "message": "Database unreachable.",
                "responseTime": response_time,
                "responseTimeUnit": "ms",
            },
            status_code=503,
            headers=NO_STORE,
        )
    response_time = round((time.perf_counter() - started) * 1000)
    return JSONResponse(
        {"ok": True, "responseTime": response_time, "responseTimeUnit": "ms"},
        headers=NO_STORE,
    )


@app.get("/api/federation/events")
def federation_events(db: Session = Depends(get_db)):
    if not settings.federation_enabled:
        return JSONResponse(FEDERATION_DISABLED_ERROR, status_code=403)
    try:
        events = list_federation_events(db)
    except SQLAlchemyError as exc:
        logger.error("Error fetching events for federation: %s", exc)
        return JSONResponse(
            {"error": "Failed to fetch events", "message": str(exc)}, status_code=500
        )
    payload = []
    for event in events:
        record = _serialize_event(event)
        record["federation"] = True
        payload.append(record)
    return {"events": payload, "count": len(payload)}


@app.get("/api/federation/info")
def federation_info(db: Session = Depends(get_db)):
    if not settings.federation_enabled:
        return JSONResponse(FEDERATION_DISABLED_ERROR, status_code=403)
    try:
        public_count = count_public_events(db)
    except SQLAlchemyError as exc:
        logger.error("Error fetching federation info: %s", exc)
        return JSONResponse(
            {"error": "Failed to fetch federation info", "message": str(exc)},
            status_code=500,
        )
    return {"name": settings.instance_name, "publicEventsCount": public_count}


# -------- JSON API (v1) --------


@app.get("/api/v1/events")
def api_list_my_events(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    return {"events": [_serialize_event(e) for e in list_user_events(db, user_id)]}


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = create_event(
            db,
            name=payload.name,
            date=payload.date,
            time=payload.time,
            location=payload.location,
            location_type=payload.location_type,
            location_url=payload.location_url,
            type=payload.type,
            attendee_limit=payload.attendee_limit,
            visibility=payload.visibility,
            user_id=user_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("Event %s created (%s)", event.id, event.visibility)
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    if event.visibility == "invite-only" and event.user_id != user_id:
        raise HTTPException(status_code=403, detail="This event requires an invite link")
    return _event_detail(event)


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    try:
        delete_event(db, event=event, user_id=user_id)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    logger.info("Event %s deleted", event_id)
    return Response(status_code=204)


@app.post("/api/v1/events/{event_id}/rsvps", status_code=201)
def api_create_rsvp(
    event_id: str,
    payload: RSVPCreatePayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    if event.visibility == "invite-only":
        raise HTTPException(status_code=403, detail="This event requires an invite link")
    return _add_rsvps(db, event, payload, user_id)


@app.delete("/api/v1/events/{event_id}/rsvps/{rsvp_id}", status_code=204)
def api_delete_rsvp(
    event_id: str,
    rsvp_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    try:
        remove_rsvp(db, event=event, rsvp_id=rsvp_id, user_id=user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="RSVP not found") from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/v1/events/{event_id}/invites", status_code=201)
def api_create_invite(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    if event.user_id != user_id:
        raise HTTPException(status_code=403, detail="Only the organizer can create invites")
    try:
        invite = create_invite_token(db, event=event)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "token": invite.token,
        "expires_at": invite.expires_at.isoformat(),
        "url": f"/api/v1/events/{event.id}/invite/{invite.token}",
    }


@app.get("/api/v1/events/{event_id}/invite/{token}")
def api_get_invited_event(event_id: str, token: str, db: Session = Depends(get_db)):
    event, invite = _ensure_invite(db, event_id, token)
    return {
        **_event_detail(event),
        "invite": {
            "token": invite.token,
            "expires_at": invite.expires_at.isoformat(),
        },
    }


@app.post("/api/v1/events/{event_id}/invite/{token}/rsvps", status_code=201)
def api_create_invited_rsvp(
    event_id: str,
    token: str,
    payload: RSVPCreatePayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event, _ = _ensure_invite(db, event_id, token)
    return _add_rsvps(db, event, payload, user_id)
