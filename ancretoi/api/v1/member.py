"""
Member API Endpoints
====================

Learner runner and progress.

Runner state (the in-progress answers of a day) lives in the day-state
cache over ``KVStorage``, keyed by user id or, for anonymous visitors, by
the preview id issued through ``X-Preview-Id`` and the preview cookie.
``/state``, ``/progress`` and ``/intro`` write the authoritative ``DayState``
and ``Enrollment`` rows; ``/streak`` reads activity back from enrollments.

Live runner protocol
--------------------
Connection URL:
    ws://<host>/api/v1/member/<program>/stream?day=<n>&token=<jwt>
    ws://<host>/api/v1/member/<program>/stream?day=<n>&preview=<id>   (anonymous)

Client → Server (JSON text frames):
    - ``{"type": "set", "path": "...", "value": ...}``
    - ``{"type": "toggle", "path": "...", "option": "..."}``
    - ``{"type": "add", "path": "..."}`` / ``{"type": "remove", "path": "...", "index": n}``
    - ``{"type": "goto", "day": n}``
    - ``{"type": "stop"}``

Server → Client (JSON text frames):
    - ``{"type": "ready", "day": n, "view": {...}, "previewId": "..."}``
      (``previewId`` for anonymous visitors only)
    - ``{"type": "values", "day": n, "values": {...}}``
    - ``{"type": "status", "status": "saving" | "saved" | "idle"}``
    - ``{"type": "error", "message": "...", "path": "..."}``
    - ``{"type": "closed"}``
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, Response, WebSocket, WebSocketDisconnect, status

from ancretoi.core.errors import ErrorCodes, NotFoundError, ValidationError
from ancretoi.curriculum import (
    DayNotFoundError,
    ProgramDefinition,
    get_catalog,
    normalize_program_slug,
    render_day,
)
from ancretoi.curriculum.definition import day_field_map
from ancretoi.curriculum.fields import FieldValueError, RepeaterField, check_value
from ancretoi.dependencies import (
    CurrentUser,
    DBSession,
    KVStorage,
    PREVIEW_COOKIE,
    RunnerKey,
    new_preview_id,
    resolve_stream_user,
    runner_key,
    storage_for,
    valid_preview_id,
)
from ancretoi.schemas.common import DataResponse
from ancretoi.schemas.member import DayStateUpsert, DayValues, IntroRequest, ProgressRequest
from ancretoi.services.day_state_cache import DayStateCache, DayStateSession
from ancretoi.services.enrollment_service import EnrollmentService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_definition(program: str) -> ProgramDefinition:
    definition = get_catalog().get(program)
    if definition is None:
        raise NotFoundError(code=ErrorCodes.PROGRAM_NOT_FOUND, message="Programme introuvable.")
    return definition


def _day_not_found(day: int) -> NotFoundError:
    return NotFoundError(code=ErrorCodes.PROGRAM_DAY_NOT_FOUND, message=f"Jour introuvable: {day}")


# =============================================================================
# Authoritative progress
# =============================================================================

@router.post("/state", response_model=DataResponse)
async def upsert_state(body: DayStateUpsert, current_user: CurrentUser, db: DBSession):
    """Apply a partial update to the caller's record of one day."""
    state = await EnrollmentService(db).upsert_state(
        current_user.user_id,
        body.slug,
        body.day,
        body.patch,
    )
    return DataResponse(data=state.to_api_dict())


@router.post("/progress", response_model=DataResponse)
async def progress(body: ProgressRequest, current_user: CurrentUser, db: DBSession):
    """
    ``setDay`` moves the enrollment; ``completeDay`` validates the day and
    advances it.
    """
    service = EnrollmentService(db)
    if body.action == "setDay":
        result = await service.set_day(current_user.user_id, body.slug, body.day)
    else:
        result = await service.complete_day(current_user.user_id, body.slug, body.day)
    return DataResponse(data=result)


@router.post("/enroll/{program}", response_model=DataResponse, status_code=status.HTTP_201_CREATED)
async def enroll(program: str, current_user: CurrentUser, db: DBSession):
    enrollment = await EnrollmentService(db).enroll(current_user, program)
    return DataResponse(data=enrollment.to_api_dict(), message="Inscription enregistrée.")


@router.post("/intro", response_model=DataResponse)
async def intro(body: IntroRequest, current_user: CurrentUser, db: DBSession, storage: KVStorage):
    """Engage from the intro page; disengaging wipes the program's answers."""
    result = await EnrollmentService(db).set_intro(current_user.user_id, body.slug, body.engaged)
    if result["reset"]:
        program_slug = normalize_program_slug(body.slug)
        definition = get_catalog().get(program_slug)
        max_day = max(result["lastPublished"], definition.max_day if definition is not None else 0)
        await DayStateCache(storage, runner_key(current_user, None), program_slug).clear(max_day)
    return DataResponse(data=result)


@router.get("/streak", response_model=DataResponse)
async def streak(
    current_user: CurrentUser,
    db: DBSession,
    response: Response,
    days: Optional[int] = Query(default=None),
):
    """Daily activity series and the current streak."""
    response.headers["Cache-Control"] = "no-store"
    return DataResponse(data=await EnrollmentService(db).streak(current_user.user_id, days))


@router.get("/notes/export")
async def export_notes(
    current_user: CurrentUser,
    db: DBSession,
    program: Optional[str] = Query(default=None),
    q: str = Query(default=""),
    format: str = Query(default="json"),
):
    """Download the caller's day states as JSON or CSV."""
    body, media_type, filename = await EnrollmentService(db).export_notes(
        current_user.user_id,
        program_slug=program,
        q=q,
        fmt=format,
    )
    return Response(
        content=body,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )


@router.get("/{program}/summary", response_model=DataResponse)
async def summary(program: str, current_user: CurrentUser, db: DBSession):
    return DataResponse(data=await EnrollmentService(db).summary(current_user.user_id, program))


# =============================================================================
# Runner (day-state cache)
# =============================================================================

@router.get("/{program}/day/{day}", response_model=DataResponse)
async def get_day(
    program: str,
    day: int,
    owner: RunnerKey,
    storage: KVStorage,
):
    """Rendered day with the caller's cached answers applied."""
    definition = get_definition(program)
    if definition.get_day(day) is None:
        raise _day_not_found(day)

    cache = DayStateCache(storage, owner, normalize_program_slug(program))
    values = await cache.load(day)
    return DataResponse(data={
        "programSlug": cache.program_slug,
        "day": day,
        "values": values,
        "view": render_day(definition, day, values),
    })


@router.put("/{program}/day/{day}/values", response_model=DataResponse)
async def save_day_values(
    program: str,
    day: int,
    body: DayValues,
    owner: RunnerKey,
    storage: KVStorage,
):
    """
    Save a whole answer mapping at once.

    Every path must belong to the day and hold a value of its field's shape.
    """
    definition = get_definition(program)
    day_def = definition.get_day(day)
    if day_def is None:
        raise _day_not_found(day)

    fields = day_field_map(day_def)
    for path, value in body.values.items():
        field = fields.get(path)
        if field is None:
            raise ValidationError(
                message="Champ inconnu.",
                field=path,
                code=ErrorCodes.MEMBER_INVALID_VALUE,
            )
        try:
            check_value(field, value, path)
        except FieldValueError as e:
            raise ValidationError(
                message=e.message,
                field=e.path,
                code=ErrorCodes.MEMBER_INVALID_VALUE,
            ) from e

    cache = DayStateCache(storage, owner, normalize_program_slug(program))
    saved = await cache.save(day, body.values)
    return DataResponse(data={"saved": saved, "day": day})


@router.get("/{program}/last-day", response_model=DataResponse)
async def last_day(program: str, owner: RunnerKey, storage: KVStorage):
    get_definition(program)
    cache = DayStateCache(storage, owner, normalize_program_slug(program))
    return DataResponse(data={"lastDay": await cache.last_day()})


async def _apply(session: DayStateSession, message: dict) -> bool:
    """
    Apply one client message.

    Returns:
        False when the client asked to stop
    """
    kind = message.get("type")
    if kind == "stop":
        return False

    if kind == "goto":
        await session.goto(int(message.get("day")))
        return True

    path = str(message.get("path") or "")
    field = session.field_at(path)
    if kind == "set":
        await session.set_field(field, path, message.get("value"))
    elif kind == "toggle":
        await session.toggle(path, str(message.get("option") or ""))
    elif kind == "add" and isinstance(field, RepeaterField):
        await session.add_item(field, path)
    elif kind == "remove" and isinstance(field, RepeaterField):
        await session.remove_item(field, path, int(message.get("index", -1)))
    else:
        raise FieldValueError(path, f"Message inconnu: {kind}")
    return True


@router.websocket("/{program}/stream")
async def runner_stream(
    websocket: WebSocket,
    program: str,
    db: DBSession,
    day: int = Query(default=1),
    token: Optional[str] = Query(default=None),
    preview: Optional[str] = Query(default=None),
):
    """
    Live runner for one program.

    Each edit is acknowledged with the new values; saving happens after the
    debounce delay and is reported through ``status`` messages. Closing the
    connection flushes a pending save.

    Anonymous visitors are identified by ``?preview=``, then the preview
    cookie; otherwise a new id is issued and reported in ``ready``.
    """
    await websocket.accept()

    user, ok = await resolve_stream_user(token, db)
    if not ok:
        await websocket.send_json({"type": "error", "message": "Jeton invalide ou expiré."})
        await websocket.close(code=1008)
        return

    definition = get_catalog().get(program)
    if definition is None:
        await websocket.send_json({"type": "error", "message": "Programme introuvable."})
        await websocket.close(code=1008)
        return

    preview_id = None
    if user is None:
        preview_id = (
            valid_preview_id(preview)
            or valid_preview_id(websocket.cookies.get(PREVIEW_COOKIE))
            or new_preview_id()
        )

    async def on_status(value: str) -> None:
        await websocket.send_json({"type": "status", "status": value})

    cache = DayStateCache(storage_for(user), runner_key(user, preview_id), normalize_program_slug(program))
    session = DayStateSession(cache, definition, on_status=on_status)

    try:
        await session.open(day)
    except DayNotFoundError as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close(code=1008)
        return

    disconnected = False
    try:
        ready = {"type": "ready", "day": session.day, "view": session.render()}
        if preview_id is not None:
            ready["previewId"] = preview_id
        await websocket.send_json(ready)
        logger.info("Runner stream opened for %s on %s day %s", cache.user_key, cache.program_slug, day)

        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
                if not isinstance(message, dict):
                    raise ValueError("objet JSON attendu")
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Message JSON invalide."})
                continue

            previous_day = session.day
            try:
                if not await _apply(session, message):
                    break
            except FieldValueError as e:
                await websocket.send_json({"type": "error", "message": e.message, "path": e.path})
                continue
            except (DayNotFoundError, TypeError, ValueError) as e:
                await websocket.send_json({"type": "error", "message": str(e)})
                continue

            if session.day != previous_day:
                await websocket.send_json({"type": "ready", "day": session.day, "view": session.render()})
            else:
                await websocket.send_json({"type": "values", "day": session.day, "values": session.values})

    except WebSocketDisconnect:
        disconnected = True
        logger.info("Runner stream disconnected for %s", cache.user_key)

    except Exception as e:
        logger.error("Runner stream error: %s", e, exc_info=True)
        try:
            await websocket.send_json({"type": "error", "message": "Erreur interne."})
        except Exception:
            pass

    finally:
        await session.close()

        # Signal to the client that the session is over
        if not disconnected:
            try:
                await websocket.send_json({"type": "closed"})
            except Exception:
                pass

            try:
                await websocket.close()
            except Exception:
                pass

        logger.info("Runner stream ended for %s on %s", cache.user_key, cache.program_slug)
