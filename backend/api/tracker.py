from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, Field

from auth.utils import get_current_user
from config import settings as app_settings
from db.models import User
from services.errors import (
    AuthError,
    FormatError,
    SaveInProgressError,
    StorageError,
    TrackerError,
    ValidationError,
)
from services.rate_limit_service import RateLimitRule, enforce_rate_limit
from services.tracker_service import TrackerService

router = APIRouter(prefix="/tracker", tags=["tracker"], dependencies=[Depends(get_current_user)])

_STATUS_BY_ERROR: list[tuple[type[TrackerError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (FormatError, status.HTTP_400_BAD_REQUEST),
    (SaveInProgressError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
]


class StartDateRequest(BaseModel):
    start_date: str = Field(min_length=1, max_length=32)


def get_tracker_service(request: Request) -> TrackerService:
    return request.app.state.tracker_service


def _raise_http(exc: TrackerError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=exc.message) from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message) from exc


@router.get("")
def get_tracker(
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        return service.snapshot(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)


@router.get("/calendar")
def get_calendar(
    month: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        return service.calendar(user.id, month, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)


@router.post("/days/{date_key}/toggle")
def toggle_day(
    date_key: str,
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        failed = service.toggle_day(user.id, date_key, user.timezone)
        snapshot = service.snapshot(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)
    message = f"{date_key} marked as failed." if failed else f"{date_key} marked as successful."
    return {**snapshot, "date": date_key, "failed": failed, "message": message}


@router.put("/start-date")
def update_start_date(
    req: StartDateRequest,
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        changed = service.set_start_date(user.id, req.start_date.strip(), user.timezone)
        snapshot = service.snapshot(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)
    message = "Start date updated." if changed else "Start date unchanged."
    return {**snapshot, "message": message}


@router.post("/save")
def save_tracker(
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        saved = service.save(user.id)
        snapshot = service.snapshot(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)
    message = "Changes saved." if saved else "No changes to save."
    return {**snapshot, "saved": saved, "message": message}


@router.post("/reload")
def reload_tracker(
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        service.reload(user.id)
        snapshot = service.snapshot(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)
    return {**snapshot, "message": snapshot["warning"] or "Data loaded."}


@router.get("/export")
def export_failed_days(
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    try:
        payload = service.export_payload(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)
    return Response(
        content=payload.content.encode("utf-8"),
        media_type="application/json; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


@router.post("/import")
async def import_failed_days(
    request: Request,
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    service: TrackerService = Depends(get_tracker_service),
):
    allowed, retry_after = enforce_rate_limit(
        rule=RateLimitRule(
            endpoint="/api/tracker/import",
            limit=app_settings.RATE_LIMIT_IMPORT_ATTEMPTS,
            window_seconds=app_settings.RATE_LIMIT_IMPORT_WINDOW_SECONDS,
        ),
        scope_key=str(user.id),
        user_id=user.id,
        ip_address=request.client.host if request.client else None,
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many imports. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    contents = await file.read(app_settings.MAX_IMPORT_BYTES + 1)
    if len(contents) > app_settings.MAX_IMPORT_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The import file is too large.")
    try:
        result = service.import_payload(user.id, contents, user.timezone)
        snapshot = service.snapshot(user.id, user.timezone)
    except TrackerError as exc:
        _raise_http(exc)
    return {
        **snapshot,
        "total_processed": result.total_processed,
        "imported_count": result.imported_count,
        "invalid_count": result.invalid_count,
        "future_count": result.future_count,
        "message": result.summary() + " Remember to save your changes.",
    }
