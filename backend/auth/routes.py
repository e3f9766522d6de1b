import uuid
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from auth.models import (
    AnonymousSignInRequest,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from auth.utils import (
    create_token,
    get_current_user,
    hash_password,
    normalize_username,
    verify_password,
)
from config import settings
from db.database import get_db
from db.models import User
from services.rate_limit_service import RateLimitRule, enforce_rate_limit

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    return (request.client.host if request.client else "") or "unknown"


def _enforce(rule: RateLimitRule, request: Request, scope: str, message: str, details: dict | None = None) -> None:
    allowed, retry_after = enforce_rate_limit(
        rule=rule,
        scope_key=f"{_client_ip(request)}:{scope}",
        ip_address=_client_ip(request),
        details=details,
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message,
            headers={"Retry-After": str(retry_after)},
        )


def _clean_timezone(value: str | None) -> str | None:
    tz_name = (value or "").strip()
    if not tz_name:
        return None
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown timezone: {tz_name}")
    return tz_name


def _set_session_cookie(response: Response, token: str) -> None:
    samesite = (settings.AUTH_COOKIE_SAMESITE or "lax").strip().lower()
    if samesite not in {"strict", "lax", "none"}:
        samesite = "lax"
    response.set_cookie(
        key=(settings.AUTH_COOKIE_NAME or "goal_tracker_session").strip() or "goal_tracker_session",
        value=token,
        httponly=bool(settings.AUTH_COOKIE_HTTPONLY),
        secure=bool(settings.AUTH_COOKIE_SECURE),
        samesite=samesite,  # type: ignore[arg-type]
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
        max_age=max(int(settings.JWT_EXPIRY_HOURS), 1) * 3600,
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=(settings.AUTH_COOKIE_NAME or "goal_tracker_session").strip() or "goal_tracker_session",
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    normalized_username = normalize_username(req.username)
    _enforce(
        RateLimitRule(
            endpoint="/api/auth/register",
            limit=settings.RATE_LIMIT_AUTH_REGISTER_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_REGISTER_WINDOW_SECONDS,
        ),
        request,
        normalized_username,
        "Too many registration attempts. Please try again later.",
        {"username_normalized": normalized_username},
    )
    if len(normalized_username) < 3:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username must be at least 3 characters")
    if normalized_username.startswith("anon_"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Usernames starting with 'anon_' are reserved")

    if db.query(User).filter(User.username_normalized == normalized_username).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")

    user = User(
        username=" ".join(req.username.strip().split()),
        username_normalized=normalized_username,
        password_hash=hash_password(req.password),
        display_name=req.display_name.strip(),
        is_anonymous=False,
        timezone=_clean_timezone(req.timezone),
        token_version=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    _set_session_cookie(response, create_token(user.id, token_version=user.token_version))
    return TokenResponse(access_token=None)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    normalized_username = normalize_username(req.username)
    _enforce(
        RateLimitRule(
            endpoint="/api/auth/login",
            limit=settings.RATE_LIMIT_AUTH_LOGIN_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS,
        ),
        request,
        normalized_username,
        "Too many login attempts. Please try again later.",
        {"username_normalized": normalized_username},
    )
    user = db.query(User).filter(User.username_normalized == normalized_username).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    _set_session_cookie(response, create_token(user.id, token_version=user.token_version))
    return TokenResponse(access_token=None)


@router.post("/anonymous", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def sign_in_anonymously(
    request: Request,
    response: Response,
    req: AnonymousSignInRequest | None = None,
    db: Session = Depends(get_db),
):
    if not settings.ALLOW_ANONYMOUS_SIGNIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Anonymous sign-in is disabled")
    _enforce(
        RateLimitRule(
            endpoint="/api/auth/anonymous",
            limit=settings.RATE_LIMIT_AUTH_ANONYMOUS_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_ANONYMOUS_WINDOW_SECONDS,
        ),
        request,
        "anonymous",
        "Too many sign-in attempts. Please try again later.",
    )
    username = f"anon_{uuid.uuid4().hex[:12]}"
    user = User(
        username=username,
        username_normalized=username,
        password_hash=None,
        display_name="Guest",
        is_anonymous=True,
        timezone=_clean_timezone(req.timezone if req else None),
        token_version=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    _set_session_cookie(response, create_token(user.id, token_version=user.token_version, anonymous=True))
    return TokenResponse(access_token=None)


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(response: Response):
    _clear_session_cookie(response)
    return {"status": "ok"}
