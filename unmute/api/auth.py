"""Authentication endpoints and utilities."""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.api.schemas import LoginRequest, SignupRequest, UserOut
from unmute.core.config import settings
from unmute.db.database import get_db
from unmute.services.persistence.users import UserService

router = APIRouter()
logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"

# In-memory session storage: token -> {"user_id", "expires_at", "created_at"}
_sessions: dict[str, dict] = {}


def create_session_token() -> str:
    """Generate a secure session token."""
    return secrets.token_urlsafe(32)


def create_session(response: Response, user_id: int) -> str:
    """Create a new session for a user and set the cookie."""
    session_token = create_session_token()
    _sessions[session_token] = {
        "user_id": user_id,
        "expires_at": datetime.utcnow() + timedelta(seconds=settings.session_cookie_max_age),
        "created_at": datetime.utcnow(),
    }

    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_token,
        httponly=True,
        max_age=settings.session_cookie_max_age,
        samesite="lax",
    )
    return session_token


def get_session_token(request: Request) -> Optional[str]:
    """Extract session token from cookie."""
    return request.cookies.get(SESSION_COOKIE)


def get_session_user_id(session_token: Optional[str]) -> Optional[int]:
    """User id of a valid, unexpired session, else None."""
    if not session_token:
        return None

    session = _sessions.get(session_token)
    if not session:
        return None

    if datetime.utcnow() > session["expires_at"]:
        del _sessions[session_token]
        return None

    return session["user_id"]


async def require_user(request: Request) -> int:
    """Dependency returning the authenticated user's id."""
    user_id = get_session_user_id(get_session_token(request))
    if user_id is None:
        raise HTTPException(status_code=401, detail={"message": "Not authenticated"})
    return user_id


def serialize_user(user) -> dict:
    return UserOut.model_validate(user).model_dump(by_alias=True, mode="json")


@router.post("/api/auth/signup", status_code=201)
async def signup(signup_req: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create an account."""
    users = UserService(db)
    if await users.get_user_by_email(signup_req.email):
        raise HTTPException(status_code=400, detail={"message": "User with this email already exists"})

    try:
        user = await users.create_user(
            first_name=signup_req.first_name,
            last_name=signup_req.last_name,
            email=signup_req.email,
            password=signup_req.password,
        )
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail={"message": "User with this email already exists"})

    logger.info(f"[AUTH] User created - UserId: {user.id}")
    return {"message": "User created successfully", "user": serialize_user(user)}


@router.post("/api/auth/login")
async def login(login_req: LoginRequest, response: Response, db: AsyncSession = Depends(get_db)):
    """Login endpoint."""
    user = await UserService(db).authenticate(login_req.email, login_req.password)
    if user is None:
        raise HTTPException(status_code=401, detail={"message": "Invalid email or password"})

    create_session(response, user.id)
    logger.info(f"[AUTH] Login - UserId: {user.id}")
    return {"message": "Login successful", "user": serialize_user(user)}


@router.post("/api/auth/logout")
async def logout(request: Request, response: Response):
    """Logout endpoint."""
    session_token = get_session_token(request)
    if session_token:
        _sessions.pop(session_token, None)

    response.delete_cookie(SESSION_COOKIE)
    return {"success": True, "message": "Logged out"}


@router.get("/api/user")
async def get_current_user(user_id: int = Depends(require_user), db: AsyncSession = Depends(get_db)):
    """The logged-in user, without the password."""
    user = await UserService(db).get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"message": "User not found"})
    return {"user": serialize_user(user)}
