"""Auth API - registration, login, token refresh.

Learn: routes for user authentication:
- POST /auth/register -> create account, returns {user, token}
- POST /auth/login -> email/password -> {user, token}
- POST /auth/refresh -> refresh token -> new token pair
- GET /auth/me -> current user (mounted behind auth in api/__init__.py)
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from parley.auth.dependencies import CurrentIdentity, Unauthorized, get_current_user
from parley.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from parley.db.engine import get_db
from parley.db.models import User
from parley.schemas.user import (
    AuthPayload,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserRead,
)
from parley.services.user_service import (
    EmailTakenError,
    InvalidCredentialsError,
    UserNotFoundError,
    UserService,
)

router = APIRouter(prefix="/auth")
me_router = APIRouter(prefix="/auth")


def _user_svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def _tokens(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.email, user.name),
        refresh_token=create_refresh_token(user.id),
    )


@router.post("/register", response_model=AuthPayload, status_code=201)
async def register(body: RegisterRequest, svc: UserService = Depends(_user_svc)):
    try:
        user = await svc.register(body.email, body.name, body.password, body.avatar)
    except EmailTakenError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AuthPayload(user=UserRead.model_validate(user), token=_tokens(user))


@router.post("/login", response_model=AuthPayload)
async def login(body: LoginRequest, svc: UserService = Depends(_user_svc)):
    try:
        user = await svc.authenticate(body.email, body.password)
    except InvalidCredentialsError as e:
        raise Unauthorized(str(e))
    return AuthPayload(user=UserRead.model_validate(user), token=_tokens(user))


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, svc: UserService = Depends(_user_svc)):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
        user = await svc.get_user(payload["sub"])
    except TokenError as e:
        raise Unauthorized(str(e))
    except UserNotFoundError:
        raise Unauthorized("User no longer exists")
    return _tokens(user)


@me_router.get("/me", response_model=UserRead)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_user_svc),
):
    try:
        return await svc.get_user(identity.id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
