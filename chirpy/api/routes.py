from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import PlainTextResponse

from chirpy.api.schemas import (
    LoginRequest,
    LoginResponse,
    PolkaWebhookRequest,
    RefreshResponse,
    UserCredentialsRequest,
    UserResponse,
)
from chirpy.logging import get_logger
from chirpy.service.errors import NotFoundError
from chirpy.service.results import AuthFailure
from chirpy.service.runtime import get_runtime
from chirpy.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/api")

POLKA_UPGRADE_EVENT = "user.upgraded"


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
        is_chirpy_red=user.is_chirpy_red,
    )


async def get_current_user_id(request: Request) -> UUID:
    """Resolve the caller from a ``Bearer`` access token."""
    result = await get_runtime().auth.authenticate(request.headers)
    if isinstance(result, AuthFailure):
        raise result.to_service_error()
    return result.value


async def require_polka_key(request: Request) -> None:
    result = await get_runtime().auth.authenticate_api_key(request.headers)
    if isinstance(result, AuthFailure):
        raise result.to_service_error()


@router.get("/healthz", response_class=PlainTextResponse, tags=["system"])
async def healthz() -> str:
    return "OK"


@router.post("/users", response_model=UserResponse, status_code=201, tags=["users"])
async def create_user(body: UserCredentialsRequest):
    runtime = get_runtime()
    user = await runtime.auth.register_user(body.email, body.password)
    return _user_response(user)


@router.put("/users", response_model=UserResponse, tags=["users"])
async def update_user(
    body: UserCredentialsRequest,
    user_id: UUID = Depends(get_current_user_id),
):
    runtime = get_runtime()
    user = await runtime.auth.update_credentials(user_id, body.email, body.password)
    return _user_response(user)


@router.post("/login", response_model=LoginResponse, tags=["auth"])
async def login(body: LoginRequest):
    """Exchange email and password for an access token and a refresh token.

    Raises:
        401: unknown email or wrong password, indistinguishably
        422: ``expires_in_seconds`` is negative
    """
    runtime = get_runtime()
    result = await runtime.auth.login(
        body.email, body.password, expires_in_seconds=body.expires_in_seconds
    )
    if isinstance(result, AuthFailure):
        raise result.to_service_error()
    grant = result.value
    user = grant.user
    return LoginResponse(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
        is_chirpy_red=user.is_chirpy_red,
        token=grant.access_token,
        refresh_token=grant.refresh_token,
    )


@router.post("/refresh", response_model=RefreshResponse, tags=["auth"])
async def refresh(request: Request):
    runtime = get_runtime()
    result = await runtime.auth.refresh(request.headers)
    if isinstance(result, AuthFailure):
        raise result.to_service_error()
    return RefreshResponse(token=result.value)


@router.post("/revoke", status_code=204, tags=["auth"])
async def revoke(request: Request):
    """Revoke the ``Bearer`` refresh token.

    A missing or malformed ``Authorization`` header is 401, not 204.
    Unknown and already revoked tokens answer 204. A store failure is 500.
    """
    runtime = get_runtime()
    result = await runtime.auth.revoke(request.headers)
    if isinstance(result, AuthFailure):
        raise result.to_service_error()
    return Response(status_code=204)


@router.post(
    "/polka/webhooks",
    status_code=204,
    tags=["webhooks"],
    dependencies=[Depends(require_polka_key)],
)
async def polka_webhook(body: PolkaWebhookRequest):
    if body.event != POLKA_UPGRADE_EVENT:
        logger.info("polka_event_ignored", polka_event=body.event)
        return Response(status_code=204)
    runtime = get_runtime()
    user = runtime.store.upgrade_chirpy_red(body.data.user_id)
    if not user:
        raise NotFoundError("user not found")
    logger.info("user_upgraded_to_chirpy_red", user_id=str(user.id))
    return Response(status_code=204)
