"""Auth router for email/password accounts.

Endpoints:
    POST /api/auth/register  - Create an account and return a token
    POST /api/auth/login     - Exchange credentials for a token
"""
import logging
from typing import Optional

import duckdb
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from app.config import get_config
from app.store.service import get_store

from .service import create_access_token, hash_password_async, verify_password_async

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    """Request body for registration. Fields are checked by hand so that a
    missing field yields the same 400 as an empty one."""
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    token: str


def _issue_token(user_id: int) -> TokenResponse:
    config = get_config()
    token = create_access_token(
        user_id,
        config.secrets.jwt.secret_key,
        config.secrets.jwt.algorithm,
        expires_minutes=config.auth.token_expire_minutes,
    )
    return TokenResponse(token=token)


@router.post("/register", response_model=TokenResponse)
async def register(request: RegisterRequest) -> TokenResponse:
    """Create an account.

    Raises:
        HTTPException 400: A field is missing.
        HTTPException 409: The email is already registered.
    """
    if not request.name or not request.email or not request.password:
        raise HTTPException(status_code=400, detail="Missing fields")

    store = get_store()
    if await run_in_threadpool(store.get_credentials, request.email):
        raise HTTPException(status_code=409, detail="Email in use")

    password_hash = await hash_password_async(request.password)
    try:
        user = await run_in_threadpool(store.create_user, request.name, request.email, password_hash)
    except duckdb.ConstraintException:
        # Lost a race with a concurrent registration for the same email
        raise HTTPException(status_code=409, detail="Email in use")

    logger.info(f"[Auth] Registered user {user.id}")
    return _issue_token(user.id)


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest) -> TokenResponse:
    """Exchange email + password for a token.

    Raises:
        HTTPException 400: A field is missing.
        HTTPException 401: Unknown email or wrong password.
    """
    if not request.email or not request.password:
        raise HTTPException(status_code=400, detail="Missing fields")

    store = get_store()
    credentials = await run_in_threadpool(store.get_credentials, request.email)
    if credentials is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    user_id, password_hash = credentials
    if not await verify_password_async(request.password, password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _issue_token(user_id)
