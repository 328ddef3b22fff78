"""Identity tokens, password hashing and the connection authenticator.

Tokens are HS256 JWTs carrying a single integer ``userId`` claim plus an
``exp`` claim. The WebSocket handshake and the REST dependency both go
through ``ConnectionAuthenticator.authenticate``, so a token accepted by one
is accepted by the other.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt import PyJWTError
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from app.errors import Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def create_access_token(
    user_id: int,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: Optional[int] = None,
) -> str:
    """Sign an identity token for ``user_id``.

    Args:
        user_id: The user the token identifies.
        secret_key: Shared HMAC secret.
        algorithm: JWT algorithm (HS256 by default).
        expires_minutes: Lifetime; None issues a token without ``exp``.
    """
    payload = {"userId": user_id}
    if expires_minutes is not None:
        payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(payload, secret_key, algorithm=algorithm)


class ConnectionAuthenticator:
    """Verifies identity tokens and extracts the bound user id."""

    def __init__(self, secret_key: str, algorithm: str = "HS256") -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm

    def authenticate(self, token: Optional[str]) -> int:
        """Return the token's user id.

        Raises:
            Unauthorized: Token missing, malformed, badly signed, expired,
                or without an integer ``userId`` claim.
        """
        if not token:
            raise Unauthorized("missing token")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except PyJWTError as e:
            raise Unauthorized(f"invalid token: {e}") from e

        user_id = payload.get("userId")
        # bool is an int subclass; a token saying userId=true is not an identity
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise Unauthorized("token carries no userId")
        return user_id


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return str(pwd_context.hash(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a stored bcrypt hash."""
    try:
        return bool(pwd_context.verify(plain_password, hashed_password))
    except ValueError as e:
        logger.error(f"Error verifying password: {e}")
        return False


async def hash_password_async(password: str) -> str:
    """bcrypt is CPU-bound; keep it off the event loop."""
    return await run_in_threadpool(hash_password, password)


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    return await run_in_threadpool(verify_password, plain_password, hashed_password)
