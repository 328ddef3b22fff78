"""FastAPI dependencies for bearer-token authenticated endpoints."""
from typing import Optional

from fastapi import Header, HTTPException

from app.config import get_config
from app.errors import Unauthorized

from .service import ConnectionAuthenticator, extract_bearer_token


def get_authenticator() -> ConnectionAuthenticator:
    jwt_secrets = get_config().secrets.jwt
    return ConnectionAuthenticator(jwt_secrets.secret_key, jwt_secrets.algorithm)


async def require_user_id(authorization: Optional[str] = Header(None)) -> int:
    """Resolve the caller's user id from the Authorization header.

    Raises:
        HTTPException 401: Missing or invalid token.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Missing token")
    try:
        return get_authenticator().authenticate(token)
    except Unauthorized:
        raise HTTPException(status_code=401, detail="Invalid token")
