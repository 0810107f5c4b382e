"""Bearer identity and admin API key dependencies.

Identity tokens are issued elsewhere; this service only verifies them and
reads the user id they carry.
"""

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from fastapi import Header, HTTPException, Request

IDENTITY_SALT = "ledger-identity"
IDENTITY_MAX_AGE = 7 * 24 * 3600  # 7 days


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=IDENTITY_SALT)


def issue_identity_token(user_id: str, secret_key: str) -> str:
    """Sign a user id into a bearer token."""
    return _serializer(secret_key).dumps({"sub": user_id})


def verify_identity_token(
    token: str, secret_key: str, max_age: int = IDENTITY_MAX_AGE,
) -> str | None:
    """Return the user id carried by a token, or None if it is invalid or expired."""
    try:
        payload = _serializer(secret_key).loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def optional_identity(
    request: Request,
    authorization: str | None = Header(None),
) -> str | None:
    """FastAPI dependency: the verified user id, or None for anonymous callers."""
    token = _bearer_token(authorization)
    if token is None:
        return None
    settings = request.app.state.ledger.settings
    return verify_identity_token(token, settings.secret_key)


async def require_identity(
    request: Request,
    authorization: str | None = Header(None),
) -> str:
    """FastAPI dependency that rejects anonymous callers with 401."""
    user_id = await optional_identity(request, authorization)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


async def require_api_key(
    request: Request,
    x_ledger_api_key: str = Header(..., alias="X-Ledger-Api-Key"),
) -> str:
    """FastAPI dependency that validates admin API key from header."""
    settings = request.app.state.ledger.settings
    if x_ledger_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_ledger_api_key
