"""Authentication dependencies for FastAPI routes."""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from app.services.jwt import get_jwt_service

AUTH_COOKIE_NAME = "sc_auth_token"


@dataclass
class CurrentUser:
    """Authenticated user context. ``user_id`` scopes every read, write and subscription."""

    user_id: str


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]

    token = request.cookies.get(AUTH_COOKIE_NAME)
    if token:
        return token

    # EventSource cannot send headers, so the change feed also accepts a query token
    if request.url.path.endswith("/events"):
        return request.query_params.get("access_token")
    return None


def get_current_user(request: Request) -> CurrentUser:
    """Extract and validate user from Bearer token or cookie. Raises 401 if invalid."""
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = get_jwt_service().decode_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return CurrentUser(user_id=str(payload["sub"]))
