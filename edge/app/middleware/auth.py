import hmac
from typing import Optional

from fastapi import HTTPException, Request

from edge.app.core.config import settings


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract Bearer token from Authorization header.

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate the admin token for operational endpoints.

    Development deployments skip the check.

    Returns:
        Admin identifier if valid

    Raises:
        HTTPException: 401 if admin token is missing, invalid or not configured
    """
    if settings.is_development:
        return "admin"

    expected_token = settings.admin_token.strip()
    token = get_bearer_token(request) or ""

    valid = hmac.compare_digest(token.encode(), expected_token.encode())
    if not expected_token or not valid:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    return "admin"
