"""
Shared FastAPI dependencies:
- Service container
- Caller identity from gateway headers
"""

from fastapi import Depends, HTTPException, Header, Request

from core.access import require_admin
from core.models import Caller, UserRole
from core.services import Services


def get_services(request: Request) -> Services:
    """Service container built by the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


def get_caller(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Caller:
    """
    Read the caller identity set by the upstream gateway.
    Raises 401 if missing/invalid.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    if user_id < 1:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")

    try:
        role = UserRole((x_user_role or UserRole.USER.value).upper())
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Role header")
    return Caller(user_id=user_id, role=role)


def get_admin(caller: Caller = Depends(get_caller)) -> Caller:
    """Callers with the ADMIN or SUPER_ADMIN role."""
    return require_admin(caller)
