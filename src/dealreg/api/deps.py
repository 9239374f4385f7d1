"""FastAPI dependencies for the acting staff user and app.state services.

The staff user is identified by the X-Staff-Id header and loaded from the
deal store. Session mechanics live in front of this service; this layer only
resolves who is acting and what role they hold.
"""

from __future__ import annotations

from typing import Any

from fastapi import Header, HTTPException, Request, status

from src.dealreg.deals.schemas import StaffUser
from src.dealreg.deals.store import StoreError


def get_service(request: Request, name: str) -> Any:
    """Retrieve a service from app.state, 503 if it is not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service not initialized: {name}",
        )
    return service


async def get_current_staff(
    request: Request,
    x_staff_id: str | None = Header(default=None),
) -> StaffUser:
    """Resolve the acting staff user from the X-Staff-Id header.

    Raises:
        HTTPException(401): Header missing or unknown staff id.
        HTTPException(503): Store unavailable.
    """
    if not x_staff_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Staff-Id header",
        )

    store = get_service(request, "deal_store")
    try:
        staff = await store.get_staff_user(x_staff_id)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    if staff is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown staff user",
        )
    return staff
