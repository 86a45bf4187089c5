from __future__ import annotations

from collections.abc import Callable, Generator

from fastapi import Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from placetrack.config import get_settings
from placetrack.db.session import get_db_session
from placetrack.types import Identity, RequestMeta


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_identity(request: Request) -> Identity:
    """Identity asserted by the upstream auth provider through request headers."""
    settings = get_settings()
    user_id = request.headers.get(settings.user_id_header, "").strip()
    role = request.headers.get(settings.user_role_header, "").strip()
    if not user_id or not role:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return Identity(user_id=user_id, role=role)
    except ValidationError as exc:
        raise HTTPException(status_code=401, detail="Invalid identity headers") from exc


def require_roles(*roles: str) -> Callable[[Identity], Identity]:
    allowed = frozenset(roles)

    def _check(identity: Identity = Depends(get_identity)) -> Identity:
        if identity.role not in allowed:
            raise HTTPException(status_code=403, detail="You do not have permission to perform this action")
        return identity

    return _check


def get_request_meta(request: Request) -> RequestMeta:
    client = request.client
    return RequestMeta(
        ip_address=client.host if client else "",
        user_agent=request.headers.get("user-agent", ""),
    )


def get_session_id(request: Request) -> str:
    return request.headers.get(get_settings().session_id_header, "").strip()
