from dataclasses import dataclass
from functools import cached_property
from typing import Optional

from fastapi import Header, HTTPException, status

from parkops.scope import Scope, resolve_scope


@dataclass(frozen=True)
class Actor:
    """The authenticated staff member behind a request.

    Sessions are resolved by the upstream auth layer, which forwards the
    result as ``X-Actor-*`` headers.
    """

    id: int
    role: str
    location_id: Optional[int] = None
    session_id: Optional[str] = None

    @cached_property
    def scope(self) -> Scope:
        return resolve_scope(self.role, self.location_id)

    @property
    def session_key(self) -> str:
        return self.session_id or f"actor-{self.id}"


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_location_id: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="not authenticated",
    )
    if not x_actor_id or not x_actor_role:
        raise credentials_exception
    try:
        actor_id = int(x_actor_id)
        location_id = int(x_actor_location_id) if x_actor_location_id else None
    except ValueError:
        raise credentials_exception
    return Actor(id=actor_id, role=x_actor_role, location_id=location_id, session_id=x_session_id)
