"""
Acting-user dependencies.

Authentication happens upstream; the gateway forwards the verified user id
and role as headers and this service trusts them as given.
"""

from typing import Optional

from fastapi import Depends, Header
from pydantic import BaseModel

from errors import PermissionDenied, Unauthenticated


class Actor(BaseModel):
    user_id: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    return Actor(user_id=x_user_id or None, role=(x_user_role or "user").lower())


def require_actor(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.user_id is None:
        raise Unauthenticated("Authentication required")
    return actor


def require_admin(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_admin:
        raise PermissionDenied("Admin access required")
    return actor
