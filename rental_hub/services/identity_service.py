from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy.orm import Session

from rental_hub.models.rental_models import User
from rental_hub.services.errors import ForbiddenError


ROLES = {"customer", "vendor", "admin"}
STAFF_ROLES = {"vendor", "admin"}


def get_actor(db: Session, user_id: int | None) -> dict[str, Any] | None:
    if not user_id:
        return None
    user = db.get(User, int(user_id))
    if not user:
        return None
    role = (user.Role or "").strip().lower()
    return {
        "userID": user.UserID,
        "name": user.Name,
        "email": user.Email,
        "role": role if role in ROLES else "customer",
    }


def is_admin(actor: dict[str, Any]) -> bool:
    return actor.get("role") == "admin"


def require_role(actor: dict[str, Any], roles: Iterable[str]) -> None:
    allowed = set(roles)
    if actor.get("role") not in allowed:
        raise ForbiddenError(f"Role {actor.get('role')} is not authorized for this operation.")


def is_owner(actor: dict[str, Any], owner_id: int | None) -> bool:
    return owner_id is not None and int(owner_id) == int(actor.get("userID") or 0)


def require_vendor_or_admin(actor: dict[str, Any], vendor_id: int | None) -> None:
    require_role(actor, STAFF_ROLES)
    if is_admin(actor):
        return
    if not is_owner(actor, vendor_id):
        raise ForbiddenError("Not authorized")


def require_party(actor: dict[str, Any], customer_id: int | None, vendor_id: int | None) -> None:
    if is_admin(actor) or is_owner(actor, customer_id) or is_owner(actor, vendor_id):
        return
    raise ForbiddenError("Not authorized")
