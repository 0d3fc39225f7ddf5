import enum
from dataclasses import dataclass

from rental_engine.errors import AuthorizationError


class Role(enum.Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as supplied by the identity service."""
    id: str
    role: Role


def is_admin(actor: Actor) -> bool:
    return actor.role is Role.ADMIN


def is_owning_customer(actor: Actor, order) -> bool:
    return actor.role is Role.CUSTOMER and actor.id == order.customer_id


def is_owning_vendor(actor: Actor, order) -> bool:
    return actor.role is Role.VENDOR and actor.id == order.vendor_id


def require_vendor(actor: Actor, order, action: str):
    if not (is_admin(actor) or is_owning_vendor(actor, order)):
        raise AuthorizationError(actor.id, action)


def require_customer(actor: Actor, order, action: str):
    if not (is_admin(actor) or is_owning_customer(actor, order)):
        raise AuthorizationError(actor.id, action)


def require_party(actor: Actor, order, action: str):
    if not (is_admin(actor) or is_owning_customer(actor, order) or is_owning_vendor(actor, order)):
        raise AuthorizationError(actor.id, action)
