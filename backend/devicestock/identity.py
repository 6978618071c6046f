from __future__ import annotations

from dataclasses import dataclass

from .errors import Unauthorized, ValidationError


@dataclass(frozen=True)
class Actor:
    """
    Identity context supplied by the caller for every mutating operation.

    The core never infers identity: authentication and permission checks
    happen upstream, and the result is passed in explicitly.
    """
    id: int
    name: str
    email: str
    company_id: int

    def as_change_author(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}


def require_actor(actor: Actor | None) -> Actor:
    if actor is None or actor.id is None or not actor.name or actor.company_id is None:
        raise ValidationError("Complete actor identity (id, name, company) is required")
    return actor


def ensure_same_company(actor: Actor, company_id: int, *, entity: str, entity_id: int | None = None) -> None:
    """Raise Unauthorized when an actor reaches across the tenant boundary."""
    if actor.company_id != company_id:
        raise Unauthorized(
            f"{entity} {entity_id} does not belong to company {actor.company_id}",
            entity=entity,
            entity_id=entity_id,
        )
