"""Actor identity as resolved by the identity collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from procurement_kernel.domain.approval import Role


@dataclass(frozen=True)
class ActorIdentity:
    actor_id: UUID
    role: Role
    department_id: UUID | None
    name: str = ""
    email: str | None = None


class IdentityProvider(Protocol):
    """Resolves an actor to a role and department.

    ``resolve`` raises ActorNotFoundError for unknown or inactive actors.
    """

    def resolve(self, actor_id: UUID) -> ActorIdentity:
        ...

    def find_by_role(self, role: Role, department_id: UUID | None = None) -> list[ActorIdentity]:
        ...
