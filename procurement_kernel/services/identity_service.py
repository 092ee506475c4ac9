"""
UserDirectory -- database-backed IdentityProvider.

Resolves an actor id to its role and department from the ``users``
table.  Authentication is out of scope: callers pass an actor id they
have already authenticated.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.domain.approval import Role
from procurement_kernel.domain.identity import ActorIdentity
from procurement_kernel.exceptions import ActorNotFoundError, DepartmentNotFoundError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.department import DepartmentModel
from procurement_kernel.models.user import UserModel
from procurement_kernel.services.base import BaseService

logger = get_logger("services.identity")


class UserDirectory(BaseService):
    """Flush-only user directory."""

    def resolve(self, actor_id: UUID) -> ActorIdentity:
        """
        Raises:
            ActorNotFoundError: Unknown or inactive actor.
        """
        user = self.session.get(UserModel, actor_id)
        if user is None or not user.is_active:
            raise ActorNotFoundError(str(actor_id))
        return user.to_identity()

    def find_by_role(self, role: Role, department_id: UUID | None = None) -> list[ActorIdentity]:
        """Active users holding ``role``, optionally within one department."""
        stmt = select(UserModel).where(
            UserModel.role == Role(role).value,
            UserModel.is_active.is_(True),
        )
        if department_id is not None:
            stmt = stmt.where(UserModel.department_id == department_id)
        users = self.session.execute(stmt.order_by(UserModel.email)).scalars().all()
        return [user.to_identity() for user in users]

    def register_user(
        self,
        name: str,
        email: str,
        role: Role,
        department_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> ActorIdentity:
        """Create a user, or update the one with the same email."""
        if department_id is not None and self.session.get(DepartmentModel, department_id) is None:
            raise DepartmentNotFoundError(str(department_id))

        user = self.session.execute(
            select(UserModel).where(UserModel.email == email)
        ).scalar_one_or_none()
        if user is None:
            user = UserModel(email=email)
            if user_id is not None:
                user.id = user_id
            self.session.add(user)
        user.name = name
        user.role = Role(role).value
        user.department_id = department_id
        user.is_active = True
        self.session.flush()
        logger.info(
            "user_registered",
            extra={"user_id": str(user.id), "role": user.role},
        )
        return user.to_identity()

    def deactivate_user(self, user_id: UUID) -> None:
        user = self.session.get(UserModel, user_id)
        if user is None:
            raise ActorNotFoundError(str(user_id))
        user.is_active = False
        self.session.flush()
