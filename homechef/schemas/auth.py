"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from homechef.db.enums import Role


class Principal(BaseModel):
    """
    Verified caller identity.

    Returned by get_current_principal and passed to service commands for
    participant and role checks.
    """
    user_id: UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
