"""
Module: workflow_kernel.models.user_role
Responsibility: Role claims mirrored from the identity provider, read by
    SqlClaimsProvider.
Architecture position: Kernel > Models.
"""

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base


class UserRoleModel(Base):
    """One (user, role) claim."""

    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        Index("ix_user_roles_role", "role"),
    )

    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id}:{self.role}>"
