"""
Module: workflow_kernel.models.notification
Responsibility: In-app notification inbox rows written by InAppNotifier.
Architecture position: Kernel > Models.

A row is created per recipient per applied transition.  ``is_read`` is the
only column the portal ever changes.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UTCDateTime


class NotificationModel(Base):
    """One in-app notification for one user."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # e.g. "approval_required", "request_approved", "stage_assigned"
    type: Mapped[str] = mapped_column(String(50), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Mapped to the "metadata" column; the attribute name is reserved
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<Notification {self.type} -> {self.user_id}>"
