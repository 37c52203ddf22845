"""
Module: approval_kernel.models.user
Responsibility: Minimal user/role directory read by step assignment and
    decision authority checks.
Architecture position: Kernel > Models.  May import from db/base.py only.

The wider application owns user management; the approval engine only
reads this table through the UserDirectory protocol.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class UserModel(Base):
    """A user identity with a single role."""

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'finance', 'purchasing', 'sales', 'warehouse', 'worker')",
            name="ck_users_valid_role",
        ),
        Index("idx_users_role_active", "role", "is_active", "user_id"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.user_id} role={self.role} active={self.is_active}>"
