"""
SqlUserDirectory -- UserDirectory backed by the ``users`` table.

Responsibility:
    Answers "which active users hold role X", "which roles does user Y
    hold", and "who is the first active admin" for step assignment,
    decision authority and the escalation sweep.

Architecture position:
    Kernel > Services.  Read-only.

Invariants enforced:
    - Deterministic selection: users are always ordered by ``user_id``.
    - Inactive users never appear in any answer.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.operations import Role
from approval_kernel.models.user import UserModel


class SqlUserDirectory:
    def __init__(self, session: Session):
        self._session = session

    def active_users_with_role(self, role: Role) -> tuple[str, ...]:
        rows = self._session.execute(
            select(UserModel.user_id)
            .where(UserModel.role == Role(role).value, UserModel.is_active.is_(True))
            .order_by(UserModel.user_id)
        ).scalars().all()
        return tuple(rows)

    def get_user_roles(self, user_id: str) -> tuple[Role, ...]:
        rows = self._session.execute(
            select(UserModel.role)
            .where(UserModel.user_id == user_id, UserModel.is_active.is_(True))
        ).scalars().all()
        return tuple(Role(r) for r in rows)

    def first_active_admin(self) -> str | None:
        admins = self.active_users_with_role(Role.ADMIN)
        return admins[0] if admins else None
