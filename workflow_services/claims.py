"""
Role claims providers (``workflow_services.claims``).

The identity provider owns role membership; the engine only asks two
questions: which roles does an actor hold, and which actors hold any of
these roles (to know whom to tell that a role-based step is waiting).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from workflow_kernel.models.user_role import UserRoleModel


class StaticClaimsProvider:
    """Claims from a fixed ``{actor_id: roles}`` mapping."""

    def __init__(self, roles_by_actor: Mapping[str, Iterable[str]] | None = None):
        self._roles = {
            actor: frozenset(roles) for actor, roles in (roles_by_actor or {}).items()
        }

    def grant(self, actor_id: str, *roles: str) -> None:
        self._roles[actor_id] = self._roles.get(actor_id, frozenset()) | frozenset(roles)

    def roles_for(self, actor_id: str) -> frozenset[str]:
        return self._roles.get(actor_id, frozenset())

    def actors_with_roles(self, roles: Iterable[str]) -> tuple[str, ...]:
        wanted = frozenset(roles)
        return tuple(sorted(a for a, held in self._roles.items() if held & wanted))


class SqlClaimsProvider:
    """Claims read from the ``user_roles`` table, one short session per query."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def roles_for(self, actor_id: str) -> frozenset[str]:
        with self._session_factory() as session:
            return frozenset(session.scalars(
                select(UserRoleModel.role).where(UserRoleModel.user_id == actor_id)
            ))

    def actors_with_roles(self, roles: Iterable[str]) -> tuple[str, ...]:
        wanted = list(roles)
        if not wanted:
            return ()
        with self._session_factory() as session:
            return tuple(session.scalars(
                select(UserRoleModel.user_id)
                .where(UserRoleModel.role.in_(wanted))
                .distinct()
                .order_by(UserRoleModel.user_id)
            ))

    def grant(self, actor_id: str, *roles: str) -> None:
        """Mirror role claims into ``user_roles`` (idempotent)."""
        with self._session_factory() as session:
            held = set(session.scalars(
                select(UserRoleModel.role).where(UserRoleModel.user_id == actor_id)
            ))
            for role in roles:
                if role not in held:
                    session.add(UserRoleModel(user_id=actor_id, role=role))
                    held.add(role)
            session.commit()
