"""User accounts and scope-filtered user lookups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID, uuid4

from retailops.scope import ConflictError, NotFoundError, ScopeContext, ValidationError


def _now() -> datetime:
    return datetime.now(timezone.utc)


def gov_id_last4(gov_id: str | None) -> str | None:
    """Return the last four characters of a government ID, or the whole ID if shorter."""
    if gov_id is None:
        return None
    return gov_id[-4:] if len(gov_id) >= 4 else gov_id


@dataclass
class User:
    """A user account as exposed to API callers."""

    username: str
    role_id: UUID | None = None
    gov_id_last4: str | None = None
    department: str | None = None
    location: str | None = None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)


class UserDirectory:
    """In-memory store of user accounts."""

    def __init__(self) -> None:
        self._users: dict[UUID, User] = {}

    def create_user(
        self,
        username: str,
        role_id: UUID | None = None,
        gov_id: str | None = None,
        department: str | None = None,
        location: str | None = None,
    ) -> User:
        """Create a user; only the last four characters of the government ID are kept."""
        if not username or not username.strip():
            raise ValidationError("username must not be empty")
        if any(u.username == username for u in self._users.values()):
            raise ConflictError(f"Username '{username}' already exists")
        user = User(
            username=username,
            role_id=role_id,
            gov_id_last4=gov_id_last4(gov_id),
            department=department,
            location=location,
        )
        self._users[user.id] = user
        return user

    def list_users(self, ctx: ScopeContext) -> list[User]:
        """Active users within the caller's data scope."""
        return [
            user
            for user in self._users.values()
            if user.is_active and ctx.matches(user.id, user.department, user.location)
        ]

    def get_user(self, ctx: ScopeContext, user_id: UUID) -> User:
        """Fetch one user, raising if it is missing or outside the caller's scope."""
        try:
            user = self._users[user_id]
        except KeyError:
            raise NotFoundError("User not found") from None
        ctx.enforce_scope(user.id, user.department, user.location)
        return user