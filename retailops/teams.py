"""Teams and their membership, filtered by the caller's data scope."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from retailops.roles import AuditEntry
from retailops.scope import NotFoundError, ScopeContext, ValidationError


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Team:
    """A team owned by the user who created it."""

    name: str
    created_by: UUID
    description: str | None = None
    department: str | None = None
    location: str | None = None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class TeamMember:
    """A participant's membership of a team."""

    team_id: UUID
    participant_id: UUID
    role_label: str | None = None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    joined_at: datetime = field(default_factory=_now)
    left_at: datetime | None = None


_TEAM_FIELDS = frozenset({"name", "description", "department", "location", "is_active"})


class TeamStore:
    """In-memory store of teams and team members."""

    def __init__(self) -> None:
        self._teams: dict[UUID, Team] = {}
        self._members: list[TeamMember] = []
        self.audit_log: list[AuditEntry] = []

    def _scoped(self, ctx: ScopeContext, team_id: UUID) -> Team:
        try:
            team = self._teams[team_id]
        except KeyError:
            raise NotFoundError("Team not found") from None
        ctx.enforce_scope(team.created_by, team.department, team.location)
        return team

    def _active_members(self, team_id: UUID) -> list[TeamMember]:
        return [m for m in self._members if m.team_id == team_id and m.is_active]

    def create(
        self,
        ctx: ScopeContext,
        name: str,
        description: str | None = None,
        department: str | None = None,
        location: str | None = None,
    ) -> Team:
        if not name or not name.strip():
            raise ValidationError("name must not be empty")
        team = Team(name, ctx.user_id, description, department, location)
        self._teams[team.id] = team
        self.audit_log.append(
            AuditEntry(ctx.user_id, "create", "teams", team.id, None,
                       {"id": str(team.id), "name": team.name})
        )
        return team

    def list(self, ctx: ScopeContext) -> list[Team]:
        """Active teams in the caller's scope, ordered by name."""
        return sorted(
            (
                t
                for t in self._teams.values()
                if t.is_active and ctx.matches(t.created_by, t.department, t.location)
            ),
            key=lambda t: t.name,
        )

    def get(self, ctx: ScopeContext, team_id: UUID) -> tuple[Team, list[TeamMember]]:
        """A team together with its active members."""
        team = self._scoped(ctx, team_id)
        return team, self._active_members(team_id)

    def update(self, ctx: ScopeContext, team_id: UUID, **kwargs: Any) -> Team:
        """Change the given fields; fields passed as None are left alone."""
        team = self._scoped(ctx, team_id)
        unknown = set(kwargs) - _TEAM_FIELDS
        if unknown:
            raise TypeError(f"unexpected fields: {', '.join(sorted(unknown))}")
        name = kwargs.get("name")
        if name is not None and not name.strip():
            raise ValidationError("name must not be empty")
        for key, value in kwargs.items():
            if value is not None:
                setattr(team, key, value)
        team.updated_at = _now()
        return team

    def deactivate(self, ctx: ScopeContext, team_id: UUID) -> None:
        team = self._scoped(ctx, team_id)
        team.is_active = False
        team.updated_at = _now()

    def add_member(
        self,
        ctx: ScopeContext,
        team_id: UUID,
        participant_id: UUID,
        role_label: str | None = None,
    ) -> TeamMember:
        self._scoped(ctx, team_id)
        member = TeamMember(team_id, participant_id, role_label)
        self._members.append(member)
        return member

    def remove_member(self, ctx: ScopeContext, team_id: UUID, participant_id: UUID) -> None:
        """Mark the participant's memberships of the team as ended."""
        self._scoped(ctx, team_id)
        now = _now()
        for member in self._members:
            if member.team_id == team_id and member.participant_id == participant_id:
                member.is_active = False
                member.left_at = now

    def list_members(self, ctx: ScopeContext, team_id: UUID) -> list[TeamMember]:
        self._scoped(ctx, team_id)
        return self._active_members(team_id)