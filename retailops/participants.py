"""Participants, their tags and bulk operations, filtered by the caller's data scope."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID, uuid4

from retailops.roles import AuditEntry
from retailops.scope import NotFoundError, ScopeContext, ValidationError

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tag(name: str) -> str:
    """Canonical form of a tag name: trimmed and lower-cased."""
    return name.strip().lower()


@dataclass
class Participant:
    """A person taking part in programmes, owned by the user who created the record."""

    first_name: str
    last_name: str
    created_by: UUID
    email: str | None = None
    phone: str | None = None
    department: str | None = None
    location: str | None = None
    employee_id: str | None = None
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class SearchParams:
    """Filters and paging for listing participants."""

    q: str | None = None
    department: str | None = None
    location: str | None = None
    is_active: bool | None = None
    tag: str | None = None
    page: int | None = None
    per_page: int | None = None


_PARTICIPANT_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "email",
        "phone",
        "department",
        "location",
        "employee_id",
        "notes",
        "is_active",
    }
)
_SEARCH_FIELDS = ("first_name", "last_name", "email", "employee_id")


def _require_name(value: str | None, label: str) -> None:
    if value is not None and not value.strip():
        raise ValidationError(f"{label} must not be empty")


class ParticipantStore:
    """In-memory store of participants and the tags linked to them."""

    def __init__(self) -> None:
        self._participants: dict[UUID, Participant] = {}
        self._tags: set[str] = set()
        self._links: dict[UUID, set[str]] = {}
        self.audit_log: list[AuditEntry] = []

    # --- helpers ---

    def _audit(self, actor_id, action, table, record_id, before, after) -> None:
        self.audit_log.append(AuditEntry(actor_id, action, table, record_id, before, after))

    def _scoped(self, ctx: ScopeContext, participant_id: UUID) -> Participant:
        try:
            participant = self._participants[participant_id]
        except KeyError:
            raise NotFoundError("Participant not found") from None
        ctx.enforce_scope(participant.created_by, participant.department, participant.location)
        return participant

    def _apply_tags(self, participant_id: UUID, tags: Iterable[str]) -> list[str]:
        """Create missing tags, link them to the participant and return the names applied."""
        applied = []
        linked = self._links.setdefault(participant_id, set())
        for name in tags:
            tag = normalize_tag(name)
            if not tag:
                continue
            self._tags.add(tag)
            linked.add(tag)
            applied.append(tag)
        return applied

    def _tag_names(self, participant_id: UUID) -> list[str]:
        return sorted(self._links.get(participant_id, ()))

    # --- participants ---

    def create(
        self,
        ctx: ScopeContext,
        first_name: str,
        last_name: str,
        email: str | None = None,
        phone: str | None = None,
        department: str | None = None,
        location: str | None = None,
        employee_id: str | None = None,
        notes: str | None = None,
        tags: Iterable[str] = (),
    ) -> tuple[Participant, list[str]]:
        """Create a participant and return it with the tag names that were applied."""
        if first_name is None or last_name is None:
            raise ValidationError("first_name and last_name are required")
        _require_name(first_name, "first_name")
        _require_name(last_name, "last_name")
        participant = Participant(
            first_name=first_name,
            last_name=last_name,
            created_by=ctx.user_id,
            email=email,
            phone=phone,
            department=department,
            location=location,
            employee_id=employee_id,
            notes=notes,
        )
        self._participants[participant.id] = participant
        applied = self._apply_tags(participant.id, tags)
        self._audit(
            ctx.user_id,
            "create",
            "participants",
            participant.id,
            None,
            {"id": str(participant.id), "name": participant.full_name},
        )
        return participant, applied

    def list(self, ctx: ScopeContext, params: SearchParams | None = None) -> list[Participant]:
        """Participants in the caller's scope that match the filters, by last then first name."""
        params = params or SearchParams()
        page = max(params.page if params.page is not None else 1, 1)
        per_page = min(
            params.per_page if params.per_page is not None else DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
        )
        if per_page < 0:
            raise ValidationError("per_page must not be negative")
        offset = (page - 1) * per_page
        wanted_active = True if params.is_active is None else params.is_active
        needle = params.q.casefold() if params.q is not None else None

        def keep(p: Participant) -> bool:
            if not ctx.matches(p.created_by, p.department, p.location):
                return False
            if params.department is not None and p.department != params.department:
                return False
            if params.location is not None and p.location != params.location:
                return False
            if p.is_active != wanted_active:
                return False
            if needle is not None and not any(
                needle in value.casefold()
                for value in (getattr(p, name) for name in _SEARCH_FIELDS)
                if value is not None
            ):
                return False
            if params.tag is not None and params.tag not in self._links.get(p.id, ()):
                return False
            return True

        matches = sorted(
            filter(keep, self._participants.values()),
            key=lambda p: (p.last_name, p.first_name),
        )
        return matches[offset : offset + per_page]

    def get(self, ctx: ScopeContext, participant_id: UUID) -> tuple[Participant, list[str]]:
        """A participant together with its tag names in alphabetical order."""
        participant = self._scoped(ctx, participant_id)
        return participant, self._tag_names(participant_id)

    def update(self, ctx: ScopeContext, participant_id: UUID, **kwargs: Any) -> Participant:
        """Change the given fields; fields passed as None are left alone."""
        unknown = set(kwargs) - _PARTICIPANT_FIELDS
        if unknown:
            raise TypeError(f"unexpected fields: {', '.join(sorted(unknown))}")
        _require_name(kwargs.get("first_name"), "first_name")
        _require_name(kwargs.get("last_name"), "last_name")
        participant = self._scoped(ctx, participant_id)
        before = {
            "id": str(participant.id),
            "name": participant.full_name,
            "is_active": participant.is_active,
        }
        for key, value in kwargs.items():
            if value is not None:
                setattr(participant, key, value)
        participant.updated_at = _now()
        after = {
            "id": str(participant.id),
            "name": participant.full_name,
            "is_active": participant.is_active,
        }
        self._audit(ctx.user_id, "update", "participants", participant_id, before, after)
        return participant

    def deactivate(self, ctx: ScopeContext, participant_id: UUID) -> None:
        participant = self._scoped(ctx, participant_id)
        participant.is_active = False
        participant.updated_at = _now()

    # --- tags ---

    def set_tags(self, ctx: ScopeContext, participant_id: UUID, tags: Iterable[str]) -> list[str]:
        """Replace the participant's tags and return the names applied."""
        self._scoped(ctx, participant_id)
        self._links[participant_id] = set()
        return self._apply_tags(participant_id, tags)

    def get_tags(self, ctx: ScopeContext, participant_id: UUID) -> list[str]:
        self._scoped(ctx, participant_id)
        return self._tag_names(participant_id)

    # --- bulk operations ---

    def bulk_tag(
        self, ctx: ScopeContext, participant_ids: Iterable[UUID], tags: Iterable[str]
    ) -> int:
        """Add tags to every participant; nothing changes unless all are in scope."""
        ids = list(participant_ids)
        tag_list = list(tags)
        for pid in ids:
            self._scoped(ctx, pid)
        affected = sum(1 for pid in ids if self._apply_tags(pid, tag_list))
        self._audit(
            ctx.user_id,
            "update",
            "participant_tags",
            None,
            None,
            {"action": "bulk_tag", "targets": len(ids), "tags": tag_list},
        )
        return affected

    def bulk_deactivate(self, ctx: ScopeContext, participant_ids: Iterable[UUID]) -> int:
        """Deactivate every participant; nothing changes unless all are in scope."""
        ids = list(participant_ids)
        for pid in ids:
            self._scoped(ctx, pid)
        before = {"targets": len(ids), "action": "bulk_deactivate"}
        now = _now()
        unique = set(ids)
        for pid in unique:
            participant = self._participants[pid]
            participant.is_active = False
            participant.updated_at = now
        affected = len(unique)
        after = {"targets": len(ids), "affected": affected, "action": "bulk_deactivate"}
        self._audit(ctx.user_id, "delete", "participants", None, before, after)
        return affected