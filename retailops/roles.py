"""Roles, permission points and the bindings between them, with an audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from retailops.scope import ConflictError, DataScope, NotFoundError, ValidationError


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _apply_changes(record: Any, allowed: frozenset[str], changes: dict[str, Any]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise TypeError(f"unexpected fields: {', '.join(sorted(unknown))}")
    for key, value in changes.items():
        if value is not None:
            setattr(record, key, value)


@dataclass(frozen=True)
class AuditEntry:
    """One recorded write operation."""

    actor_id: UUID
    action: str
    table: str
    record_id: UUID | None
    before: dict | None
    after: dict | None
    created_at: datetime = field(default_factory=_now)


@dataclass
class Role:
    """A named role with the data scope it grants."""

    name: str
    description: str | None = None
    data_scope: DataScope = DataScope.ALL
    scope_value: str | None = None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        self.data_scope = DataScope(self.data_scope)


@dataclass
class PermissionPoint:
    """A permission code that roles may be granted."""

    code: str
    description: str | None = None
    requires_approval: bool = False
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class RoleBinding:
    """A grant of one permission point to one role."""

    role_id: UUID
    permission_point_id: UUID
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)


_ROLE_FIELDS = frozenset({"name", "description", "data_scope", "scope_value", "is_active"})
_PERMISSION_FIELDS = frozenset({"code", "description", "requires_approval"})


class RoleRegistry:
    """In-memory store of roles, permission points and role bindings."""

    def __init__(self) -> None:
        self._roles: dict[UUID, Role] = {}
        self._permissions: dict[UUID, PermissionPoint] = {}
        self.bindings: list[RoleBinding] = []
        self.audit_log: list[AuditEntry] = []

    def _audit(self, actor_id, action, record_id, before, after) -> None:
        self.audit_log.append(AuditEntry(actor_id, action, "roles", record_id, before, after))

    # --- roles ---

    def create_role(
        self,
        actor_id: UUID,
        name: str,
        description: str | None = None,
        data_scope: DataScope | str = DataScope.ALL,
        scope_value: str | None = None,
    ) -> Role:
        if not name or not name.strip():
            raise ValidationError("name must not be empty")
        if any(r.name == name for r in self._roles.values()):
            raise ConflictError(f"Role '{name}' already exists")
        role = Role(name, description, DataScope(data_scope), scope_value)
        self._roles[role.id] = role
        self._audit(actor_id, "create", role.id, None, {"id": str(role.id), "name": role.name})
        return role

    def get_role(self, role_id: UUID) -> Role:
        try:
            return self._roles[role_id]
        except KeyError:
            raise NotFoundError("Role not found") from None

    def list_roles(self) -> list[Role]:
        """Active roles ordered by name."""
        return sorted((r for r in self._roles.values() if r.is_active), key=lambda r: r.name)

    def update_role(self, actor_id: UUID, role_id: UUID, **kwargs: Any) -> Role:
        """Change the given fields; fields passed as None are left alone."""
        role = self.get_role(role_id)
        name = kwargs.get("name")
        if name is not None and not name.strip():
            raise ValidationError("name must not be empty")
        before = {"id": str(role.id), "name": role.name, "is_active": role.is_active}
        if kwargs.get("data_scope") is not None:
            kwargs["data_scope"] = DataScope(kwargs["data_scope"])
        _apply_changes(role, _ROLE_FIELDS, kwargs)
        role.updated_at = _now()
        after = {"id": str(role.id), "name": role.name, "is_active": role.is_active}
        self._audit(actor_id, "update", role_id, before, after)
        return role

    def delete_role(self, actor_id: UUID, role_id: UUID) -> None:
        """Deactivate a role; the role record itself is kept."""
        role = self._roles.get(role_id)
        if role is not None:
            role.is_active = False
            role.updated_at = _now()
        self._audit(
            actor_id,
            "delete",
            role_id,
            {"id": str(role_id), "is_active": True},
            {"id": str(role_id), "is_active": False},
        )

    # --- permission points ---

    def create_permission(
        self, code: str, description: str | None = None, requires_approval: bool = False
    ) -> PermissionPoint:
        if not code or not code.strip():
            raise ValidationError("code must not be empty")
        if any(p.code == code for p in self._permissions.values()):
            raise ConflictError(f"Permission '{code}' already exists")
        perm = PermissionPoint(code, description, requires_approval)
        self._permissions[perm.id] = perm
        return perm

    def get_permission(self, permission_id: UUID) -> PermissionPoint:
        try:
            return self._permissions[permission_id]
        except KeyError:
            raise NotFoundError("Permission point not found") from None

    def list_permissions(self) -> list[PermissionPoint]:
        """All permission points ordered by code."""
        return sorted(self._permissions.values(), key=lambda p: p.code)

    def update_permission(self, permission_id: UUID, **kwargs: Any) -> PermissionPoint:
        perm = self.get_permission(permission_id)
        code = kwargs.get("code")
        if code is not None:
            if not code.strip():
                raise ValidationError("code must not be empty")
            if any(p.code == code and p.id != perm.id for p in self._permissions.values()):
                raise ConflictError(f"Permission '{code}' already exists")
        _apply_changes(perm, _PERMISSION_FIELDS, kwargs)
        return perm

    def delete_permission(self, permission_id: UUID) -> None:
        """Remove a permission point and every binding that grants it."""
        self._permissions.pop(permission_id, None)
        self.bindings = [b for b in self.bindings if b.permission_point_id != permission_id]

    # --- bindings ---

    def bind(self, role_id: UUID, permission_point_id: UUID) -> RoleBinding:
        self.get_role(role_id)
        self.get_permission(permission_point_id)
        if any(
            b.role_id == role_id and b.permission_point_id == permission_point_id
            for b in self.bindings
        ):
            raise ConflictError("Permission already bound to role")
        binding = RoleBinding(role_id, permission_point_id)
        self.bindings.append(binding)
        return binding

    def unbind(self, role_id: UUID, permission_point_id: UUID) -> None:
        self.bindings = [
            b
            for b in self.bindings
            if not (b.role_id == role_id and b.permission_point_id == permission_point_id)
        ]