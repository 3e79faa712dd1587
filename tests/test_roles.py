from uuid import uuid4

import pytest

from retailops.roles import RoleRegistry
from retailops.scope import ConflictError, DataScope, NotFoundError, ValidationError


@pytest.fixture
def registry():
    return RoleRegistry()


def test_create_and_get_role(registry):
    actor = uuid4()
    role = registry.create_role(actor, "Cashier", "Front till", "location", "North")
    assert registry.get_role(role.id) is role
    assert role.data_scope is DataScope.LOCATION
    assert role.scope_value == "North"
    entry = registry.audit_log[-1]
    assert (entry.actor_id, entry.action, entry.table) == (actor, "create", "roles")
    assert entry.after == {"id": str(role.id), "name": "Cashier"}


def test_create_role_validation(registry):
    with pytest.raises(ValidationError):
        registry.create_role(uuid4(), "")


def test_duplicate_role_name(registry):
    registry.create_role(uuid4(), "Manager")
    with pytest.raises(ConflictError):
        registry.create_role(uuid4(), "Manager")


def test_list_roles_sorted_and_active(registry):
    actor = uuid4()
    registry.create_role(actor, "Zeta")
    alpha = registry.create_role(actor, "Alpha")
    registry.create_role(actor, "Mid")
    registry.delete_role(actor, alpha.id)
    assert [r.name for r in registry.list_roles()] == ["Mid", "Zeta"]


def test_update_role_changes_and_audits(registry):
    actor = uuid4()
    role = registry.create_role(actor, "Clerk")
    updated = registry.update_role(actor, role.id, name="Senior Clerk", description=None)
    assert updated.name == "Senior Clerk"
    entry = registry.audit_log[-1]
    assert entry.action == "update"
    assert entry.before["name"] == "Clerk"
    assert entry.after["name"] == "Senior Clerk"


def test_update_role_unknown_field(registry):
    role = registry.create_role(uuid4(), "Clerk")
    with pytest.raises(TypeError):
        registry.update_role(uuid4(), role.id, colour="red")


def test_update_missing_role(registry):
    with pytest.raises(NotFoundError):
        registry.update_role(uuid4(), uuid4(), name="Ghost")


def test_delete_role_audit(registry):
    actor = uuid4()
    role = registry.create_role(actor, "Temp")
    registry.delete_role(actor, role.id)
    assert registry.get_role(role.id).is_active is False
    entry = registry.audit_log[-1]
    assert entry.before["is_active"] is True
    assert entry.after["is_active"] is False


def test_permissions_sorted_by_code(registry):
    registry.create_permission("user.read")
    registry.create_permission("order.return", requires_approval=True)
    assert [p.code for p in registry.list_permissions()] == ["order.return", "user.read"]


def test_duplicate_permission_code(registry):
    registry.create_permission("role.list")
    with pytest.raises(ConflictError):
        registry.create_permission("role.list")


def test_update_and_delete_permission(registry):
    perm = registry.create_permission("team.read")
    registry.update_permission(perm.id, requires_approval=True)
    assert registry.get_permission(perm.id).requires_approval is True
    registry.delete_permission(perm.id)
    with pytest.raises(NotFoundError):
        registry.get_permission(perm.id)


def test_bind_and_unbind(registry):
    role = registry.create_role(uuid4(), "Lead")
    perm = registry.create_permission("team.create")
    binding = registry.bind(role.id, perm.id)
    assert registry.bindings == [binding]
    with pytest.raises(ConflictError):
        registry.bind(role.id, perm.id)
    registry.unbind(role.id, perm.id)
    assert registry.bindings == []


def test_bind_missing_records(registry):
    role = registry.create_role(uuid4(), "Lead")
    with pytest.raises(NotFoundError):
        registry.bind(role.id, uuid4())


def test_delete_permission_drops_bindings(registry):
    role = registry.create_role(uuid4(), "Lead")
    perm = registry.create_permission("team.delete")
    registry.bind(role.id, perm.id)
    registry.delete_permission(perm.id)
    assert registry.bindings == []