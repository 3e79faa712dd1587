from uuid import uuid4

import pytest

from retailops.scope import DataScope, ForbiddenError, NotFoundError, ScopeContext, ValidationError
from retailops.teams import TeamStore


@pytest.fixture
def admin():
    return ScopeContext(uuid4())


@pytest.fixture
def store():
    return TeamStore()


def test_create_records_owner_and_audit(store, admin):
    team = store.create(admin, "Floor", department="Sales")
    assert team.created_by == admin.user_id
    entry = store.audit_log[-1]
    assert entry.action == "create"
    assert entry.after == {"id": str(team.id), "name": "Floor"}


def test_create_requires_name(store, admin):
    with pytest.raises(ValidationError):
        store.create(admin, "")


def test_list_sorted_and_scoped(store, admin):
    store.create(admin, "Zulu", department="Sales")
    store.create(admin, "Alpha", department="Sales")
    store.create(admin, "Bravo", department="Finance")
    ctx = ScopeContext(uuid4(), DataScope.DEPARTMENT, department="Sales")
    assert [t.name for t in store.list(ctx)] == ["Alpha", "Zulu"]
    assert [t.name for t in store.list(admin)] == ["Alpha", "Bravo", "Zulu"]


def test_individual_scope_sees_own_teams(store, admin):
    me = ScopeContext(uuid4(), DataScope.INDIVIDUAL)
    mine = store.create(me, "Mine")
    store.create(admin, "Theirs")
    assert store.list(me) == [mine]


def test_get_out_of_scope(store, admin):
    team = store.create(admin, "North Crew", location="North")
    ctx = ScopeContext(uuid4(), DataScope.LOCATION, location="South")
    with pytest.raises(ForbiddenError):
        store.get(ctx, team.id)


def test_get_missing(store, admin):
    with pytest.raises(NotFoundError):
        store.get(admin, uuid4())


def test_update_and_deactivate(store, admin):
    team = store.create(admin, "Old")
    store.update(admin, team.id, name="New", location=None)
    assert store.get(admin, team.id)[0].name == "New"
    store.deactivate(admin, team.id)
    assert store.list(admin) == []


def test_update_unknown_field(store, admin):
    team = store.create(admin, "Crew")
    with pytest.raises(TypeError):
        store.update(admin, team.id, budget=5)


def test_members_add_and_remove(store, admin):
    team = store.create(admin, "Crew")
    p1, p2 = uuid4(), uuid4()
    store.add_member(admin, team.id, p1, "lead")
    store.add_member(admin, team.id, p2)
    assert [m.participant_id for m in store.list_members(admin, team.id)] == [p1, p2]
    store.remove_member(admin, team.id, p1)
    members = store.list_members(admin, team.id)
    assert [m.participant_id for m in members] == [p2]
    _, detail_members = store.get(admin, team.id)
    assert detail_members == members


def test_removed_member_has_left_at(store, admin):
    team = store.create(admin, "Crew")
    member = store.add_member(admin, team.id, uuid4())
    store.remove_member(admin, team.id, member.participant_id)
    assert member.is_active is False
    assert member.left_at >= member.joined_at


def test_add_member_out_of_scope(store, admin):
    team = store.create(admin, "Crew", department="Finance")
    ctx = ScopeContext(uuid4(), DataScope.DEPARTMENT, department="Sales")
    with pytest.raises(ForbiddenError):
        store.add_member(ctx, team.id, uuid4())