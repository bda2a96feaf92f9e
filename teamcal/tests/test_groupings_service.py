import pytest

from teamcal.errors import ForbiddenError, NotFoundError, ValidationError
from teamcal.groupings_service import service


@pytest.fixture
def admin(store):
    return store.add_user("Root", role="admin")


@pytest.fixture
def user(store):
    return store.add_user("Uma")


def test_private_groupings_are_visible_to_their_owner_only(store, admin, user):
    shared = service.create_grouping(store, admin, "Engineering", "#112233")
    mine = service.create_grouping(store, user, "Errands", private=True)

    assert {g["id"] for g in service.list_groupings(store, user)} == {shared["id"], mine["id"]}
    assert {g["id"] for g in service.list_groupings(store, admin)} == {shared["id"]}


@pytest.mark.parametrize("name,color", [("", None), ("x" * 101, None), ("Ops", "red"), ("Ops", "#12345")])
def test_create_grouping_validation(store, user, name, color):
    with pytest.raises(ValidationError):
        service.create_grouping(store, user, name, color)


@pytest.mark.parametrize("private", ["false", "true", 1, None])
def test_private_flag_must_be_boolean(store, user, private):
    with pytest.raises(ValidationError):
        service.create_grouping(store, user, "Errands", private=private)

    assert service.list_groupings(store, user) == []


def test_delete_rules(store, admin, user):
    shared = service.create_grouping(store, admin, "Engineering")
    mine = service.create_grouping(store, user, "Errands", private=True)

    with pytest.raises(ForbiddenError):
        service.delete_grouping(store, user, shared["id"])
    with pytest.raises(NotFoundError):
        service.delete_grouping(store, admin, mine["id"])

    service.delete_grouping(store, user, mine["id"])
    service.delete_grouping(store, admin, shared["id"])
    assert store.groupings == {}


def test_group_admin_assignment_is_admin_only_and_idempotent(store, admin, user):
    grouping = service.create_grouping(store, admin, "Engineering")

    with pytest.raises(ForbiddenError):
        service.assign_group_admin(store, user, grouping["id"], user)

    assert service.assign_group_admin(store, admin, grouping["id"], user) is True
    assert service.assign_group_admin(store, admin, grouping["id"], user) is False
    assert [a["user_id"] for a in service.list_group_admins(store, grouping["id"])] == [user]

    with pytest.raises(ForbiddenError):
        service.remove_group_admin(store, user, grouping["id"], user)
    assert service.remove_group_admin(store, admin, grouping["id"], user) is True
    assert service.list_group_admins(store, grouping["id"]) == []


def test_assign_unknown_user_or_grouping(store, admin):
    grouping = service.create_grouping(store, admin, "Engineering")
    ghost = "00000000-0000-0000-0000-000000000000"

    with pytest.raises(NotFoundError):
        service.assign_group_admin(store, admin, grouping["id"], ghost)
    with pytest.raises(NotFoundError):
        service.assign_group_admin(store, admin, ghost, admin)


def test_demoted_admin_loses_assignment_rights(store, admin, user):
    grouping = service.create_grouping(store, admin, "Engineering")
    store.set_user_role(admin, "user")

    with pytest.raises(ForbiddenError):
        service.assign_group_admin(store, admin, grouping["id"], user)


def test_managed_groupings_lists_only_assignments(store, admin, user):
    ops = service.create_grouping(store, admin, "Ops")
    eng = service.create_grouping(store, admin, "Engineering")
    service.create_grouping(store, admin, "Sales")
    service.assign_group_admin(store, admin, ops["id"], user)
    service.assign_group_admin(store, admin, eng["id"], user)

    managed = service.list_managed_groupings(store, user)

    assert [g["name"] for g in managed] == ["Engineering", "Ops"]
    assert all("assigned_at" in g for g in managed)
    assert service.list_managed_groupings(store, admin) == []
