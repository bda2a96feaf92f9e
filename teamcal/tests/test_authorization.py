import pytest

from teamcal.groupings_service.service import assign_group_admin, remove_group_admin
from teamcal.security.authorization import (
    RULES,
    Capability,
    can_user_delete_event,
    can_user_edit_event,
    deny,
    resolve,
)


@pytest.fixture
def people(store):
    return {
        "owner": store.add_user("Owner"),
        "admin": store.add_user("Admin", role="admin"),
        "other": store.add_user("Other"),
    }


def test_missing_event_is_denied(store, people):
    decision = resolve(store, "00000000-0000-0000-0000-000000000000", people["admin"], Capability.EDIT)

    assert not decision.allowed
    assert decision.reason == "event_not_found"


def test_anonymous_is_denied(store, people):
    event_id = store.add_event(people["owner"])

    assert resolve(store, event_id, None, Capability.EDIT).reason == "anonymous"
    assert not can_user_edit_event(store, event_id, None)


def test_owner_and_system_admin_may_edit_and_delete(store, people):
    event_id = store.add_event(people["owner"])

    assert resolve(store, event_id, people["owner"], Capability.EDIT).reason == "owner"
    assert resolve(store, event_id, people["admin"], Capability.DELETE).reason == "system_admin"
    assert can_user_delete_event(store, event_id, people["owner"])
    assert can_user_edit_event(store, event_id, people["admin"])


def test_unrelated_user_is_denied(store, people):
    event_id = store.add_event(people["owner"])

    decision = resolve(store, event_id, people["other"], Capability.EDIT)

    assert not decision
    assert decision.reason == "no_matching_rule"


def test_private_event_is_owner_only(store, people):
    event_id = store.add_event(people["owner"], is_private=True, encrypted_data="x:y:z")
    store.upsert_event_permission(event_id, people["other"], True, True, people["owner"])
    grouping = store.create_grouping("Ops", None, None)["id"]
    store.set_event_groupings(event_id, [grouping])
    store.add_group_admin(grouping, people["other"], people["admin"])

    for user in ("admin", "other"):
        for capability in Capability:
            decision = resolve(store, event_id, people[user], capability)
            assert not decision.allowed
            assert decision.reason == "private_not_owner"

    assert resolve(store, event_id, people["owner"], Capability.DELETE).reason == "private_owner"


def test_flipping_privacy_drops_admin_rights(store, people):
    event_id = store.add_event(people["owner"])
    assert can_user_edit_event(store, event_id, people["admin"])

    store.update_event(event_id, {"is_private": True, "encrypted_data": "x:y:z"})

    assert not can_user_edit_event(store, event_id, people["admin"])
    assert can_user_edit_event(store, event_id, people["owner"])


def test_group_admin_of_any_tagged_grouping_suffices(store, people):
    g1 = store.create_grouping("Engineering", None, None)["id"]
    g2 = store.create_grouping("Sales", None, None)["id"]
    event_id = store.add_event(people["owner"], grouping_ids=[g1, g2])
    store.add_group_admin(g2, people["other"], people["admin"])

    decision = resolve(store, event_id, people["other"], Capability.EDIT)

    assert decision.allowed
    assert decision.reason == "group_admin"
    assert can_user_delete_event(store, event_id, people["other"])


def test_group_admin_of_untagged_grouping_has_no_rights(store, people):
    g1 = store.create_grouping("Engineering", None, None)["id"]
    g2 = store.create_grouping("Sales", None, None)["id"]
    event_id = store.add_event(people["owner"], grouping_ids=[g1])
    store.add_group_admin(g2, people["other"], people["admin"])

    assert not can_user_edit_event(store, event_id, people["other"])


def test_explicit_grant_is_scoped_per_capability(store, people):
    event_id = store.add_event(people["owner"])
    store.upsert_event_permission(event_id, people["other"], True, False, people["owner"])

    assert resolve(store, event_id, people["other"], Capability.EDIT).reason == "explicit_grant"
    assert not can_user_delete_event(store, event_id, people["other"])


def test_explicit_grant_is_scoped_per_event(store, people):
    granted = store.add_event(people["owner"])
    other_event = store.add_event(people["owner"], title="Other")
    store.upsert_event_permission(granted, people["other"], True, True, people["owner"])

    assert can_user_edit_event(store, granted, people["other"])
    assert not can_user_edit_event(store, other_event, people["other"])


def test_role_is_read_from_the_store_each_time(store, people):
    event_id = store.add_event(people["owner"])
    assert not can_user_edit_event(store, event_id, people["other"])

    store.set_user_role(people["other"], "admin")
    assert can_user_edit_event(store, event_id, people["other"])

    store.set_user_role(people["other"], "user")
    assert not can_user_edit_event(store, event_id, people["other"])


def test_group_admin_assignment_takes_effect_immediately(store, people):
    grouping = store.create_grouping("Support", None, None)["id"]
    event_id = store.add_event(people["owner"], grouping_ids=[grouping])
    assert not can_user_edit_event(store, event_id, people["other"])

    assign_group_admin(store, people["admin"], grouping, people["other"])
    assert can_user_edit_event(store, event_id, people["other"])

    remove_group_admin(store, people["admin"], grouping, people["other"])
    assert not can_user_edit_event(store, event_id, people["other"])


def test_custom_rule_order_is_respected(store, people):
    event_id = store.add_event(people["owner"])

    def lockdown(req):
        return deny("lockdown")

    rules = (RULES[0], lockdown) + RULES[1:]

    assert resolve(store, event_id, people["owner"], Capability.EDIT, rules).reason == "lockdown"
