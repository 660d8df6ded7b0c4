import pytest

from server.src.modules.wiki_errors import ValidationError
from server.src.modules.wiki_permissions import (
    ANONYMOUS,
    Capability,
    Grant,
    GlobalScope,
    GroupScope,
    UserScope,
    WikiIdentity,
    default_grants,
    grant_from_row,
    normalize_capability,
    scope_fields,
    scope_from_fields,
)

ALICE = WikiIdentity(id="u-alice", username="alice", group_ids=frozenset({"g-staff"}))
BOB = WikiIdentity(id="u-bob", username="bob")


def test_scope_requires_exactly_one_target():
    with pytest.raises(ValidationError):
        scope_from_fields()
    with pytest.raises(ValidationError):
        scope_from_fields(user_id="u-1", is_global=True)
    with pytest.raises(ValidationError):
        scope_from_fields(user_id="u-1", group_id="g-1")

    assert scope_from_fields(is_global=True) == GlobalScope()
    assert scope_from_fields(user_id=" u-1 ") == UserScope("u-1")
    assert scope_from_fields(group_id="g-1") == GroupScope("g-1")


def test_scope_fields_store_a_single_column():
    assert scope_fields(GlobalScope()) == {"user_id": None, "group_id": None, "is_global": True}
    assert scope_fields(UserScope("u-1")) == {"user_id": "u-1", "group_id": None, "is_global": False}
    assert scope_fields(GroupScope("g-1")) == {"user_id": None, "group_id": "g-1", "is_global": False}


def test_capability_names_are_case_insensitive():
    assert normalize_capability("READ") is Capability.READ
    assert normalize_capability(Capability.OWN) is Capability.OWN
    with pytest.raises(ValidationError):
        normalize_capability("admin")


def test_grant_scopes():
    assert Grant(Capability.READ, GlobalScope()).grants_to(ANONYMOUS)
    assert Grant(Capability.READ, GlobalScope()).grants_to(None)

    user_grant = Grant(Capability.WRITE, UserScope("u-alice"))
    assert user_grant.grants_to(ALICE)
    assert not user_grant.grants_to(BOB)
    assert not user_grant.grants_to(ANONYMOUS)

    group_grant = Grant(Capability.READ, GroupScope("g-staff"))
    assert group_grant.grants_to(ALICE)
    assert not group_grant.grants_to(BOB)


def test_grant_from_row_accepts_mappings():
    grant = grant_from_row({"kind": "write", "user_id": None, "group_id": "g-1", "is_global": False})
    assert grant == Grant(Capability.WRITE, GroupScope("g-1"))
    assert not grant.is_global


def test_default_grants_own_for_creator_and_read_for_all():
    grants = default_grants("u-alice")
    assert grants == [
        Grant(Capability.OWN, UserScope("u-alice")),
        Grant(Capability.READ, GlobalScope()),
    ]
    with pytest.raises(ValidationError):
        default_grants("")
