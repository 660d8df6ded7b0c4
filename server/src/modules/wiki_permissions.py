"""Access grants attached to a page.

A grant is a capability kind (own, write, read) paired with exactly one
scope: a user, a group, or everyone. Grants are plain values; the access
evaluator in ``wiki_access`` decides what a set of them allows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union

from server.src.modules.wiki_errors import ValidationError


class Capability(str, Enum):
    OWN = "own"
    WRITE = "write"
    READ = "read"


def normalize_capability(value: Any) -> Capability:
    if isinstance(value, Capability):
        return value
    raw = str(value or "").strip().lower()
    try:
        return Capability(raw)
    except ValueError:
        raise ValidationError(f"Unknown permission kind: {raw or '<empty>'}") from None


@dataclass(frozen=True)
class WikiIdentity:
    """An authenticated (or anonymous) requester with its group memberships."""

    id: str | None = None
    username: str = "anonymous"
    group_ids: frozenset[str] = field(default_factory=frozenset)
    is_admin: bool = False

    @property
    def is_anonymous(self) -> bool:
        return self.id is None


ANONYMOUS = WikiIdentity()


@dataclass(frozen=True)
class GlobalScope:
    pass


@dataclass(frozen=True)
class UserScope:
    user_id: str


@dataclass(frozen=True)
class GroupScope:
    group_id: str


Scope = Union[GlobalScope, UserScope, GroupScope]


def scope_from_fields(
    user_id: str | None = None,
    group_id: str | None = None,
    is_global: bool = False,
) -> Scope:
    clean_user = str(user_id).strip() if user_id else ""
    clean_group = str(group_id).strip() if group_id else ""
    populated = sum(1 for item in (clean_user, clean_group, bool(is_global)) if item)
    if populated == 0:
        raise ValidationError("A permission needs a scope: a user, a group or global")
    if populated > 1:
        raise ValidationError("A permission can only be scoped to one of user, group or global")
    if is_global:
        return GlobalScope()
    if clean_user:
        return UserScope(clean_user)
    return GroupScope(clean_group)


def scope_fields(scope: Scope) -> dict[str, Any]:
    """Column values for storing ``scope`` on a permission row."""
    if isinstance(scope, GlobalScope):
        return {"user_id": None, "group_id": None, "is_global": True}
    if isinstance(scope, UserScope):
        return {"user_id": scope.user_id, "group_id": None, "is_global": False}
    if isinstance(scope, GroupScope):
        return {"user_id": None, "group_id": scope.group_id, "is_global": False}
    raise TypeError(f"unknown scope {scope!r}")


@dataclass(frozen=True)
class Grant:
    kind: Capability
    scope: Scope

    def grants_to(self, identity: WikiIdentity | None) -> bool:
        requester = identity or ANONYMOUS
        scope = self.scope
        if isinstance(scope, GlobalScope):
            return True
        if isinstance(scope, UserScope):
            return requester.id is not None and requester.id == scope.user_id
        if isinstance(scope, GroupScope):
            return scope.group_id in requester.group_ids
        raise TypeError(f"unknown scope {scope!r}")

    @property
    def is_global(self) -> bool:
        return isinstance(self.scope, GlobalScope)


def grant_from_row(row: Any) -> Grant:
    """Build a grant from a stored permission (ORM row or mapping)."""
    if isinstance(row, Grant):
        return row
    if isinstance(row, dict):
        get = row.get
    else:
        def get(name, default=None):
            return getattr(row, name, default)
    return Grant(
        kind=normalize_capability(get("kind")),
        scope=scope_from_fields(get("user_id"), get("group_id"), bool(get("is_global"))),
    )


def grants_from_rows(rows: Iterable[Any]) -> list[Grant]:
    return [grant_from_row(row) for row in rows or ()]


def default_grants(creator_id: str) -> list[Grant]:
    """Grants every new page starts with: Own for its creator, Read for all."""
    if not creator_id:
        raise ValidationError("A page needs a known creator to own it")
    return [
        Grant(Capability.OWN, UserScope(str(creator_id))),
        Grant(Capability.READ, GlobalScope()),
    ]
