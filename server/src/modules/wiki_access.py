from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Union

from sqlalchemy import and_, false, func, or_, true
from sqlalchemy.sql.elements import ColumnElement

from server.src.modules.wiki_db import WikiPage, WikiPermission
from server.src.modules.wiki_errors import PermissionDenied
from server.src.modules.wiki_permissions import (
    ANONYMOUS,
    Capability,
    WikiIdentity,
    grants_from_rows,
)


def _has_capability(identity: WikiIdentity | None, permissions: Iterable[Any], kind: Capability) -> bool:
    requester = identity or ANONYMOUS
    if requester.is_admin:
        return True
    for grant in grants_from_rows(permissions):
        if grant.kind is not kind:
            continue
        if grant.grants_to(requester):
            return True
    return False


def can_read(identity: WikiIdentity | None, permissions: Iterable[Any]) -> bool:
    return _has_capability(identity, permissions, Capability.READ)


def can_write(identity: WikiIdentity | None, permissions: Iterable[Any]) -> bool:
    return _has_capability(identity, permissions, Capability.WRITE)


def can_own(identity: WikiIdentity | None, permissions: Iterable[Any]) -> bool:
    return _has_capability(identity, permissions, Capability.OWN)


def require_capability(
    identity: WikiIdentity | None,
    permissions: Iterable[Any],
    kind: Capability,
    page_title: str = "",
) -> None:
    if _has_capability(identity, permissions, kind):
        return
    requester = identity or ANONYMOUS
    target = f"page '{page_title}'" if page_title else "this page"
    raise PermissionDenied(f"{requester.username} may not {kind.value} {target}")


def capabilities_for(identity: WikiIdentity | None, permissions: Iterable[Any]) -> dict[str, bool]:
    rows = list(permissions or ())
    return {
        "read": can_read(identity, rows),
        "write": can_write(identity, rows),
        "own": can_own(identity, rows),
    }


@dataclass(frozen=True)
class AlwaysTrue:
    pass


@dataclass(frozen=True)
class OwnedOrGlobalOrGroup:
    user_id: str
    group_ids: frozenset[str]


@dataclass(frozen=True)
class GlobalOnly:
    pass


ReadPredicate = Union[AlwaysTrue, OwnedOrGlobalOrGroup, GlobalOnly]


def compile_read_predicate(identity: WikiIdentity | None) -> ReadPredicate:
    requester = identity or ANONYMOUS
    if requester.is_admin:
        return AlwaysTrue()
    if requester.id is not None:
        return OwnedOrGlobalOrGroup(user_id=requester.id, group_ids=frozenset(requester.group_ids))
    return GlobalOnly()


def _permission_row_clause(predicate: ReadPredicate) -> ColumnElement[bool]:
    if isinstance(predicate, GlobalOnly):
        return WikiPermission.is_global.is_(True)
    if isinstance(predicate, OwnedOrGlobalOrGroup):
        alternatives = [
            WikiPermission.is_global.is_(True),
            WikiPermission.user_id == predicate.user_id,
        ]
        if predicate.group_ids:
            alternatives.append(WikiPermission.group_id.in_(sorted(predicate.group_ids)))
        return or_(*alternatives)
    if isinstance(predicate, AlwaysTrue):
        return true()
    raise TypeError(f"unknown read predicate {predicate!r}")


def read_predicate_clause(predicate: ReadPredicate) -> ColumnElement[bool]:
    """Translate ``predicate`` into a filter over ``WikiPage`` rows.

    Administrators get no row filter at all. Everyone else sees a page when an
    EXISTS over its read grants matches, so the check runs inside the query.
    """
    if isinstance(predicate, AlwaysTrue):
        return true()
    return WikiPage.permissions.any(
        and_(WikiPermission.kind == Capability.READ.value, _permission_row_clause(predicate))
    )


def search_tokens(query: Any) -> list[str]:
    keyword = str(query or "").strip()
    if not keyword:
        return []
    keyword = keyword.replace("*", "%")
    return [f"%{token.lower()}%" for token in keyword.split()]


def search_clause(tokens: list[str]) -> ColumnElement[bool]:
    if not tokens:
        return false()
    columns = (WikiPage.title, WikiPage.content, WikiPage.description)
    return and_(
        *[or_(*[func.lower(column).like(token) for column in columns]) for token in tokens]
    )
