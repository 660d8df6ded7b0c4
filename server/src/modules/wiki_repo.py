from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import distinct, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.logging_helpers import write_audit
from server.src.modules.wiki_access import (
    can_own,
    can_read,
    can_write,
    compile_read_predicate,
    read_predicate_clause,
    require_capability,
    search_clause,
    search_tokens,
)
from server.src.modules.wiki_config import get_wiki_settings
from server.src.modules.wiki_db import WikiGroup, WikiPage, WikiPermission, WikiRevision, WikiUser
from server.src.modules.wiki_errors import NotFound, PermissionDenied, TitleTakenError, ValidationError
from server.src.modules.wiki_markup import normalize_markup
from server.src.modules.wiki_permissions import (
    ANONYMOUS,
    Capability,
    GroupScope,
    UserScope,
    WikiIdentity,
    default_grants,
    grant_from_row,
    normalize_capability,
    scope_fields,
    scope_from_fields,
)
from server.src.modules.wiki_revisions import (
    VERSIONED_FIELDS,
    UpdateResult,
    VersionedFields,
    commit_page_update,
    list_page_revisions,
    revoke_latest_revision,
)
from server.src.modules.wiki_service import (
    normalize_comment,
    normalize_lookup_title,
    normalize_section,
    normalize_text,
    prepare_for_save,
    shorthand_title,
    time_delta,
    validate_content,
    validate_title,
)

logger = logging.getLogger(__name__)


def _page_snapshot(page: WikiPage | None) -> dict[str, Any] | None:
    if page is None:
        return None
    out = {name: getattr(page, name) for name in VERSIONED_FIELDS}
    out["revision"] = page.revision
    return out


def identity_for(user: WikiUser) -> WikiIdentity:
    return WikiIdentity(
        id=str(user.id),
        username=user.username,
        group_ids=frozenset(str(group.id) for group in user.groups),
        is_admin=bool(user.is_admin),
    )


class WikiRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _commit(self, operation: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            msg = str(getattr(exc, "orig", exc)).lower()
            if "title" in msg and ("unique" in msg or "duplicate" in msg):
                raise TitleTakenError("A page with this title already exists") from exc
            logger.exception("wiki %s integrity failure", operation)
            raise
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("wiki %s database failure", operation)
            raise

    # ---------- users and groups ----------

    async def create_user(self, *, username: str, is_admin: bool = False) -> WikiUser:
        clean = str(username or "").strip()
        if not clean:
            raise ValidationError("Username is required")
        user = WikiUser(username=clean, is_admin=bool(is_admin))
        user.groups = []
        self.session.add(user)
        await self._commit("user creation")
        return user

    async def create_group(self, *, name: str) -> WikiGroup:
        clean = str(name or "").strip()
        if not clean:
            raise ValidationError("Group name is required")
        group = WikiGroup(name=clean)
        self.session.add(group)
        await self._commit("group creation")
        return group

    async def add_user_to_group(self, user_id: str, group_id: str) -> WikiUser:
        user = await self.session.get(WikiUser, str(user_id or "").strip())
        if user is None:
            raise NotFound(f"User {user_id} not found")
        group = await self.session.get(WikiGroup, str(group_id or "").strip())
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        if all(existing.id != group.id for existing in user.groups):
            user.groups.append(group)
            await self._commit("group membership")
        return user

    async def get_user_by_username(self, username: str) -> WikiUser | None:
        stmt = select(WikiUser).where(WikiUser.username == str(username or "").strip())
        return (await self.session.execute(stmt)).scalars().first()

    async def load_identity(self, username: str) -> WikiIdentity:
        user = await self.get_user_by_username(username)
        if user is None:
            raise NotFound(f"User {username} not found")
        return identity_for(user)

    # ---------- access ----------

    @staticmethod
    def can_read(identity: WikiIdentity | None, page: WikiPage) -> bool:
        return can_read(identity, page.permissions)

    @staticmethod
    def can_write(identity: WikiIdentity | None, page: WikiPage) -> bool:
        return can_write(identity, page.permissions)

    @staticmethod
    def can_own(identity: WikiIdentity | None, page: WikiPage) -> bool:
        return can_own(identity, page.permissions)

    @staticmethod
    def require(identity: WikiIdentity | None, page: WikiPage, kind: Capability) -> None:
        require_capability(identity, page.permissions, kind, page.title)

    def _readable_pages(self, identity: WikiIdentity | None):
        return select(WikiPage).where(read_predicate_clause(compile_read_predicate(identity)))

    # ---------- lookups ----------

    async def title_taken(self, title: str, exclude_id: str = "") -> bool:
        stmt = select(WikiPage.id).where(
            or_(WikiPage.title == title, WikiPage.shorthand_title == shorthand_title(title))
        )
        if exclude_id:
            stmt = stmt.where(WikiPage.id != exclude_id)
        with self.session.no_autoflush:
            return (await self.session.execute(stmt.limit(1))).first() is not None

    async def get_page_by_id(self, page_id: str) -> WikiPage:
        page = await self.session.get(WikiPage, str(page_id or "").strip())
        if page is None:
            raise NotFound("Page not found")
        return page

    async def get_page(self, title: str) -> WikiPage:
        key = normalize_lookup_title(title)
        if not key:
            raise NotFound("Page not found")
        stmt = select(WikiPage).where(WikiPage.shorthand_title == key)
        page = (await self.session.execute(stmt)).scalars().first()
        if page is None:
            raise NotFound(f"Page '{title}' not found")
        return page

    async def find_by_shorthand_title(self, title: str, identity: WikiIdentity | None) -> WikiPage:
        key = normalize_lookup_title(title)
        if not key:
            raise NotFound("Page not found")
        stmt = self._readable_pages(identity).where(WikiPage.shorthand_title == key)
        page = (await self.session.execute(stmt)).scalars().first()
        if page is None:
            raise NotFound(f"Page '{title}' not found")
        return page

    async def list_by_section(self, section: str | None, identity: WikiIdentity | None) -> list[WikiPage]:
        stmt = self._readable_pages(identity)
        clean_section = normalize_section(section)
        if clean_section:
            stmt = stmt.where(WikiPage.title_char == clean_section)
        stmt = stmt.order_by(WikiPage.title_char.asc(), WikiPage.title.asc())
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_sections(self, identity: WikiIdentity | None) -> list[str]:
        stmt = (
            select(distinct(WikiPage.title_char))
            .where(read_predicate_clause(compile_read_predicate(identity)))
            .order_by(WikiPage.title_char.asc())
        )
        return [row[0] for row in (await self.session.execute(stmt)).all()]

    async def list_readable(self, identity: WikiIdentity | None) -> list[WikiPage]:
        stmt = self._readable_pages(identity).order_by(WikiPage.title.asc())
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_by_date(
        self,
        year: int | None = None,
        month: int | None = None,
        day: int | None = None,
        identity: WikiIdentity | None = None,
        *,
        now: datetime | None = None,
    ) -> list[WikiPage]:
        start, end = time_delta(year, month, day, now=now)
        stmt = (
            self._readable_pages(identity)
            .where(WikiPage.updated_at.between(start, end))
            .order_by(WikiPage.updated_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def search(self, query: str, identity: WikiIdentity | None, *, limit: int | None = None) -> list[WikiPage]:
        tokens = search_tokens(query)
        if not tokens:
            return []
        safe_limit = limit or get_wiki_settings().search_limit
        stmt = (
            self._readable_pages(identity)
            .where(search_clause(tokens))
            .order_by(WikiPage.title.asc())
            .limit(safe_limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    # ---------- pages ----------

    async def create_page(self, attrs: dict[str, Any], creator: WikiIdentity | None) -> WikiPage:
        author = creator or ANONYMOUS
        if author.is_anonymous:
            raise PermissionDenied("Anonymous requesters cannot create pages")
        title = validate_title(attrs.get("title"))
        if await self.title_taken(title):
            raise TitleTakenError("A page with this title already exists")
        page = WikiPage(
            title=title,
            content=validate_content(attrs.get("content")),
            description=normalize_text(attrs.get("description")),
            markup=normalize_markup(attrs.get("markup")),
            comment=normalize_comment(attrs.get("comment")),
            created_by=author.id,
            updated_by=author.id,
            revision=1,
        )
        page.permissions = [
            WikiPermission(kind=grant.kind.value, **scope_fields(grant.scope))
            for grant in default_grants(author.id)
        ]
        prepare_for_save(page)
        self.session.add(page)
        await self._commit("page creation")
        logger.info("page %s created by %s", page.shorthand_title, author.username)
        write_audit("create_page", author.username, page.id, None, _page_snapshot(page))
        return page

    async def update_page(
        self,
        page: WikiPage,
        attrs: dict[str, Any],
        updater: WikiIdentity | None,
    ) -> UpdateResult:
        editor = updater or ANONYMOUS
        raw_title = attrs.get("title", page.title)
        title = validate_title(raw_title)
        if await self.title_taken(title, exclude_id=page.id):
            raise TitleTakenError("A page with this title already exists")
        changes = VersionedFields(
            title=title,
            content=validate_content(attrs.get("content", page.content)),
            description=normalize_text(attrs.get("description", page.description)),
            markup=normalize_markup(attrs.get("markup", page.markup)),
        )
        before = _page_snapshot(page)
        try:
            result = await commit_page_update(
                self.session,
                page,
                changes,
                comment=normalize_comment(attrs.get("comment")),
                updated_by=editor.id,
            )
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("wiki page update failure")
            raise
        if not result.changed:
            logger.info("page %s saved without content change", page.shorthand_title)
            return result
        await self._commit("page update")
        logger.info("page %s updated to revision %s by %s", page.shorthand_title, page.revision, editor.username)
        write_audit("update_page", editor.username, page.id, before, _page_snapshot(page))
        return result

    async def restore_revision(self, page: WikiPage, number: int, updater: WikiIdentity | None) -> UpdateResult:
        revision = await self.get_revision(page, number)
        attrs = {name: getattr(revision, name) for name in VERSIONED_FIELDS}
        attrs["comment"] = f"Restored revision {revision.revision}"
        return await self.update_page(page, attrs, updater)

    async def destroy_page(self, page: WikiPage, actor: WikiIdentity | None = None) -> None:
        before = _page_snapshot(page)
        page_id = page.id
        await self.session.delete(page)
        await self._commit("page deletion")
        logger.info("page %s destroyed", before["title"])
        write_audit("destroy_page", (actor or ANONYMOUS).username, page_id, before, None)

    # ---------- revisions ----------

    async def list_revisions(self, page: WikiPage) -> list[WikiRevision]:
        return await list_page_revisions(self.session, page.id, descending=True)

    async def get_revision(self, page: WikiPage, number: int) -> WikiRevision:
        stmt = select(WikiRevision).where(WikiRevision.page_id == page.id, WikiRevision.revision == int(number))
        revision = (await self.session.execute(stmt)).scalars().first()
        if revision is None:
            raise NotFound(f"Revision {number} of '{page.title}' not found")
        return revision

    async def rollback_latest_revision(self, page: WikiPage, actor: WikiIdentity | None = None) -> None:
        revoked = await revoke_latest_revision(self.session, page)
        number = revoked.revision
        await self._commit("revision rollback")
        logger.info("revision %s of page %s revoked", number, page.shorthand_title)
        write_audit("rollback_revision", (actor or ANONYMOUS).username, page.id, {"revision": number}, None)

    # ---------- permissions ----------

    async def add_permission(
        self,
        page: WikiPage,
        kind: Any,
        *,
        user_id: str | None = None,
        group_id: str | None = None,
        is_global: bool = False,
        actor: WikiIdentity | None = None,
    ) -> WikiPermission:
        capability = normalize_capability(kind)
        scope = scope_from_fields(user_id, group_id, is_global)
        if isinstance(scope, UserScope) and await self.session.get(WikiUser, scope.user_id) is None:
            raise NotFound(f"User {scope.user_id} not found")
        if isinstance(scope, GroupScope) and await self.session.get(WikiGroup, scope.group_id) is None:
            raise NotFound(f"Group {scope.group_id} not found")
        for existing in page.permissions:
            grant = grant_from_row(existing)
            if grant.kind is capability and grant.scope == scope:
                return existing
        permission = WikiPermission(kind=capability.value, **scope_fields(scope))
        page.permissions.append(permission)
        await self._commit("permission grant")
        write_audit(
            "grant_permission",
            (actor or ANONYMOUS).username,
            page.id,
            None,
            {"kind": capability.value, **scope_fields(scope)},
        )
        return permission

    async def remove_permission(
        self,
        page: WikiPage,
        permission_id: str,
        actor: WikiIdentity | None = None,
    ) -> None:
        target = next((row for row in page.permissions if row.id == permission_id), None)
        if target is None:
            raise NotFound("Permission not found")
        snapshot = {"kind": target.kind, "user_id": target.user_id, "group_id": target.group_id, "is_global": target.is_global}
        page.permissions.remove(target)
        await self._commit("permission revoke")
        write_audit("revoke_permission", (actor or ANONYMOUS).username, page.id, snapshot, None)
