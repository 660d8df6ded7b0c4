"""Revision lifecycle of a page.

An update runs through ``PageUpdate``:

    UNMODIFIED --detect_changes--> DIRTY --capture_revision--> CAPTURED
    CAPTURED --bump_revision_number--> CAPTURED (bumped) --persist--> UNMODIFIED

Capture snapshots the row as it is stored (never the in-memory object), using
the revision number from before the bump. Every step checks the current state
and raises ``PreconditionViolation`` when called out of order, so a second
capture inside the same update fails instead of writing a duplicate.
``commit_page_update`` drives the whole sequence once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.wiki_db import WikiPage, WikiRevision
from server.src.modules.wiki_errors import NotFound, PreconditionViolation, RollbackImpossible
from server.src.modules.wiki_service import prepare_for_save, utc_now

logger = logging.getLogger(__name__)

VERSIONED_FIELDS = ("title", "content", "description", "markup")


class UpdateState(str, Enum):
    UNMODIFIED = "unmodified"
    DIRTY = "dirty"
    CAPTURED = "captured"


@dataclass(frozen=True)
class VersionedFields:
    title: str
    content: str
    description: str
    markup: str

    @classmethod
    def from_object(cls, obj: Any) -> "VersionedFields":
        return cls(**{name: getattr(obj, name) for name in VERSIONED_FIELDS})


@dataclass(frozen=True)
class PersistedPage:
    fields: VersionedFields
    comment: str | None
    updated_by: str | None
    updated_at: datetime | None


@dataclass(frozen=True)
class UpdateResult:
    page: WikiPage
    revision: WikiRevision | None
    changed: bool


def has_content_changed(before: VersionedFields, after: VersionedFields) -> bool:
    for name in VERSIONED_FIELDS:
        if getattr(before, name) != getattr(after, name):
            return True
    return False


def is_first_revision(number: int) -> bool:
    return number == 1


def previous_revision_number(number: int) -> int:
    return 1 if number <= 1 else number - 1


async def load_persisted_page(session: AsyncSession, page_id: str) -> PersistedPage:
    stmt = select(
        WikiPage.title,
        WikiPage.content,
        WikiPage.description,
        WikiPage.markup,
        WikiPage.comment,
        WikiPage.updated_by,
        WikiPage.updated_at,
    ).where(WikiPage.id == page_id)
    # pending in-memory edits must not reach the row before it is read
    with session.no_autoflush:
        row = (await session.execute(stmt)).one_or_none()
    if row is None:
        raise NotFound(f"Page {page_id} is not stored")
    title, content, description, markup, comment, updated_by, updated_at = row
    return PersistedPage(
        fields=VersionedFields(title=title, content=content, description=description, markup=markup),
        comment=comment,
        updated_by=updated_by,
        updated_at=updated_at,
    )


async def load_persisted_fields(session: AsyncSession, page_id: str) -> VersionedFields:
    return (await load_persisted_page(session, page_id)).fields


def write_revision(
    session: AsyncSession,
    page: WikiPage,
    snapshot: PersistedPage,
    *,
    number: int,
    record_timestamps: bool = True,
) -> WikiRevision:
    """Stage one revision row for ``page``.

    With ``record_timestamps`` false the revision keeps the timestamp of the
    version it captures instead of the time of capture.
    """
    created_at = utc_now()
    if not record_timestamps and snapshot.updated_at is not None:
        created_at = snapshot.updated_at
    revision = WikiRevision(
        page_id=page.id,
        revision=number,
        title=snapshot.fields.title,
        content=snapshot.fields.content,
        description=snapshot.fields.description,
        markup=snapshot.fields.markup,
        comment=snapshot.comment,
        updated_by=snapshot.updated_by,
        created_at=created_at,
    )
    session.add(revision)
    return revision


class PageUpdate:
    def __init__(
        self,
        session: AsyncSession,
        page: WikiPage,
        changes: VersionedFields,
        *,
        comment: str | None = None,
        updated_by: str | None = None,
    ):
        self.session = session
        self.page = page
        self.changes = changes
        self.comment = comment
        self.updated_by = updated_by
        self.state = UpdateState.UNMODIFIED
        self.snapshot: PersistedPage | None = None
        self.revision: WikiRevision | None = None
        self.bumped = False

    @property
    def is_dirty(self) -> bool:
        return self.state is UpdateState.DIRTY

    async def detect_changes(self) -> bool:
        if self.state is not UpdateState.UNMODIFIED:
            raise PreconditionViolation(f"Change detection already ran for this update ({self.state.value})")
        self.snapshot = await load_persisted_page(self.session, self.page.id)
        if has_content_changed(self.snapshot.fields, self.changes):
            self.state = UpdateState.DIRTY
            return True
        return False

    def capture_revision(self) -> WikiRevision:
        if self.state is UpdateState.CAPTURED:
            raise PreconditionViolation("A revision was already captured for this update")
        if self.state is not UpdateState.DIRTY or self.snapshot is None:
            raise PreconditionViolation("Page has no pending content change to capture")
        self.revision = write_revision(
            self.session,
            self.page,
            self.snapshot,
            number=self.page.revision,
            record_timestamps=False,
        )
        self.state = UpdateState.CAPTURED
        logger.debug("captured revision %s of page %s", self.revision.revision, self.page.id)
        return self.revision

    def bump_revision_number(self) -> int:
        if self.state is not UpdateState.CAPTURED:
            raise PreconditionViolation("Revision number can only be bumped after a capture")
        if self.bumped:
            raise PreconditionViolation("Revision number was already bumped for this update")
        self.page.revision = self.revision.revision + 1
        self.bumped = True
        return self.page.revision

    async def persist(self) -> WikiPage:
        if self.state is UpdateState.UNMODIFIED:
            return self.page
        if self.state is UpdateState.DIRTY:
            raise PreconditionViolation("Dirty page must be captured before it is persisted")
        if not self.bumped:
            raise PreconditionViolation("Revision number must be bumped before the page is persisted")
        for name in VERSIONED_FIELDS:
            setattr(self.page, name, getattr(self.changes, name))
        self.page.comment = self.comment
        self.page.updated_by = self.updated_by
        prepare_for_save(self.page)
        await self.session.flush()
        self.state = UpdateState.UNMODIFIED
        self.bumped = False
        return self.page


async def commit_page_update(
    session: AsyncSession,
    page: WikiPage,
    changes: VersionedFields,
    *,
    comment: str | None = None,
    updated_by: str | None = None,
) -> UpdateResult:
    update = PageUpdate(session, page, changes, comment=comment, updated_by=updated_by)
    if not await update.detect_changes():
        return UpdateResult(page=page, revision=None, changed=False)
    revision = update.capture_revision()
    update.bump_revision_number()
    await update.persist()
    return UpdateResult(page=page, revision=revision, changed=True)


async def list_page_revisions(session: AsyncSession, page_id: str, *, descending: bool = True) -> list[WikiRevision]:
    order = WikiRevision.revision.desc() if descending else WikiRevision.revision.asc()
    result = await session.execute(select(WikiRevision).where(WikiRevision.page_id == page_id).order_by(order))
    return list(result.scalars().all())


async def revoke_latest_revision(session: AsyncSession, page: WikiPage) -> WikiRevision:
    revisions = await list_page_revisions(session, page.id, descending=True)
    if not revisions:
        raise RollbackImpossible(f"Page '{page.title}' has no revisions to roll back")
    latest = revisions[0]
    await session.delete(latest)
    await session.flush()
    return latest
