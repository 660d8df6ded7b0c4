import logging
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.wiki_access import capabilities_for
from server.src.modules.wiki_auth import require_wiki_user, resolve_wiki_identity
from server.src.modules.wiki_db import WikiPage, WikiPermission, WikiRevision, get_session
from server.src.modules.wiki_errors import (
    NotFound,
    PermissionDenied,
    RollbackImpossible,
    TitleTakenError,
    ValidationError,
)
from server.src.modules.wiki_permissions import Capability, WikiIdentity
from server.src.modules.wiki_repo import WikiRepo
from server.src.modules.wiki_revisions import is_first_revision, previous_revision_number
from server.src.modules.wiki_service import iso_utc

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/wiki",
    tags=["wiki"],
)


class WikiPagePayload(BaseModel):
    title: str
    content: str = ""
    description: str = ""
    markup: str | None = None
    comment: str | None = None


class WikiPageUpdatePayload(BaseModel):
    title: str | None = None
    content: str | None = None
    description: str | None = None
    markup: str | None = None
    comment: str | None = None


class WikiPermissionPayload(BaseModel):
    kind: str
    user_id: str | None = None
    group_id: str | None = None
    is_global: bool = False


class WikiPageOut(BaseModel):
    id: str
    title: str
    shorthand_title: str
    section: str
    content: str
    compiled_content: str
    description: str
    markup: str
    comment: str | None
    revision: int
    previous_revision: int
    first_revision: bool
    created_by: str | None
    updated_by: str | None
    created_at: str
    updated_at: str


class WikiUpdateOut(BaseModel):
    page: WikiPageOut
    changed: bool
    captured_revision: int | None


class WikiRevisionOut(BaseModel):
    id: str
    page_id: str
    revision: int
    title: str
    content: str
    description: str
    markup: str
    comment: str | None
    updated_by: str | None
    created_at: str


class WikiPermissionOut(BaseModel):
    id: str
    kind: str
    user_id: str | None
    group_id: str | None
    is_global: bool


class WikiAccessOut(BaseModel):
    read: bool
    write: bool
    own: bool


class WikiListResponse(BaseModel):
    items: list[WikiPageOut]
    total: int


def _wiki_db_error_detail(exc: Exception, operation: str) -> str:
    raw = str(getattr(exc, "orig", exc) or "")
    msg = raw.lower()
    if ("wiki_pages" in msg and "does not exist" in msg) or ("no such table" in msg and "wiki_" in msg):
        return "Wiki tables are missing. Run database migrations (alembic upgrade head)."
    if "permission denied" in msg:
        return "Wiki database permission error."
    if "read-only" in msg or "readonly" in msg:
        return "Wiki database is read-only."
    return f"Wiki database error during {operation}."


@contextmanager
def _wiki_errors(identity: WikiIdentity, operation: str):
    try:
        yield
    except TitleTakenError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except PermissionDenied as exc:
        if identity.is_anonymous:
            raise HTTPException(status_code=401, detail="Not authenticated")
        raise HTTPException(status_code=403, detail=str(exc))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RollbackImpossible as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except SQLAlchemyError as exc:
        logger.exception("wiki %s database failure", operation)
        raise HTTPException(status_code=500, detail=_wiki_db_error_detail(exc, operation))


def _page_to_dict(page: WikiPage) -> WikiPageOut:
    return WikiPageOut(
        id=str(page.id),
        title=page.title,
        shorthand_title=page.shorthand_title,
        section=page.section,
        content=page.content,
        compiled_content=page.compiled_content,
        description=page.description,
        markup=page.markup,
        comment=page.comment,
        revision=page.revision,
        previous_revision=previous_revision_number(page.revision),
        first_revision=is_first_revision(page.revision),
        created_by=page.created_by,
        updated_by=page.updated_by,
        created_at=iso_utc(page.created_at),
        updated_at=iso_utc(page.updated_at),
    )


def _revision_to_dict(revision: WikiRevision) -> WikiRevisionOut:
    return WikiRevisionOut(
        id=str(revision.id),
        page_id=str(revision.page_id),
        revision=revision.revision,
        title=revision.title,
        content=revision.content,
        description=revision.description,
        markup=revision.markup,
        comment=revision.comment,
        updated_by=revision.updated_by,
        created_at=iso_utc(revision.created_at),
    )


def _permission_to_dict(permission: WikiPermission) -> WikiPermissionOut:
    return WikiPermissionOut(
        id=str(permission.id),
        kind=permission.kind,
        user_id=permission.user_id,
        group_id=permission.group_id,
        is_global=bool(permission.is_global),
    )


def _list_response(pages: list[WikiPage]) -> WikiListResponse:
    return WikiListResponse(items=[_page_to_dict(page) for page in pages], total=len(pages))


@router.get("/pages", response_model=WikiListResponse)
async def list_pages(
    section: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    with _wiki_errors(identity, "page listing"):
        pages = await WikiRepo(session).list_by_section(section, identity)
    return _list_response(pages)


@router.get("/sections", response_model=list[str])
async def list_sections(
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    with _wiki_errors(identity, "section listing"):
        return await WikiRepo(session).list_sections(identity)


@router.get("/latest", response_model=WikiListResponse)
async def list_latest(
    year: int | None = Query(default=None, ge=1970),
    month: int | None = Query(default=None, ge=1, le=12),
    day: int | None = Query(default=None, ge=1, le=31),
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    with _wiki_errors(identity, "date listing"):
        pages = await WikiRepo(session).list_by_date(year, month, day, identity)
    return _list_response(pages)


@router.get("/search", response_model=WikiListResponse)
async def search_pages(
    q: str = Query(default=""),
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    with _wiki_errors(identity, "search"):
        pages = await WikiRepo(session).search(q, identity)
    return _list_response(pages)


@router.post("/pages", response_model=WikiPageOut)
async def create_page(
    payload: WikiPagePayload,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(require_wiki_user),
):
    with _wiki_errors(identity, "page creation"):
        page = await WikiRepo(session).create_page(payload.model_dump(), identity)
    return _page_to_dict(page)


@router.get("/pages/{title}", response_model=WikiPageOut)
async def get_page(
    title: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    with _wiki_errors(identity, "page lookup"):
        page = await WikiRepo(session).find_by_shorthand_title(title, identity)
    return _page_to_dict(page)


@router.get("/pages/{title}/access", response_model=WikiAccessOut)
async def get_page_access(
    title: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    with _wiki_errors(identity, "access check"):
        page = await WikiRepo(session).get_page(title)
    access = capabilities_for(identity, page.permissions)
    if not any(access.values()):
        raise HTTPException(status_code=404, detail=f"Page '{title}' not found")
    return WikiAccessOut(**access)


@router.put("/pages/{title}", response_model=WikiUpdateOut)
async def update_page(
    title: str,
    payload: WikiPageUpdatePayload,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "page update"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.WRITE)
        attrs: dict[str, Any] = payload.model_dump(exclude_unset=True)
        result = await repo.update_page(page, attrs, identity)
    return WikiUpdateOut(
        page=_page_to_dict(result.page),
        changed=result.changed,
        captured_revision=result.revision.revision if result.revision is not None else None,
    )


@router.delete("/pages/{title}")
async def delete_page(
    title: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "page deletion"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.OWN)
        await repo.destroy_page(page, identity)
    return {"status": "deleted"}


@router.get("/pages/{title}/revisions", response_model=list[WikiRevisionOut])
async def list_revisions(
    title: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "revision listing"):
        page = await repo.find_by_shorthand_title(title, identity)
        revisions = await repo.list_revisions(page)
    return [_revision_to_dict(rev) for rev in revisions]


@router.get("/pages/{title}/revisions/{number}", response_model=WikiRevisionOut)
async def get_revision(
    title: str,
    number: int,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "revision lookup"):
        page = await repo.find_by_shorthand_title(title, identity)
        revision = await repo.get_revision(page, number)
    return _revision_to_dict(revision)


@router.post("/pages/{title}/revisions/{number}/restore", response_model=WikiUpdateOut)
async def restore_revision(
    title: str,
    number: int,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "revision restore"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.WRITE)
        result = await repo.restore_revision(page, number, identity)
    return WikiUpdateOut(
        page=_page_to_dict(result.page),
        changed=result.changed,
        captured_revision=result.revision.revision if result.revision is not None else None,
    )


@router.post("/pages/{title}/rollback")
async def rollback_revision(
    title: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "revision rollback"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.OWN)
        await repo.rollback_latest_revision(page, identity)
        remaining = await repo.list_revisions(page)
    return {"status": "rolled_back", "revisions": [rev.revision for rev in remaining]}


@router.get("/pages/{title}/permissions", response_model=list[WikiPermissionOut])
async def list_permissions(
    title: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "permission listing"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.OWN)
    return [_permission_to_dict(permission) for permission in page.permissions]


@router.post("/pages/{title}/permissions", response_model=WikiPermissionOut)
async def add_permission(
    title: str,
    payload: WikiPermissionPayload,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "permission grant"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.OWN)
        permission = await repo.add_permission(
            page,
            payload.kind,
            user_id=payload.user_id,
            group_id=payload.group_id,
            is_global=payload.is_global,
            actor=identity,
        )
    return _permission_to_dict(permission)


@router.delete("/pages/{title}/permissions/{permission_id}")
async def remove_permission(
    title: str,
    permission_id: str,
    session: AsyncSession = Depends(get_session),
    identity: WikiIdentity = Depends(resolve_wiki_identity),
):
    repo = WikiRepo(session)
    with _wiki_errors(identity, "permission revoke"):
        page = await repo.get_page(title)
        repo.require(identity, page, Capability.OWN)
        await repo.remove_permission(page, permission_id, identity)
    return {"status": "deleted"}
