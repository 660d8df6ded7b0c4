from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.authentification_helpers import (
    get_auth_token,
    get_session_username,
)
from server.src.modules.wiki_config import get_wiki_settings
from server.src.modules.wiki_db import get_session
from server.src.modules.wiki_errors import NotFound
from server.src.modules.wiki_permissions import ANONYMOUS, WikiIdentity
from server.src.modules.wiki_repo import WikiRepo


async def resolve_wiki_identity(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> WikiIdentity:
    cfg = get_wiki_settings()
    if not cfg.enabled:
        raise HTTPException(status_code=503, detail="Wiki is disabled")

    username = get_session_username(get_auth_token(request))
    if not username:
        if cfg.require_auth:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return ANONYMOUS

    try:
        return await WikiRepo(session).load_identity(username)
    except NotFound:
        raise HTTPException(status_code=401, detail="Session user no longer exists")


async def require_wiki_user(identity: WikiIdentity = Depends(resolve_wiki_identity)) -> WikiIdentity:
    if identity.is_anonymous:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity
