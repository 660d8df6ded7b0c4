from contextlib import asynccontextmanager

from httpx import ASGITransport, AsyncClient

from main import app
from server.src.modules.authentification_helpers import open_session
from server.src.modules.wiki_db import AsyncSessionLocal, WikiGroup
from server.src.modules.wiki_permissions import WikiIdentity
from server.src.modules.wiki_repo import WikiRepo
from sqlalchemy import select


async def seed_user(username: str, *, is_admin: bool = False, groups: tuple[str, ...] = ()) -> WikiIdentity:
    async with AsyncSessionLocal() as session:
        repo = WikiRepo(session)
        user = await repo.create_user(username=username, is_admin=is_admin)
        for name in groups:
            group = (await session.execute(select(WikiGroup).where(WikiGroup.name == name))).scalars().first()
            if group is None:
                group = await repo.create_group(name=name)
            await repo.add_user_to_group(user.id, group.id)
    async with AsyncSessionLocal() as session:
        return await WikiRepo(session).load_identity(username)


@asynccontextmanager
async def wiki_client(username: str | None = None):
    headers: dict[str, str] = {}
    if username:
        headers["Authorization"] = f"Bearer {open_session(username)}"
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=headers) as client:
        yield client


async def create_page(client, title: str, content: str = "", description: str = ""):
    payload = {"title": title, "content": content, "description": description}
    resp = await client.post("/api/wiki/pages", json=payload)
    resp.raise_for_status()
    return resp.json()
