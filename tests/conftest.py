import os
import tempfile

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="wiki-tests-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(_DB_DIR, "wiki.db")
os.environ.setdefault("WIKI_ENABLED", "true")
os.environ.setdefault("WIKI_REQUIRE_AUTH", "false")

from server.src.modules.authentification_helpers import SESSIONS
from server.src.modules.wiki_config import get_wiki_settings
from server.src.modules.wiki_db import AsyncSessionLocal, Base, engine
from server.src.modules.wiki_repo import WikiRepo


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    SESSIONS.clear()
    get_wiki_settings.cache_clear()
    yield
    SESSIONS.clear()
    get_wiki_settings.cache_clear()


@pytest.fixture
async def session(db):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def repo(session):
    return WikiRepo(session)
