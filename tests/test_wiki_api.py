import pytest

from server.src.modules.wiki_config import get_wiki_settings
from tests.helpers import create_page, seed_user, wiki_client


@pytest.mark.asyncio
async def test_anonymous_cannot_create_pages(db):
    async with wiki_client() as client:
        resp = await client.post("/api/wiki/pages", json={"title": "Alpha"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_created_page_is_public_and_owned(db):
    await seed_user("alice")
    async with wiki_client("alice") as client:
        page = await create_page(client, "My Page", content="**hello**")
        access = (await client.get("/api/wiki/pages/My_Page/access")).json()

    assert page["shorthand_title"] == "My_Page"
    assert page["section"] == "M"
    assert page["revision"] == 1
    assert page["first_revision"] is True
    assert "<strong>hello</strong>" in page["compiled_content"]
    assert access == {"read": True, "write": False, "own": True}

    async with wiki_client() as client:
        resp = await client.get("/api/wiki/pages/My Page")
    assert resp.status_code == 200
    assert resp.json()["id"] == page["id"]


@pytest.mark.asyncio
async def test_duplicate_and_invalid_titles(db):
    await seed_user("alice")
    async with wiki_client("alice") as client:
        await create_page(client, "Alpha")
        dup = await client.post("/api/wiki/pages", json={"title": "Alpha"})
        bad = await client.post("/api/wiki/pages", json={"title": "no/slashes"})
    assert dup.status_code == 409
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_write_needs_an_explicit_grant(db):
    alice = await seed_user("alice")
    await seed_user("bob")
    async with wiki_client("alice") as client:
        await create_page(client, "Alpha", content="v1")
        denied = await client.put("/api/wiki/pages/Alpha", json={"content": "v2"})
        assert denied.status_code == 403

        grant = await client.post(
            "/api/wiki/pages/Alpha/permissions",
            json={"kind": "write", "user_id": alice.id},
        )
        assert grant.status_code == 200

        resp = await client.put("/api/wiki/pages/Alpha", json={"content": "v2", "comment": "edit"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["changed"] is True
    assert body["captured_revision"] == 1
    assert body["page"]["revision"] == 2
    assert body["page"]["previous_revision"] == 1

    async with wiki_client("bob") as client:
        assert (await client.put("/api/wiki/pages/Alpha", json={"content": "v3"})).status_code == 403
    async with wiki_client() as client:
        assert (await client.put("/api/wiki/pages/Alpha", json={"content": "v3"})).status_code == 401


@pytest.mark.asyncio
async def test_revision_history_and_rollback(db):
    admin = await seed_user("root", is_admin=True)
    async with wiki_client("root") as client:
        await create_page(client, "Alpha", content="v1")
        same = await client.put("/api/wiki/pages/Alpha", json={"content": "v1"})
        assert same.json()["changed"] is False
        assert same.json()["captured_revision"] is None

        await client.put("/api/wiki/pages/Alpha", json={"content": "v2"})
        await client.put("/api/wiki/pages/Alpha", json={"content": "v3"})

        history = (await client.get("/api/wiki/pages/Alpha/revisions")).json()
        assert [rev["revision"] for rev in history] == [2, 1]
        assert history[-1]["content"] == "v1"
        assert history[-1]["updated_by"] == admin.id

        first = await client.get("/api/wiki/pages/Alpha/revisions/1")
        assert first.json()["content"] == "v1"
        assert (await client.get("/api/wiki/pages/Alpha/revisions/9")).status_code == 404

        rolled = await client.post("/api/wiki/pages/Alpha/rollback")
        assert rolled.json()["revisions"] == [1]
        await client.post("/api/wiki/pages/Alpha/rollback")
        empty = await client.post("/api/wiki/pages/Alpha/rollback")
    assert empty.status_code == 409


@pytest.mark.asyncio
async def test_restore_revision(db):
    await seed_user("root", is_admin=True)
    async with wiki_client("root") as client:
        await create_page(client, "Alpha", content="v1")
        await client.put("/api/wiki/pages/Alpha", json={"content": "v2"})
        resp = await client.post("/api/wiki/pages/Alpha/revisions/1/restore")
    assert resp.status_code == 200
    assert resp.json()["page"]["content"] == "v1"
    assert resp.json()["page"]["revision"] == 3


@pytest.mark.asyncio
async def test_group_only_page(db):
    await seed_user("alice")
    await seed_user("carol", groups=("staff",))
    dave = await seed_user("dave", groups=("staff",))
    (group_id,) = dave.group_ids

    async with wiki_client("alice") as client:
        await create_page(client, "Staff Notes", content="quarterly plans")
        perms = (await client.get("/api/wiki/pages/Staff_Notes/permissions")).json()
        public = next(row for row in perms if row["is_global"])
        resp = await client.delete(f"/api/wiki/pages/Staff_Notes/permissions/{public['id']}")
        assert resp.status_code == 200
        resp = await client.post(
            "/api/wiki/pages/Staff_Notes/permissions",
            json={"kind": "read", "group_id": group_id},
        )
        assert resp.status_code == 200

    async with wiki_client("carol") as client:
        assert (await client.get("/api/wiki/pages/Staff_Notes")).status_code == 200
        found = (await client.get("/api/wiki/search", params={"q": "quarterly"})).json()
        assert [item["title"] for item in found["items"]] == ["Staff Notes"]
        assert (await client.get("/api/wiki/pages/Staff_Notes/permissions")).status_code == 403

    async with wiki_client() as client:
        assert (await client.get("/api/wiki/pages/Staff_Notes")).status_code == 404
        found = (await client.get("/api/wiki/search", params={"q": "quarterly"})).json()
        assert found == {"items": [], "total": 0}


@pytest.mark.asyncio
async def test_permission_payload_is_validated(db):
    await seed_user("alice")
    async with wiki_client("alice") as client:
        await create_page(client, "Alpha")
        none = await client.post("/api/wiki/pages/Alpha/permissions", json={"kind": "read"})
        both = await client.post(
            "/api/wiki/pages/Alpha/permissions",
            json={"kind": "read", "group_id": "g", "is_global": True},
        )
    assert none.status_code == 400
    assert both.status_code == 400


@pytest.mark.asyncio
async def test_listings(db):
    await seed_user("alice")
    async with wiki_client("alice") as client:
        for title in ("Banana", "Apple", "Avocado"):
            await create_page(client, title)

    async with wiki_client() as client:
        pages = (await client.get("/api/wiki/pages")).json()
        section = (await client.get("/api/wiki/pages", params={"section": "a"})).json()
        sections = (await client.get("/api/wiki/sections")).json()
        latest = (await client.get("/api/wiki/latest")).json()
        blank = (await client.get("/api/wiki/search", params={"q": "  "})).json()

    assert [item["title"] for item in pages["items"]] == ["Apple", "Avocado", "Banana"]
    assert section["total"] == 2
    assert sections == ["A", "B"]
    assert latest["total"] == 3
    assert blank == {"items": [], "total": 0}


@pytest.mark.asyncio
async def test_delete_page_requires_own(db):
    await seed_user("alice")
    await seed_user("bob")
    async with wiki_client("alice") as client:
        await create_page(client, "Alpha")
    async with wiki_client("bob") as client:
        assert (await client.delete("/api/wiki/pages/Alpha")).status_code == 403
    async with wiki_client("alice") as client:
        assert (await client.delete("/api/wiki/pages/Alpha")).status_code == 200
        assert (await client.get("/api/wiki/pages/Alpha")).status_code == 404


@pytest.mark.asyncio
async def test_require_auth_blocks_anonymous(db, monkeypatch):
    monkeypatch.setenv("WIKI_REQUIRE_AUTH", "true")
    get_wiki_settings.cache_clear()
    async with wiki_client() as client:
        resp = await client.get("/api/wiki/pages")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_disabled_wiki_answers_503(db, monkeypatch):
    monkeypatch.setenv("WIKI_ENABLED", "false")
    get_wiki_settings.cache_clear()
    async with wiki_client() as client:
        resp = await client.get("/api/wiki/pages")
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_health(db):
    async with wiki_client() as client:
        resp = await client.get("/health")
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_access_of_hidden_page_is_not_found(db):
    await seed_user("alice")
    async with wiki_client("alice") as client:
        await create_page(client, "Secret")
        perms = (await client.get("/api/wiki/pages/Secret/permissions")).json()
        public = next(row for row in perms if row["is_global"])
        await client.delete(f"/api/wiki/pages/Secret/permissions/{public['id']}")
        own_view = await client.get("/api/wiki/pages/Secret/access")

    assert own_view.status_code == 200
    assert own_view.json() == {"read": False, "write": False, "own": True}

    async with wiki_client() as client:
        page = await client.get("/api/wiki/pages/Secret")
        access = await client.get("/api/wiki/pages/Secret/access")
        missing = await client.get("/api/wiki/pages/Nope/access")
    assert page.status_code == 404
    assert access.status_code == 404
    assert missing.status_code == 404
    assert access.json()["detail"] == "Page 'Secret' not found"
