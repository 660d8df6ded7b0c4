#!/usr/bin/env python
"""Seed a wiki user (optionally admin, optionally in groups).

    python scripts/seed_user.py wizi --admin --group editors
"""

import argparse
import asyncio
import os
import sys

# add project root (one level up from /scripts) to import path
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from sqlalchemy import select

from server.src.modules.logging_helpers import logger
from server.src.modules.wiki_db import AsyncSessionLocal, WikiGroup, init_models
from server.src.modules.wiki_repo import WikiRepo


async def seed(username: str, is_admin: bool, groups: list[str]) -> None:
    await init_models()
    async with AsyncSessionLocal() as session:
        repo = WikiRepo(session)
        user = await repo.get_user_by_username(username)
        if user is None:
            user = await repo.create_user(username=username, is_admin=is_admin)
        for name in groups:
            group = (await session.execute(select(WikiGroup).where(WikiGroup.name == name))).scalars().first()
            if group is None:
                group = await repo.create_group(name=name)
            await repo.add_user_to_group(user.id, group.id)
        logger.info("seeded %s (admin=%s, groups=%s)", user.username, user.is_admin, ",".join(groups) or "-")


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("username")
    parser.add_argument("--admin", action="store_true")
    parser.add_argument("--group", action="append", default=[])
    args = parser.parse_args()
    asyncio.run(seed(args.username, args.admin, args.group))


if __name__ == "__main__":
    main()
