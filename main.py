from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from server.src.modules.logging_helpers import logger
from server.src.modules.wiki_api import router as wiki_router
from server.src.modules.wiki_config import validate_wiki_environment
from server.src.modules.wiki_db import engine, init_models

# ---------- Lifespan (startup/shutdown) ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    report = validate_wiki_environment()
    for warning in report.warnings:
        logger.warning("wiki config: %s", warning)
    for error in report.errors:
        logger.error("wiki config: %s", error)
    if report.errors:
        raise RuntimeError("Invalid wiki configuration: " + "; ".join(report.errors))
    await init_models()
    yield
    await engine.dispose()

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(wiki_router)

# ---------- Ops ----------
@app.get("/health")
async def health():
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.warning("health check failed: %s", e)
        return {"status": "degraded", "error": str(e)}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
