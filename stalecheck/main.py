from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from stalecheck.api.router import router
from stalecheck.core.config import settings
from stalecheck.workers.transport import close_http_client


def _configure_logging() -> None:
    """Send every ``stalecheck.*`` logger to the console at ``settings.log_level``.

    Attempt failures, backoff sleeps, skipped years and days, and per-run
    timings are logged from the worker and service modules.  A long analysis
    is only observable through these lines, so the namespace gets its own
    handler with ``propagate = False``.  That way uvicorn's root-logger
    setup neither hides nor duplicates it.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    pkg_log = logging.getLogger("stalecheck")
    pkg_log.setLevel(level)
    if not pkg_log.handlers:
        pkg_log.addHandler(handler)
    pkg_log.propagate = False


_configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # ── Shutdown ─────────────────────────────────────────────────────
    await close_http_client()


app = FastAPI(
    title="Stalecheck",
    description="Compares a site with its archived history to spot stale pages.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
