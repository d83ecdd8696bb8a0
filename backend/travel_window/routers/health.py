from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pymongo.errors import PyMongoError

from travel_window import config
from travel_window.db import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix=config.API_PREFIX, tags=["health"])


@router.get("/health")
async def health(db=Depends(get_db)) -> dict[str, Any]:
    """Unauthenticated health check with a database ping."""

    ok = True
    try:
        await db.command("ping")
    except PyMongoError as exc:
        logger.warning("health ping failed: %s", exc)
        ok = False
    return {"ok": ok, "service": config.APP_NAME, "version": config.APP_VERSION}
