from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from travel_window import config

logger = logging.getLogger(__name__)


class MongoConnection:
    """Owned Motor client + database handle.

    Lifecycle: `connect()` once at application startup, `close()` once at
    shutdown. The instance is stored on `app.state.mongo` and reaches request
    handlers only through the `get_db` dependency.
    """

    def __init__(self, url: str, db_name: str, **client_options) -> None:
        self._url = url
        self._db_name = db_name
        self._client_options = {
            "tz_aware": True,
            "serverSelectionTimeoutMS": config.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            "maxPoolSize": config.MONGO_MAX_POOL_SIZE,
        }
        self._client_options.update(client_options)
        self._client: Optional[AsyncIOMotorClient] = None
        self._db: Optional[AsyncIOMotorDatabase] = None

    @property
    def db(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            raise RuntimeError("MongoConnection.connect() has not been called")
        return self._db

    async def connect(self) -> AsyncIOMotorDatabase:
        if self._db is not None:
            return self._db

        self._client = AsyncIOMotorClient(self._url, **self._client_options)
        self._db = self._client[self._db_name]
        logger.info("Mongo client created for database %s", self._db_name)
        return self._db

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.info("Mongo client closed")

        self._client = None
        self._db = None


async def get_db(request: Request) -> AsyncIOMotorDatabase:
    mongo: Optional[MongoConnection] = getattr(request.app.state, "mongo", None)
    if mongo is None:
        raise RuntimeError("Mongo connection is not attached to the application")
    return mongo.db
