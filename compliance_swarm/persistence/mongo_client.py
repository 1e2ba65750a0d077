"""
MongoDB connection holder for the run repository.
"""

from __future__ import annotations

import logging
from typing import Any

from compliance_swarm.config import Settings

logger = logging.getLogger(__name__)


class MongoConnection:
    """Owns one pymongo client; the database handle is resolved on demand."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Any = None
        self._db: Any = None

    def connect(self) -> None:
        from pymongo import MongoClient

        db_name = self.settings.mongodb_database
        self._client = MongoClient(self.settings.mongodb_uri)
        self._db = self._client[db_name]
        logger.info(f"[Mongo] Using database '{db_name}'")

    def get_database(self) -> Any:
        if self._db is None:
            self.connect()
        return self._db

    def close(self) -> None:
        if self._client is None:
            return
        self._client.close()
        self._client = self._db = None
        logger.info("[Mongo] Client closed")
