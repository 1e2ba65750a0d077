from .mongo_client import MongoConnection
from .run_repository import InMemoryRunRepository, MongoRunRepository, RunRepository

__all__ = ["InMemoryRunRepository", "MongoConnection", "MongoRunRepository", "RunRepository"]
