"""
Run Repository — persistence collaborator for assessment runs.

Only two capabilities are assumed of any backend: upsert-by-id and a
filtered find.  Every save stores a full snapshot of the run; the
in-memory backend additionally keeps the version history for audit.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Optional

from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.persistence.mongo_client import MongoConnection

logger = logging.getLogger(__name__)


class RunRepository(ABC):
    @abstractmethod
    def save_run(self, run: AssessmentRun) -> int:
        """Upsert *run* by run_id and return the stored version number."""

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[AssessmentRun]: ...

    @abstractmethod
    def find_latest_report(
        self, project_id: str, framework: str, exclude_run_id: Optional[str] = None
    ) -> Optional[AssessmentRun]:
        """Most recent run for (project, framework) that produced a report."""

    @abstractmethod
    def list_runs(self, project_id: Optional[str] = None) -> list[str]: ...


class InMemoryRunRepository(RunRepository):
    """Process-local store; each save appends a new version."""

    def __init__(self):
        self._memory_store: dict[str, list[dict[str, Any]]] = {}

    def save_run(self, run: AssessmentRun) -> int:
        versions = self._memory_store.setdefault(run.run_id, [])
        version = len(versions) + 1
        snapshot = run.model_dump(mode="json")
        snapshot["_version"] = version
        versions.append(snapshot)
        logger.info(f"Saved run {run.run_id} v{version}")
        return version

    def get_run(self, run_id: str, version: Optional[int] = None) -> Optional[AssessmentRun]:
        snapshots = self._memory_store.get(run_id, [])
        if not snapshots:
            return None
        if version is not None:
            matches = [s for s in snapshots if s.get("_version") == version]
            return _hydrate(matches[0]) if matches else None
        return _hydrate(snapshots[-1])

    def find_latest_report(
        self, project_id: str, framework: str, exclude_run_id: Optional[str] = None
    ) -> Optional[AssessmentRun]:
        candidates = [
            versions[-1]
            for run_id, versions in self._memory_store.items()
            if run_id != exclude_run_id
            and versions[-1].get("project_id") == project_id
            and versions[-1].get("framework") == framework
            and versions[-1].get("report") is not None
        ]
        if not candidates:
            return None
        newest = max(candidates, key=lambda s: s["report"]["metadata"]["generated_at"])
        return _hydrate(newest)

    def list_runs(self, project_id: Optional[str] = None) -> list[str]:
        return [
            run_id
            for run_id, versions in self._memory_store.items()
            if project_id is None or versions[-1].get("project_id") == project_id
        ]

    def get_version_count(self, run_id: str) -> int:
        return len(self._memory_store.get(run_id, []))


class MongoRunRepository(RunRepository):
    """MongoDB-backed store (one document per run, replaced on every save)."""

    COLLECTION = "assessment_runs"

    def __init__(self, connection: MongoConnection):
        self.connection = connection

    @property
    def _collection(self):
        return self.connection.get_database()[self.COLLECTION]

    def save_run(self, run: AssessmentRun) -> int:
        existing = self._collection.find_one({"_id": run.run_id}, {"_version": 1})
        version = (existing or {}).get("_version", 0) + 1
        document = run.model_dump(mode="json")
        document["_id"] = run.run_id
        document["_version"] = version
        self._collection.replace_one({"_id": run.run_id}, document, upsert=True)
        logger.info(f"Saved run {run.run_id} v{version} to MongoDB")
        return version

    def get_run(self, run_id: str) -> Optional[AssessmentRun]:
        document = self._collection.find_one({"_id": run_id})
        return _hydrate(document) if document else None

    def find_latest_report(
        self, project_id: str, framework: str, exclude_run_id: Optional[str] = None
    ) -> Optional[AssessmentRun]:
        query: dict[str, Any] = {
            "project_id": project_id,
            "framework": framework,
            "report": {"$ne": None},
        }
        if exclude_run_id:
            query["_id"] = {"$ne": exclude_run_id}
        document = self._collection.find_one(query, sort=[("report.metadata.generated_at", -1)])
        return _hydrate(document) if document else None

    def list_runs(self, project_id: Optional[str] = None) -> list[str]:
        query = {"project_id": project_id} if project_id else {}
        return [doc["_id"] for doc in self._collection.find(query, {"_id": 1})]


def _hydrate(document: dict[str, Any]) -> AssessmentRun:
    data = deepcopy(document)
    data.pop("_id", None)
    data.pop("_version", None)
    return AssessmentRun.model_validate(data)
