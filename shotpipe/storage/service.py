from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from shotpipe.pipeline.models import Project
from shotpipe.tools.base import setup_logger

from .store import ProjectSnapshotStore

logger = setup_logger(__name__)


def migrate_snapshot(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Bring an older snapshot up to the current shape."""
    data = dict(snapshot)
    if data.get("renderLogs") is None and data.get("render_logs") is None:
        data["renderLogs"] = []
    return data


@dataclass
class ProjectStorageService:
    """
    Save and load whole projects.

    Callers deal in ``Project`` models; the store only ever sees camelCase
    snapshots.
    """

    store: ProjectSnapshotStore

    @classmethod
    def open(cls, db_path: Optional[Path] = None) -> "ProjectStorageService":
        return cls(store=ProjectSnapshotStore.open(db_path=db_path))

    @property
    def db_path(self) -> Path:
        return self.store.db_path

    def close(self) -> None:
        self.store.close()

    def save(self, project: Project) -> None:
        self.store.put(project.id, project.to_snapshot())

    def load(self, project_id: str) -> Optional[Project]:
        snapshot = self.store.get(project_id)
        if snapshot is None:
            return None
        return Project.model_validate(migrate_snapshot(snapshot))

    def import_snapshot(self, snapshot: Dict[str, Any]) -> Project:
        project = Project.model_validate(migrate_snapshot(snapshot))
        self.save(project)
        logger.info("Imported project %s with %d shot(s)", project.id, len(project.shots))
        return project

    def list_projects(self) -> List[Dict[str, Any]]:
        return self.store.list_projects()

    def delete(self, project_id: str) -> bool:
        return self.store.delete(project_id)
