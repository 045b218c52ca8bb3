from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from .errors import GenerationInProgressError, PipelineValidationError, describe_error
from .models import Project, RenderLog, RenderLogStatus, RenderLogType, Shot, now_ms

ProjectListener = Callable[[Project], None]


@dataclass
class ProjectRepository:
    """
    In-memory owner of Project state.

    Readers get deep copies. Writers pass a transform that receives a copy of
    the current value and returns the replacement; the swap happens without
    any suspension point, so interleaved coroutines working on different shots
    always see each other's writes.
    """

    listeners: List[ProjectListener] = field(default_factory=list)
    _projects: Dict[str, Project] = field(default_factory=dict)
    _in_flight: Set[Tuple[str, str, str]] = field(default_factory=set)

    def put(self, project: Project) -> None:
        self._projects[project.id] = project.model_copy(deep=True)
        self._notify(project.id)

    def get(self, project_id: str) -> Project:
        return self._require(project_id).model_copy(deep=True)

    def find(self, project_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project is not None else None

    def remove(self, project_id: str) -> bool:
        return self._projects.pop(project_id, None) is not None

    def project_ids(self) -> List[str]:
        return list(self._projects)

    def get_shot(self, project_id: str, shot_id: str) -> Shot:
        project = self._require(project_id)
        shot = project.shot(shot_id)
        if shot is None:
            raise PipelineValidationError(f"Shot {shot_id} not found in project {project_id}.")
        return shot.model_copy(deep=True)

    def update_project(self, project_id: str, transform: Callable[[Project], Project]) -> Project:
        current = self._require(project_id)
        updated = transform(current.model_copy(deep=True))
        updated.last_modified = now_ms()
        self._projects[project_id] = updated
        self._notify(project_id)
        return updated.model_copy(deep=True)

    def update_shot(self, project_id: str, shot_id: str, transform: Callable[[Shot], Shot]) -> Shot:
        """Replace one shot by id; every other shot is left exactly as stored."""
        project = self._require(project_id)
        idx = project.shot_index(shot_id)
        if idx < 0:
            raise PipelineValidationError(f"Shot {shot_id} not found in project {project_id}.")
        updated = transform(project.shots[idx].model_copy(deep=True))
        shots = list(project.shots)
        shots[idx] = updated
        self._projects[project_id] = project.model_copy(update={"shots": shots, "last_modified": now_ms()})
        self._notify(project_id)
        return updated.model_copy(deep=True)

    def append_render_log(self, project_id: str, log: RenderLog) -> None:
        project = self._projects.get(project_id)
        if project is None:
            return
        self._projects[project_id] = project.model_copy(update={"render_logs": [*project.render_logs, log]})
        self._notify(project_id)

    def record_render(
        self,
        project_id: str,
        log_type: RenderLogType,
        resource_id: str,
        resource_name: str,
        model: str,
        prompt: str,
        started: float,
        error: Optional[BaseException] = None,
    ) -> RenderLog:
        """Append the outcome of one render attempt; ``started`` is a time.monotonic() reading."""
        log = RenderLog(
            id=f"log-{uuid.uuid4().hex[:12]}",
            type=log_type,
            resource_id=resource_id,
            resource_name=(resource_name or "")[:60],
            status=RenderLogStatus.FAILED if error is not None else RenderLogStatus.SUCCESS,
            model=model if isinstance(model, str) else "",
            prompt=prompt,
            error=describe_error(error) if error is not None else None,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        self.append_render_log(project_id, log)
        return log

    @contextmanager
    def in_flight(self, project_id: str, shot_id: str, slot: str) -> Iterator[None]:
        """Hold the generation token for one (shot, slot); a second holder is refused."""
        key = (project_id, shot_id, slot)
        if key in self._in_flight:
            raise GenerationInProgressError(shot_id, slot)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    def is_in_flight(self, project_id: str, shot_id: str, slot: str) -> bool:
        return (project_id, shot_id, slot) in self._in_flight

    def _require(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise PipelineValidationError(f"Project {project_id} not found.")
        return project

    def _notify(self, project_id: str) -> None:
        if not self.listeners:
            return
        snapshot = self._projects[project_id].model_copy(deep=True)
        for listener in self.listeners:
            listener(snapshot)
