from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from shotpipe.tools.base import setup_logger
from shotpipe.utils.logging_setup import log_context

from .errors import AuthorizationError, BatchAbortedError, describe_error
from .keyframes import KeyframeGenerator
from .models import BatchMode, FrameRole, Project, Shot
from .repository import ProjectRepository
from .scheduler import FixedIntervalScheduler, RateLimitScheduler

logger = setup_logger(__name__)

# Returns True when it dealt with the error itself (e.g. prompted for a new key).
CredentialHandler = Callable[[BaseException], bool]


@dataclass
class BatchProgress:
    current: int
    total: int
    message: str


@dataclass
class BatchReport:
    total: int
    succeeded: int = 0
    failed: int = 0
    aborted: bool = False
    failures: List[str] = field(default_factory=list)


ProgressCallback = Callable[[BatchProgress], None]


def select_shots(project: Project, mode: BatchMode) -> List[Shot]:
    if BatchMode(mode) == BatchMode.REGENERATE_ALL:
        return list(project.shots)
    return [s for s in project.shots if not s.has_completed_start()]


def auto_mode(project: Project) -> BatchMode:
    """Regenerate everything once every shot has a start frame, otherwise fill the gaps."""
    if project.shots and all(s.has_completed_start() for s in project.shots):
        return BatchMode.REGENERATE_ALL
    return BatchMode.FILL_MISSING


class BatchOrchestrator:
    """
    Sequential start-frame generation across a project.

    Shots are processed one at a time with the scheduler gating every call.
    A failure on one shot is recorded and the run moves on; an authorization
    failure stops the run immediately. Shots finished before an abort stay
    finished.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        keyframes: KeyframeGenerator,
        scheduler: Optional[RateLimitScheduler] = None,
        credential_handler: Optional[CredentialHandler] = None,
    ):
        self.repository = repository
        self.keyframes = keyframes
        self.scheduler = scheduler or FixedIntervalScheduler()
        self.credential_handler = credential_handler

    async def run(
        self,
        project_id: str,
        mode: BatchMode = BatchMode.FILL_MISSING,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchReport:
        mode = BatchMode(mode)
        targets = [s.id for s in select_shots(self.repository.get(project_id), mode)]
        report = BatchReport(total=len(targets))

        def progress(current: int, message: str) -> None:
            if on_progress is not None:
                on_progress(BatchProgress(current=current, total=report.total, message=message))

        with log_context(project_id=project_id, operation=f"batch:{mode.value}"):
            logger.info("Batch start: %d shot(s)", report.total)
            progress(0, "Starting batch generation" if targets else "Nothing to generate")
            self.scheduler.reset()

            for i, shot_id in enumerate(targets, start=1):
                await self.scheduler.wait()
                try:
                    await self.keyframes.generate(project_id, shot_id, FrameRole.START)
                except AuthorizationError as e:
                    logger.error("Batch aborted at shot %d/%d: %s", i, report.total, e)
                    report.failed += 1
                    report.failures.append(shot_id)
                    report.aborted = True
                    if self.credential_handler is not None and self.credential_handler(e):
                        progress(i, "Batch stopped: credentials need attention")
                        return report
                    raise BatchAbortedError(describe_error(e), completed=report.succeeded, total=report.total) from e
                except Exception as e:
                    # Per-shot failures never end the run.
                    report.failed += 1
                    report.failures.append(shot_id)
                    logger.warning("Shot %s failed in batch: %s", shot_id, e)
                    progress(i, f"Shot {i}/{report.total} failed: {describe_error(e)}")
                    continue
                report.succeeded += 1
                progress(i, f"Generated start frame {i}/{report.total}")

            logger.info("Batch done: %d ok, %d failed", report.succeeded, report.failed)
        return report
