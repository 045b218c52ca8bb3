"""
Shot production pipeline.

State machines for keyframes, videos and nine-grid storyboards, the batch
orchestrator and continuity linking, all working against a ProjectRepository.
Generation services are injected, so everything here runs without network
access in tests.
"""

from .batch import BatchOrchestrator, BatchProgress, BatchReport
from .continuity import copy_previous_end_frame
from .keyframes import KeyframeGenerator
from .nine_grid import NineGridDecomposer
from .repository import ProjectRepository
from .video import VideoGenerator

__all__ = [
    "BatchOrchestrator",
    "BatchProgress",
    "BatchReport",
    "KeyframeGenerator",
    "NineGridDecomposer",
    "ProjectRepository",
    "VideoGenerator",
    "copy_previous_end_frame",
]
