"""
Pipeline components: dedup, run tracking, feedback, prompts, grading, orchestration.
"""

from .dedup import Deduplicator, DedupeResult
from .tracker import RunTracker
from .feedback import FeedbackLoader
from .prompts import build_instructions, build_item_prompt
from .grading import (
    CancellationToken,
    GradingEngine,
    GradingOptions,
    ValidGrade,
    InvalidGrade,
    parse_grade_response,
)
from .orchestrator import PipelineOrchestrator, build_orchestrator, run_pipeline

__all__ = [
    "Deduplicator",
    "DedupeResult",
    "RunTracker",
    "FeedbackLoader",
    "build_instructions",
    "build_item_prompt",
    "CancellationToken",
    "GradingEngine",
    "GradingOptions",
    "ValidGrade",
    "InvalidGrade",
    "parse_grade_response",
    "PipelineOrchestrator",
    "build_orchestrator",
    "run_pipeline",
]
