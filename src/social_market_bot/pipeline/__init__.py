"""Command pipeline orchestration and state tracking."""

from .orchestrator import CommandPipeline, PipelineRunner
from .state import PipelineEvent, PipelineRecord, PipelineTracker, is_terminal_pipeline_state

__all__ = [
    "CommandPipeline",
    "PipelineEvent",
    "PipelineRecord",
    "PipelineRunner",
    "PipelineTracker",
    "is_terminal_pipeline_state",
]
