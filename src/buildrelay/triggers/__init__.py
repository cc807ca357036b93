"""Trigger-and-join orchestration.

Key exports:
    TriggerOrchestrator — Starts successor builds after a build finishes
    DownstreamTrigger — Creates events in other pipelines
    BuildCompletionHandler — Records completion and runs both triggers
    start_build, is_join_done — Build starter and join evaluator
"""

from buildrelay.triggers.builds import start_build
from buildrelay.triggers.completion import BuildCompletionHandler, CompletionResult
from buildrelay.triggers.downstream import DownstreamTrigger, select_admin
from buildrelay.triggers.fanout import gather_isolated
from buildrelay.triggers.join import is_join_done
from buildrelay.triggers.orchestrator import TriggerOrchestrator

__all__ = [
    "BuildCompletionHandler",
    "CompletionResult",
    "DownstreamTrigger",
    "TriggerOrchestrator",
    "gather_isolated",
    "is_join_done",
    "select_admin",
    "start_build",
]
