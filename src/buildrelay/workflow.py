"""Workflow graph queries.

Answers the two questions the trigger orchestrator asks of an event's
graph snapshot: which jobs follow a job, and which upstream jobs a join
node waits on. Also recognises cross-pipeline node names of the form
``sd@<pipeline id>:<job name>`` (optionally prefixed with ``~``).
"""

from __future__ import annotations

import re
from typing import NamedTuple, Protocol

from buildrelay.models import JoinSource, WorkflowGraph

EXTERNAL_JOB_PATTERN = re.compile(r"^~?sd@(?P<pipeline_id>\d+):(?P<job_name>[\w-]+)$")


class ExternalJob(NamedTuple):
    pipeline_id: int
    job_name: str


class WorkflowGraphQuery(Protocol):
    """Read-only queries against a workflow graph snapshot."""

    def next_jobs(self, graph: WorkflowGraph, job_name: str) -> list[str]: ...

    def join_sources(self, graph: WorkflowGraph, job_name: str) -> list[JoinSource]: ...


class WorkflowParser:
    """Default ``WorkflowGraphQuery`` over ``WorkflowGraph`` edges."""

    def next_jobs(self, graph: WorkflowGraph, job_name: str) -> list[str]:
        """Names of jobs triggered by ``job_name``, in edge order, without repeats."""
        seen: set[str] = set()
        result: list[str] = []
        for edge in graph.edges:
            if edge.src == job_name and edge.dest not in seen:
                seen.add(edge.dest)
                result.append(edge.dest)
        return result

    def join_sources(self, graph: WorkflowGraph, job_name: str) -> list[JoinSource]:
        """Upstream jobs joined on ``job_name``. Empty when it is not a join."""
        ids = {node.name: node.id for node in graph.nodes}
        seen: set[str] = set()
        sources: list[JoinSource] = []
        for edge in graph.edges:
            if edge.dest != job_name or not edge.join or edge.src in seen:
                continue
            seen.add(edge.src)
            sources.append(JoinSource(name=edge.src, id=ids.get(edge.src)))
        return sources


def parse_external_job(name: str) -> ExternalJob | None:
    """Split a cross-pipeline node name, or return None for a local job."""
    match = EXTERNAL_JOB_PATTERN.match(name)
    if not match:
        return None
    return ExternalJob(int(match.group("pipeline_id")), match.group("job_name"))


def is_external_job(name: str) -> bool:
    return parse_external_job(name) is not None
