"""Core data models for buildrelay.

Key exports:
    Entity models: Pipeline, Job, Build, Event, User
    Graph models: WorkflowGraph, WorkflowNode, WorkflowEdge, JoinSource
    Enums: JobState, BuildStatus, EventType
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class JobState(str, Enum):
    """Job lifecycle states. Builds are only created for ENABLED jobs."""

    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class BuildStatus(str, Enum):
    """Build lifecycle states, driven by the execution subsystem."""

    CREATED = "CREATED"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildStatus.SUCCESS, BuildStatus.FAILURE, BuildStatus.ABORTED)


class EventType(str, Enum):
    """What caused an event. Cross-pipeline triggers create PIPELINE events."""

    PIPELINE = "pipeline"
    PR = "pr"


# ── Workflow Graph ───────────────────────────────────────────────────────────


class WorkflowNode(BaseModel):
    """A job in the workflow graph. ``id`` is the job id, when known."""

    model_config = ConfigDict(frozen=True)

    name: str
    id: int | None = None


class WorkflowEdge(BaseModel):
    """A trigger edge ``src -> dest``. ``join`` marks fan-in edges."""

    model_config = ConfigDict(frozen=True)

    src: str
    dest: str
    join: bool = False


class WorkflowGraph(BaseModel):
    """Immutable snapshot of job-trigger relationships attached to an event."""

    model_config = ConfigDict(frozen=True)

    nodes: tuple[WorkflowNode, ...] = ()
    edges: tuple[WorkflowEdge, ...] = ()


class JoinSource(BaseModel):
    """An upstream job whose success a join requires."""

    model_config = ConfigDict(frozen=True)

    name: str
    id: int | None = None


# ── Entities ─────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pipeline(BaseModel):
    """A pipeline bound to one source repository.

    ``scm_uri`` has the form ``<host>:<repo id>:<branch>``, for example
    ``github.com:123456:main``. ``admins`` maps username to an enabled flag.
    """

    id: int | None = None
    name: str = ""
    scm_uri: str
    scm_context: str
    admins: dict[str, bool] = Field(default_factory=dict)
    workflow_graph: WorkflowGraph = Field(default_factory=WorkflowGraph)
    created_at: datetime = Field(default_factory=_utcnow)


class Job(BaseModel):
    id: int | None = None
    name: str
    pipeline_id: int
    state: JobState = JobState.ENABLED


class Build(BaseModel):
    id: int | None = None
    job_id: int
    event_id: int
    parent_build_id: int | None = None
    sha: str
    status: BuildStatus = BuildStatus.QUEUED
    username: str | None = None
    scm_context: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    end_time: datetime | None = None


class Event(BaseModel):
    """Root grouping of all builds triggered by one cause in one pipeline."""

    id: int | None = None
    pipeline_id: int
    type: EventType = EventType.PIPELINE
    workflow_graph: WorkflowGraph = Field(default_factory=WorkflowGraph)
    sha: str
    username: str
    scm_context: str
    start_from: str | None = None
    cause_message: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class User(BaseModel):
    """A user with a sealed SCM token. The raw token is never stored."""

    id: int | None = None
    username: str
    scm_context: str
    token: str = Field(default="", repr=False)
