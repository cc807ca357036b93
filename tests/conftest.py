"""Shared fixtures: a real SQLite registry and a pipeline seeding helper."""

from __future__ import annotations

from dataclasses import dataclass, field

import aiosqlite
import pytest_asyncio

from buildrelay.models import (
    Build,
    BuildStatus,
    Event,
    EventType,
    Job,
    JobState,
    Pipeline,
    WorkflowEdge,
    WorkflowGraph,
    WorkflowNode,
)
from buildrelay.store import EntityRegistry


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db(tmp_path):
    async with aiosqlite.connect(str(tmp_path / "test.db")) as conn:
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys=ON")
        yield conn


@pytest_asyncio.fixture
async def registry(db):
    reg = EntityRegistry(db)
    await reg.initialize()
    return reg


# ── Seeding Helpers ──────────────────────────────────────────────────────────


@dataclass
class Seed:
    pipeline: Pipeline
    jobs: dict[str, Job]
    event: Event
    builds: dict[str, Build] = field(default_factory=dict)


def make_graph(
    jobs: dict[str, int | None],
    edges: list[tuple[str, str] | tuple[str, str, bool]],
) -> WorkflowGraph:
    """Build a graph from ``{name: id}`` and ``(src, dest[, join])`` tuples."""
    return WorkflowGraph(
        nodes=[WorkflowNode(name=n, id=i) for n, i in jobs.items()],
        edges=[
            WorkflowEdge(src=e[0], dest=e[1], join=len(e) > 2 and bool(e[2])) for e in edges
        ],
    )


async def seed_pipeline(
    registry: EntityRegistry,
    job_names: list[str],
    edges: list[tuple[str, str] | tuple[str, str, bool]],
    *,
    disabled: tuple[str, ...] = (),
    admins: dict[str, bool] | None = None,
    scm_uri: str = "github.com:123456:main",
    scm_context: str = "github:github.com",
    start_from: str | None = None,
) -> Seed:
    """Create a pipeline with jobs, a graph and an event, ready for triggering.

    The event has no builds unless ``start_from`` names one of the jobs.
    """
    pipeline = await registry.create_pipeline(
        Pipeline(
            name="acme/widgets",
            scm_uri=scm_uri,
            scm_context=scm_context,
            admins=admins if admins is not None else {"alice": True},
        )
    )
    jobs: dict[str, Job] = {}
    for name in job_names:
        state = JobState.DISABLED if name in disabled else JobState.ENABLED
        jobs[name] = await registry.create_job(
            Job(name=name, pipeline_id=pipeline.id, state=state)
        )

    graph_jobs: dict[str, int | None] = {name: job.id for name, job in jobs.items()}
    for edge in edges:
        for name in edge[:2]:
            graph_jobs.setdefault(name, None)
    await registry.update_workflow_graph(pipeline.id, make_graph(graph_jobs, edges))
    pipeline = await registry.get_pipeline(pipeline.id)

    event = await registry.create_event(
        pipeline_id=pipeline.id,
        start_from=start_from,
        type=EventType.PIPELINE,
        cause_message="Started by alice",
        scm_context=scm_context,
        username="alice",
        sha="a" * 40,
    )
    return Seed(pipeline=pipeline, jobs=jobs, event=event)


async def add_build(
    registry: EntityRegistry,
    seed: Seed,
    job_name: str,
    status: BuildStatus = BuildStatus.SUCCESS,
) -> Build:
    """Record a build of ``job_name`` in the seed's event with ``status``."""
    build = await registry.create_build(
        job_id=seed.jobs[job_name].id,
        sha=seed.event.sha,
        parent_build_id=None,
        event_id=seed.event.id,
        username="alice",
        scm_context=seed.pipeline.scm_context,
    )
    assert build is not None
    build = await registry.update_build_status(build.id, status)
    seed.builds[job_name] = build
    return build
