"""Trigger orchestrator — decides which successor jobs start after a build.

Key exports:
    TriggerOrchestrator — ``trigger_next_jobs()`` runs once per finished build.
"""

from __future__ import annotations

import logging

from buildrelay.errors import NotFoundError
from buildrelay.models import Build, Event, Job, JoinSource, Pipeline
from buildrelay.store.base import EntityStore
from buildrelay.triggers.builds import start_build
from buildrelay.triggers.fanout import gather_isolated
from buildrelay.triggers.join import is_join_done
from buildrelay.workflow import WorkflowGraphQuery, WorkflowParser, is_external_job

logger = logging.getLogger("buildrelay.triggers.orchestrator")


class TriggerOrchestrator:
    """Fans out over a finished job's successors and starts the eligible ones.

    A successor starts right away when it has no join, or when the finished
    job is not one of its join sources (it was reached through a plain
    trigger edge). Otherwise it starts only once every join source has a
    successful build in the event.

    Two join members finishing together may both see the join satisfied;
    the store's per-(event, job) idempotent create keeps that to one build.

    Usage:
        orchestrator = TriggerOrchestrator(registry)
        builds = await orchestrator.trigger_next_jobs(pipeline, job, build, "alice", ctx)
    """

    def __init__(self, store: EntityStore, graph_query: WorkflowGraphQuery | None = None):
        self._store = store
        self._graph = graph_query or WorkflowParser()

    async def trigger_next_jobs(
        self,
        pipeline: Pipeline,
        job: Job,
        build: Build,
        username: str | None,
        scm_context: str | None,
    ) -> list[Build | None]:
        """Start the successors of ``job`` whose conditions are met.

        Returns one entry per local successor, in graph order: the created
        build, or None when it was skipped. Cross-pipeline successors are
        left to the completion handler.

        Raises:
            NotFoundError: If the build's event does not exist. No branch runs.
            TriggerError: If any successor branch failed, after all branches
                finished.
        """
        event = await self._store.get_event(build.event_id)
        if event is None:
            raise NotFoundError("event", build.event_id)

        graph = event.workflow_graph
        next_jobs = [
            name for name in self._graph.next_jobs(graph, job.name) if not is_external_job(name)
        ]
        if not next_jobs:
            logger.debug("Job %s has no local successors (event %s)", job.name, event.id)
            return []

        joins = {name: self._graph.join_sources(graph, name) for name in next_jobs}

        return await gather_isolated(
            next_jobs,
            [
                self._trigger_successor(
                    event,
                    pipeline_id=pipeline.id,
                    current_job_name=job.name,
                    next_job_name=name,
                    join_list=joins[name],
                    build=build,
                    username=username,
                    scm_context=scm_context,
                )
                for name in next_jobs
            ],
        )

    async def _trigger_successor(
        self,
        event: Event,
        *,
        pipeline_id: int,
        current_job_name: str,
        next_job_name: str,
        join_list: list[JoinSource],
        build: Build,
        username: str | None,
        scm_context: str | None,
    ) -> Build | None:
        join_names = {j.name for j in join_list}

        if join_list and current_job_name in join_names:
            join_list = await self._resolve_join_ids(join_list, pipeline_id)
            finished_builds = await self._store.list_event_builds(event.id)
            if not is_join_done(join_list, finished_builds):
                logger.debug(
                    "Join for %s still waiting on %s (event %s)",
                    next_job_name,
                    sorted(join_names),
                    event.id,
                )
                return None

        return await start_build(
            self._store,
            job_name=next_job_name,
            pipeline_id=pipeline_id,
            build=build,
            username=username,
            scm_context=scm_context,
        )

    async def _resolve_join_ids(
        self, join_list: list[JoinSource], pipeline_id: int
    ) -> list[JoinSource]:
        """Look up by name every join source whose graph node carries no job id."""
        resolved: list[JoinSource] = []
        for source in join_list:
            if source.id is None:
                job = await self._store.get_job(source.name, pipeline_id)
                if job is None:
                    raise NotFoundError("job", f"{pipeline_id}/{source.name}")
                source = source.model_copy(update={"id": job.id})
            resolved.append(source)
        return resolved
