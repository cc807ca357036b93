"""Build completion handling.

Records a build's final status and, when it succeeded, runs the trigger
orchestrator for local successors and the downstream trigger for every
cross-pipeline successor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from buildrelay.errors import NotFoundError, TriggerError
from buildrelay.models import Build, BuildStatus, Event
from buildrelay.store.base import EntityStore
from buildrelay.triggers.downstream import DownstreamTrigger
from buildrelay.triggers.fanout import gather_isolated
from buildrelay.triggers.orchestrator import TriggerOrchestrator
from buildrelay.workflow import WorkflowGraphQuery, WorkflowParser, parse_external_job

logger = logging.getLogger("buildrelay.triggers.completion")


@dataclass
class CompletionResult:
    build: Build
    builds: list[Build | None] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)


class BuildCompletionHandler:
    """Entry point for "build X finished with status Y"."""

    def __init__(
        self,
        store: EntityStore,
        orchestrator: TriggerOrchestrator,
        downstream: DownstreamTrigger | None = None,
        graph_query: WorkflowGraphQuery | None = None,
    ):
        self._store = store
        self._orchestrator = orchestrator
        self._downstream = downstream
        self._graph = graph_query or WorkflowParser()

    async def handle(self, build_id: int, status: BuildStatus) -> CompletionResult:
        """Record ``status`` for ``build_id`` and trigger what follows it.

        A repeated SUCCESS report for a build that already succeeded is a
        no-op, so cross-pipeline events are created at most once per build.

        Raises:
            NotFoundError: Missing build, job, event or pipeline.
            TriggerError: Some successor or downstream trigger failed. Its
                ``results`` lists local results followed by downstream events.
        """
        previous = await self._store.get_build(build_id)
        if previous is None:
            raise NotFoundError("build", build_id)
        if previous.status == BuildStatus.SUCCESS and status == BuildStatus.SUCCESS:
            logger.info("Build %s already succeeded, not triggering again", build_id)
            return CompletionResult(build=previous)

        build = await self._store.update_build_status(build_id, status)
        if build is None:
            raise NotFoundError("build", build_id)
        logger.info("Build %s finished with %s", build_id, status.value)

        if status != BuildStatus.SUCCESS:
            return CompletionResult(build=build)

        job = await self._store.get_job_by_id(build.job_id)
        if job is None:
            raise NotFoundError("job", build.job_id)
        event = await self._store.get_event(build.event_id)
        if event is None:
            raise NotFoundError("event", build.event_id)
        pipeline = await self._store.get_pipeline(event.pipeline_id)
        if pipeline is None:
            raise NotFoundError("pipeline", event.pipeline_id)

        errors: list[BaseException] = []

        try:
            builds = await self._orchestrator.trigger_next_jobs(
                pipeline, job, build, event.username, pipeline.scm_context
            )
        except TriggerError as exc:
            builds = exc.results
            errors.extend(exc.errors)

        successors = self._graph.next_jobs(event.workflow_graph, job.name)
        external = [t for t in map(parse_external_job, successors) if t is not None]
        events: list = []
        if external and self._downstream is None:
            logger.warning(
                "Build %s has %d cross-pipeline successors "
                "but no downstream trigger is configured",
                build_id,
                len(external),
            )
        elif external:
            cause = f"Triggered by build {build.id}"
            try:
                events = await gather_isolated(
                    [f"sd@{t.pipeline_id}:{t.job_name}" for t in external],
                    [
                        self._downstream.trigger_event(t.pipeline_id, t.job_name, cause)
                        for t in external
                    ],
                )
            except TriggerError as exc:
                events = exc.results
                errors.extend(exc.errors)

        if errors:
            raise TriggerError([*builds, *events], errors)
        return CompletionResult(build=build, builds=builds, events=events)
