"""Build starter — creates the build for a successor job."""

from __future__ import annotations

import logging

from buildrelay.errors import NotFoundError
from buildrelay.models import Build, JobState
from buildrelay.store.base import EntityStore

logger = logging.getLogger("buildrelay.triggers.builds")


async def start_build(
    store: EntityStore,
    *,
    job_name: str,
    pipeline_id: int,
    build: Build,
    username: str | None,
    scm_context: str | None,
) -> Build | None:
    """Start a build of ``job_name`` as a child of ``build``.

    The job state is read at call time. Disabled jobs are skipped and
    return None, as does a job that already has a build in this event.

    Raises:
        NotFoundError: If the pipeline has no job named ``job_name``.
    """
    job = await store.get_job(job_name, pipeline_id)
    if job is None:
        raise NotFoundError("job", f"{pipeline_id}/{job_name}")

    if job.state != JobState.ENABLED:
        logger.debug("Skipping disabled job %s (pipeline %s)", job_name, pipeline_id)
        return None

    created = await store.create_build(
        job_id=job.id,
        sha=build.sha,
        parent_build_id=build.id,
        event_id=build.event_id,
        username=username,
        scm_context=scm_context,
    )
    if created is not None:
        logger.info(
            "Started build %s for job %s (event %s, parent build %s)",
            created.id,
            job_name,
            build.event_id,
            build.id,
        )
    return created
