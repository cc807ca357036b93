"""Entity store contract used by the trigger components.

Lookups return None when the record does not exist; callers decide whether
that is a ``NotFoundError``. ``create_build`` is idempotent per
(event_id, job_id): when a build for that pair already exists it returns
None instead of creating a second one. Concurrent join completions rely on
this to start a join target at most once per event.
"""

from __future__ import annotations

from typing import Protocol

from buildrelay.models import Build, BuildStatus, Event, EventType, Job, Pipeline, User


class EntityStore(Protocol):
    async def get_pipeline(self, pipeline_id: int) -> Pipeline | None: ...

    async def get_job(self, name: str, pipeline_id: int) -> Job | None: ...

    async def get_job_by_id(self, job_id: int) -> Job | None: ...

    async def get_user(self, username: str, scm_context: str) -> User | None: ...

    async def get_event(self, event_id: int) -> Event | None: ...

    async def get_build(self, build_id: int) -> Build | None: ...

    async def list_event_builds(self, event_id: int) -> list[Build]: ...

    async def create_build(
        self,
        *,
        job_id: int,
        sha: str,
        parent_build_id: int | None,
        event_id: int,
        username: str | None,
        scm_context: str | None,
    ) -> Build | None: ...

    async def create_event(
        self,
        *,
        pipeline_id: int,
        start_from: str | None,
        type: EventType,
        cause_message: str,
        scm_context: str,
        username: str,
        sha: str,
    ) -> Event:
        """Create an event and queue the build of its enabled ``start_from`` job."""
        ...

    async def update_build_status(self, build_id: int, status: BuildStatus) -> Build | None: ...
