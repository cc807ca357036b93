"""Entity registry — SQLite persistence for pipelines, jobs, users, events and builds.

Key exports:
    EntityRegistry — aiosqlite implementation of the ``EntityStore`` contract.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

import aiosqlite

from buildrelay.errors import NotFoundError, StoreError
from buildrelay.models import (
    Build,
    BuildStatus,
    Event,
    EventType,
    Job,
    JobState,
    Pipeline,
    User,
    WorkflowGraph,
)

logger = logging.getLogger("buildrelay.store.registry")


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Re-raise backend errors as ``StoreError``."""
    try:
        yield
    except aiosqlite.Error as exc:
        raise StoreError(f"{operation} failed: {exc}") from exc


class EntityRegistry:
    """SQLite-backed entity store.

    Takes an already-open aiosqlite connection with ``row_factory`` set to
    ``aiosqlite.Row``. Call ``initialize()`` to create tables.
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def initialize(self) -> None:
        """Create all tables if they don't exist."""
        with _store_errors("initialize"):
            await self._db.executescript(_SCHEMA_SQL)
            await self._db.commit()
        logger.info("Entity registry tables initialized")

    # ── Pipelines ────────────────────────────────────────────────────────────

    async def create_pipeline(self, pipeline: Pipeline) -> Pipeline:
        with _store_errors("create_pipeline"):
            cursor = await self._db.execute(
                """
                INSERT INTO pipelines (
                    name, scm_uri, scm_context, admins, workflow_graph, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    pipeline.name,
                    pipeline.scm_uri,
                    pipeline.scm_context,
                    json.dumps(pipeline.admins),
                    pipeline.workflow_graph.model_dump_json(),
                    _dt_to_str(pipeline.created_at),
                ),
            )
            await self._db.commit()
        return pipeline.model_copy(update={"id": cursor.lastrowid})

    async def get_pipeline(self, pipeline_id: int) -> Pipeline | None:
        with _store_errors("get_pipeline"):
            cursor = await self._db.execute("SELECT * FROM pipelines WHERE id = ?", (pipeline_id,))
            row = await cursor.fetchone()
        if not row:
            return None
        return _row_to_pipeline(row)

    async def update_workflow_graph(self, pipeline_id: int, graph: WorkflowGraph) -> None:
        """Replace a pipeline's graph. Existing events keep their snapshot."""
        with _store_errors("update_workflow_graph"):
            await self._db.execute(
                "UPDATE pipelines SET workflow_graph = ? WHERE id = ?",
                (graph.model_dump_json(), pipeline_id),
            )
            await self._db.commit()

    # ── Jobs ─────────────────────────────────────────────────────────────────

    async def create_job(self, job: Job) -> Job:
        with _store_errors("create_job"):
            cursor = await self._db.execute(
                "INSERT INTO jobs (name, pipeline_id, state) VALUES (?, ?, ?)",
                (job.name, job.pipeline_id, job.state.value),
            )
            await self._db.commit()
        return job.model_copy(update={"id": cursor.lastrowid})

    async def get_job(self, name: str, pipeline_id: int) -> Job | None:
        with _store_errors("get_job"):
            cursor = await self._db.execute(
                "SELECT * FROM jobs WHERE name = ? AND pipeline_id = ?", (name, pipeline_id)
            )
            row = await cursor.fetchone()
        if not row:
            return None
        return _row_to_job(row)

    async def get_job_by_id(self, job_id: int) -> Job | None:
        with _store_errors("get_job_by_id"):
            cursor = await self._db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
        if not row:
            return None
        return _row_to_job(row)

    async def update_job_state(self, job_id: int, state: JobState) -> None:
        with _store_errors("update_job_state"):
            await self._db.execute("UPDATE jobs SET state = ? WHERE id = ?", (state.value, job_id))
            await self._db.commit()

    # ── Users ────────────────────────────────────────────────────────────────

    async def create_user(self, user: User) -> User:
        """Insert or replace a user. ``user.token`` must already be sealed."""
        with _store_errors("create_user"):
            cursor = await self._db.execute(
                """
                INSERT INTO users (username, scm_context, token) VALUES (?, ?, ?)
                ON CONFLICT(username, scm_context) DO UPDATE SET token = excluded.token
                """,
                (user.username, user.scm_context, user.token),
            )
            await self._db.commit()
        stored = await self.get_user(user.username, user.scm_context)
        return stored or user.model_copy(update={"id": cursor.lastrowid})

    async def get_user(self, username: str, scm_context: str) -> User | None:
        with _store_errors("get_user"):
            cursor = await self._db.execute(
                "SELECT * FROM users WHERE username = ? AND scm_context = ?",
                (username, scm_context),
            )
            row = await cursor.fetchone()
        if not row:
            return None
        return User(
            id=row["id"],
            username=row["username"],
            scm_context=row["scm_context"],
            token=row["token"],
        )

    # ── Events ───────────────────────────────────────────────────────────────

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
        """Create an event carrying a snapshot of the pipeline's current graph.

        When ``start_from`` names an enabled job of the pipeline, its first
        QUEUED build is created in the same transaction as the event.
        """
        pipeline = await self.get_pipeline(pipeline_id)
        if pipeline is None:
            raise NotFoundError("pipeline", pipeline_id)
        start_job = await self.get_job(start_from, pipeline_id) if start_from else None
        if start_job is not None and start_job.state != JobState.ENABLED:
            logger.debug("Start job %s is disabled (pipeline %s)", start_from, pipeline_id)
            start_job = None

        event = Event(
            pipeline_id=pipeline_id,
            type=type,
            workflow_graph=pipeline.workflow_graph,
            sha=sha,
            username=username,
            scm_context=scm_context,
            start_from=start_from,
            cause_message=cause_message,
        )
        start_build: Build | None = None
        with _store_errors("create_event"):
            try:
                cursor = await self._db.execute(
                    """
                    INSERT INTO events (
                        pipeline_id, type, workflow_graph, sha, username, scm_context,
                        start_from, cause_message, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.pipeline_id,
                        event.type.value,
                        event.workflow_graph.model_dump_json(),
                        event.sha,
                        event.username,
                        event.scm_context,
                        event.start_from,
                        event.cause_message,
                        _dt_to_str(event.created_at),
                    ),
                )
                event = event.model_copy(update={"id": cursor.lastrowid})
                if start_job is not None:
                    start_build = await self._insert_build(
                        Build(
                            job_id=start_job.id,
                            event_id=event.id,
                            sha=sha,
                            username=username,
                            scm_context=scm_context,
                        )
                    )
                await self._db.commit()
            except aiosqlite.Error:
                await self._db.rollback()
                raise

        logger.info("Created %s event %s for pipeline %s", event.type.value, event.id, pipeline_id)
        if start_build is not None:
            logger.info("Queued build %s for start job %s", start_build.id, start_from)
        return event

    async def get_event(self, event_id: int) -> Event | None:
        with _store_errors("get_event"):
            cursor = await self._db.execute("SELECT * FROM events WHERE id = ?", (event_id,))
            row = await cursor.fetchone()
        if not row:
            return None
        return _row_to_event(row)

    # ── Builds ───────────────────────────────────────────────────────────────

    async def create_build(
        self,
        *,
        job_id: int,
        sha: str,
        parent_build_id: int | None,
        event_id: int,
        username: str | None,
        scm_context: str | None,
    ) -> Build | None:
        """Create a build, or return None if the event already has one for this job."""
        build = Build(
            job_id=job_id,
            event_id=event_id,
            parent_build_id=parent_build_id,
            sha=sha,
            username=username,
            scm_context=scm_context,
        )
        with _store_errors("create_build"):
            created = await self._insert_build(build)
            await self._db.commit()
        if created is None:
            logger.debug("Build for job %s already exists in event %s", job_id, event_id)
        return created

    async def _insert_build(self, build: Build) -> Build | None:
        """Insert without committing. None when (event, job) already has a build."""
        cursor = await self._db.execute(
            """
            INSERT INTO builds (
                job_id, event_id, parent_build_id, sha, status,
                username, scm_context, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(event_id, job_id) DO NOTHING
            """,
            (
                build.job_id,
                build.event_id,
                build.parent_build_id,
                build.sha,
                build.status.value,
                build.username,
                build.scm_context,
                _dt_to_str(build.created_at),
            ),
        )
        if cursor.rowcount == 0:
            return None
        return build.model_copy(update={"id": cursor.lastrowid})

    async def get_build(self, build_id: int) -> Build | None:
        with _store_errors("get_build"):
            cursor = await self._db.execute("SELECT * FROM builds WHERE id = ?", (build_id,))
            row = await cursor.fetchone()
        if not row:
            return None
        return _row_to_build(row)

    async def list_event_builds(self, event_id: int) -> list[Build]:
        """All builds of an event, regardless of status."""
        with _store_errors("list_event_builds"):
            cursor = await self._db.execute(
                "SELECT * FROM builds WHERE event_id = ? ORDER BY id", (event_id,)
            )
            rows = await cursor.fetchall()
        return [_row_to_build(r) for r in rows]

    async def update_build_status(self, build_id: int, status: BuildStatus) -> Build | None:
        """Set a build's status. Terminal statuses also stamp ``end_time``."""
        end_time = datetime.now(timezone.utc) if status.is_terminal else None
        with _store_errors("update_build_status"):
            await self._db.execute(
                "UPDATE builds SET status = ?, end_time = COALESCE(?, end_time) WHERE id = ?",
                (status.value, _dt_to_str(end_time), build_id),
            )
            await self._db.commit()
        return await self.get_build(build_id)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pipelines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL DEFAULT '',
    scm_uri TEXT NOT NULL,
    scm_context TEXT NOT NULL,
    admins TEXT DEFAULT '{}',
    workflow_graph TEXT DEFAULT '{}',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    pipeline_id INTEGER NOT NULL REFERENCES pipelines(id) ON DELETE CASCADE,
    state TEXT DEFAULT 'ENABLED',

    UNIQUE(pipeline_id, name)
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL,
    scm_context TEXT NOT NULL,
    token TEXT NOT NULL DEFAULT '',

    UNIQUE(username, scm_context)
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pipeline_id INTEGER NOT NULL REFERENCES pipelines(id) ON DELETE CASCADE,
    type TEXT DEFAULT 'pipeline',
    workflow_graph TEXT DEFAULT '{}',
    sha TEXT NOT NULL,
    username TEXT NOT NULL,
    scm_context TEXT NOT NULL,
    start_from TEXT,
    cause_message TEXT DEFAULT '',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_events_pipeline
    ON events(pipeline_id);

CREATE TABLE IF NOT EXISTS builds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    parent_build_id INTEGER REFERENCES builds(id),
    sha TEXT NOT NULL,
    status TEXT DEFAULT 'QUEUED',
    username TEXT,
    scm_context TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    end_time TEXT,

    UNIQUE(event_id, job_id)
);

CREATE INDEX IF NOT EXISTS idx_builds_event
    ON builds(event_id, status);
"""


# ── Row-to-Model Converters ─────────────────────────────────────────────────


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for SQLite storage."""
    if dt is None:
        return None
    return dt.isoformat()


def _str_to_dt(s: str | None) -> datetime | None:
    """Parse ISO string from SQLite back to datetime."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s)
    except (ValueError, TypeError):
        return None


def _load_graph(raw: str | None) -> WorkflowGraph:
    if not raw:
        return WorkflowGraph()
    return WorkflowGraph.model_validate_json(raw)


def _row_to_pipeline(row: aiosqlite.Row) -> Pipeline:
    admins = row["admins"]
    if isinstance(admins, str):
        admins = json.loads(admins)

    return Pipeline(
        id=row["id"],
        name=row["name"],
        scm_uri=row["scm_uri"],
        scm_context=row["scm_context"],
        admins=admins or {},
        workflow_graph=_load_graph(row["workflow_graph"]),
        created_at=_str_to_dt(row["created_at"]) or datetime.now(timezone.utc),
    )


def _row_to_job(row: aiosqlite.Row) -> Job:
    return Job(
        id=row["id"],
        name=row["name"],
        pipeline_id=row["pipeline_id"],
        state=JobState(row["state"]),
    )


def _row_to_event(row: aiosqlite.Row) -> Event:
    return Event(
        id=row["id"],
        pipeline_id=row["pipeline_id"],
        type=EventType(row["type"]),
        workflow_graph=_load_graph(row["workflow_graph"]),
        sha=row["sha"],
        username=row["username"],
        scm_context=row["scm_context"],
        start_from=row["start_from"],
        cause_message=row["cause_message"] or "",
        created_at=_str_to_dt(row["created_at"]) or datetime.now(timezone.utc),
    )


def _row_to_build(row: aiosqlite.Row) -> Build:
    return Build(
        id=row["id"],
        job_id=row["job_id"],
        event_id=row["event_id"],
        parent_build_id=row["parent_build_id"],
        sha=row["sha"],
        status=BuildStatus(row["status"]),
        username=row["username"],
        scm_context=row["scm_context"],
        created_at=_str_to_dt(row["created_at"]) or datetime.now(timezone.utc),
        end_time=_str_to_dt(row["end_time"]),
    )
