"""Downstream pipeline trigger — starts a new event in another pipeline.

Key exports:
    DownstreamTrigger — ``trigger_event()`` for cross-pipeline edges.
    select_admin — Deterministic admin choice for a pipeline.
"""

from __future__ import annotations

import logging

from buildrelay.errors import NotFoundError
from buildrelay.models import Event, EventType, Pipeline
from buildrelay.scm import ScmClient
from buildrelay.secrets import TokenUnsealer
from buildrelay.store.base import EntityStore

logger = logging.getLogger("buildrelay.triggers.downstream")


def select_admin(pipeline: Pipeline) -> str:
    """Pick the admin whose credential drives a cross-pipeline trigger.

    Admins are compared by username so the choice does not depend on the
    order they were stored in. Admins flagged false are ignored.

    Raises:
        NotFoundError: If the pipeline has no enabled admin.
    """
    admins = sorted(name for name, enabled in pipeline.admins.items() if enabled)
    if not admins:
        raise NotFoundError("admin", f"pipeline {pipeline.id}")
    return admins[0]


class DownstreamTrigger:
    """Creates a fresh event in a target pipeline on behalf of its admin.

    Every step (pipeline, admin, token, commit) must succeed before the
    event is created, so a failed call leaves nothing behind.
    """

    def __init__(self, store: EntityStore, scm: ScmClient, sealer: TokenUnsealer):
        self._store = store
        self._scm = scm
        self._sealer = sealer

    async def trigger_event(self, pipeline_id: int, start_from: str, cause_message: str) -> Event:
        """Create a ``pipeline`` event in ``pipeline_id`` starting at ``start_from``.

        Args:
            pipeline_id: Pipeline to be rebuilt.
            start_from: Job the new event starts from.
            cause_message: Provenance, e.g. "Triggered by build 1234".

        Raises:
            NotFoundError: Missing pipeline, admin or admin user record.
            CredentialError: The admin's token could not be unsealed.
            SourceControlError: The current commit could not be resolved.
        """
        pipeline = await self._store.get_pipeline(pipeline_id)
        if pipeline is None:
            raise NotFoundError("pipeline", pipeline_id)

        admin = select_admin(pipeline)
        scm_context = pipeline.scm_context

        user = await self._store.get_user(admin, scm_context)
        if user is None:
            raise NotFoundError("user", f"{admin} ({scm_context})")

        token = self._sealer.unseal(user.token)
        sha = await self._scm.get_commit_sha(
            scm_context=scm_context,
            scm_uri=pipeline.scm_uri,
            token=token,
        )

        event = await self._store.create_event(
            pipeline_id=pipeline_id,
            start_from=start_from,
            type=EventType.PIPELINE,
            cause_message=cause_message,
            scm_context=scm_context,
            username=admin,
            sha=sha,
        )
        logger.info(
            "Triggered event %s in pipeline %s from %s as %s (%s)",
            event.id,
            pipeline_id,
            start_from,
            admin,
            cause_message,
        )
        return event
