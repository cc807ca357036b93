"""Error taxonomy for buildrelay.

Every failure surfaces to the immediate caller as one of these. Disabled
jobs are not errors: the build starter simply returns None for them.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for all buildrelay failures."""


class NotFoundError(RelayError):
    """A pipeline, job, user, event, build or admin could not be found."""

    def __init__(self, kind: str, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class CredentialError(RelayError):
    """A stored SCM token could not be retrieved or unsealed."""


class SourceControlError(RelayError):
    """Commit resolution against the source-control provider failed."""


class StoreError(RelayError):
    """The entity store backend failed a lookup or a write."""


class TriggerError(RelayError):
    """One or more fan-out branches failed.

    Raised only after every branch has finished, so sibling builds that
    were created are still reported in ``results``. Failed branches hold
    their exception in ``results`` and are also listed in ``errors``.
    """

    def __init__(self, results: list[Any], errors: list[BaseException]):
        self.results = results
        self.errors = errors
        summary = "; ".join(str(e) for e in errors)
        super().__init__(f"{len(errors)} of {len(results)} branches failed: {summary}")
