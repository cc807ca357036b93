"""Join evaluation."""

from __future__ import annotations

from collections.abc import Iterable

from buildrelay.models import Build, BuildStatus, JoinSource


def is_join_done(join_list: Iterable[JoinSource], finished_builds: Iterable[Build]) -> bool:
    """Check if every job in ``join_list`` has a successful build.

    ``finished_builds`` is every build recorded so far for the event, in any
    status. Repeated successes of one job count once, and enumeration order
    does not matter. A failed or aborted member leaves the join pending.
    """
    required = {j.id for j in join_list}
    succeeded = {b.job_id for b in finished_builds if b.status == BuildStatus.SUCCESS}
    return len(required & succeeded) == len(required)
