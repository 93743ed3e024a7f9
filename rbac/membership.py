"""
rbac/membership.py -- Per-role user counts for reporting.

Counts are derived data: the resolver never reads them, so they are allowed
to lag. recompute_user_counts() is a full, non-incremental rescan -- reset
every role to 0, walk all users once, and put each user in at most one
bucket:

    admin user        -> the seed Administrator role (fixed id, not a name lookup)
    user with role_id -> that role, if it still exists
    neither           -> uncounted

User mutations announce themselves with a UserIdentityChanged event via
publish(). The run() coroutine is the consumer: it is started as a background
task in the API lifespan, collapses bursts of events into one rescan, and
logs and carries on when a rescan fails. A failed rescan never reaches the
request that triggered it.

publish() is safe to call from any thread. With no consumer running (CLI,
unit tests) it rescans inline with the same log-and-continue behavior.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from rbac.catalog import RoleCatalog
from rbac.identity import is_admin_flag
from rbac.models import ADMINISTRATOR_ROLE_ID
from rbac.reconciler import IdentitySource

logger = logging.getLogger("itam.rbac.membership")


@dataclass(frozen=True)
class UserIdentityChanged:
    """A user was created, deleted, or had its admin flag / role changed."""

    user_id: Optional[int]
    reason: str = "update"
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class RoleMembershipAggregator:
    def __init__(self, catalog: RoleCatalog, users: IdentitySource) -> None:
        self._catalog = catalog
        self._users = users
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Rescan
    # ------------------------------------------------------------------

    def recompute_user_counts(self) -> dict[int, int]:
        """Rescan all users and store fresh counts on the catalog.

        Returns the counts keyed by role id (every current role present).
        Exceptions propagate; callers that must not fail use _recompute_quietly().
        """
        role_ids = {role.id for role in self._catalog.get_roles()}
        counts: Counter[int] = Counter({role_id: 0 for role_id in role_ids})
        for user in self._users.list_users():
            if is_admin_flag(user.is_admin):
                bucket = ADMINISTRATOR_ROLE_ID
            elif user.role_id is not None:
                bucket = user.role_id
            else:
                continue
            if bucket in role_ids:
                counts[bucket] += 1
        result = dict(counts)
        self._catalog.apply_user_counts(result)
        logger.debug("Role user counts: %s", result)
        return result

    def _recompute_quietly(self, event: UserIdentityChanged) -> None:
        try:
            self.recompute_user_counts()
        except Exception:
            logger.exception("Failed to update role user counts after %s of user %s", event.reason, event.user_id)

    # ------------------------------------------------------------------
    # Event consumer
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._queue is not None

    def publish(self, event: UserIdentityChanged) -> None:
        """Hand an event to the consumer. Never raises."""
        queue, loop = self._queue, self._loop
        if queue is None or loop is None:
            self._recompute_quietly(event)
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is loop:
            queue.put_nowait(event)
        else:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, event)
            except RuntimeError:
                # Consumer loop already closed (shutdown in progress).
                self._recompute_quietly(event)

    async def run(self) -> None:
        """Consume UserIdentityChanged events until cancelled."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        logger.info("Role membership consumer started")
        try:
            while True:
                event = await self._queue.get()
                coalesced = 1
                while not self._queue.empty():
                    self._queue.get_nowait()
                    coalesced += 1
                self._recompute_quietly(event)
                for _ in range(coalesced):
                    self._queue.task_done()
        finally:
            self._queue = None
            self._loop = None
            logger.info("Role membership consumer stopped")

    async def join(self) -> None:
        """Wait until every event published so far has been processed."""
        if self._queue is not None:
            await self._queue.join()
