"""
tests/test_membership.py -- Unit tests for rbac.membership.RoleMembershipAggregator.

Covers:
  - bucket rules: admins -> Administrator role, role holders -> their role,
    unassigned and dangling role ids -> uncounted
  - recompute is idempotent
  - publish() without a consumer recomputes inline and never raises
  - the asyncio consumer processes published events, coalesces bursts,
    accepts events from other threads, and survives a failing rescan
"""

from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace

from rbac.catalog import RoleCatalog
from rbac.membership import RoleMembershipAggregator, UserIdentityChanged


class FakeUsers:
    def __init__(self, *users) -> None:
        self.users = list(users)
        self.scans = 0
        self.fail = False

    def list_users(self):
        self.scans += 1
        if self.fail:
            raise RuntimeError("database is locked")
        return list(self.users)

    def get_by_id(self, user_id):
        return next((u for u in self.users if u.id == user_id), None)


def _user(user_id, is_admin=False, role_id=None):
    return SimpleNamespace(id=user_id, is_admin=is_admin, role_id=role_id, is_active=True)


def _counts(catalog: RoleCatalog) -> dict[int, int]:
    return {role.id: role.user_count for role in catalog.get_roles()}


class TestRecompute:
    def test_bucket_rules(self) -> None:
        catalog = RoleCatalog()
        users = FakeUsers(
            _user(1, is_admin=True),
            _user(2, is_admin=True, role_id=4),  # inconsistent record: counted once, as admin
            _user(3, role_id=4),
            _user(4, role_id=2),
            _user(5),
            _user(6, role_id=99),
        )
        result = RoleMembershipAggregator(catalog, users).recompute_user_counts()
        assert result == {1: 2, 2: 1, 3: 0, 4: 1}
        assert _counts(catalog) == result

    def test_legacy_integer_admin_counted_as_admin(self) -> None:
        catalog = RoleCatalog()
        RoleMembershipAggregator(catalog, FakeUsers(_user(1, is_admin=1))).recompute_user_counts()
        assert _counts(catalog)[1] == 1

    def test_idempotent(self) -> None:
        catalog = RoleCatalog()
        aggregator = RoleMembershipAggregator(catalog, FakeUsers(_user(1, is_admin=True), _user(2, role_id=3)))
        first = aggregator.recompute_user_counts()
        second = aggregator.recompute_user_counts()
        assert first == second
        assert _counts(catalog) == second

    def test_counts_reset_when_users_leave(self) -> None:
        catalog = RoleCatalog()
        users = FakeUsers(_user(1, role_id=3))
        aggregator = RoleMembershipAggregator(catalog, users)
        aggregator.recompute_user_counts()
        users.users.clear()
        aggregator.recompute_user_counts()
        assert _counts(catalog)[3] == 0

    def test_custom_role_counted(self) -> None:
        catalog = RoleCatalog()
        role = catalog.create_role("Auditor")
        RoleMembershipAggregator(catalog, FakeUsers(_user(1, role_id=role.id))).recompute_user_counts()
        assert _counts(catalog)[role.id] == 1


class TestPublishWithoutConsumer:
    def test_recomputes_inline(self) -> None:
        catalog = RoleCatalog()
        users = FakeUsers(_user(1, role_id=2))
        aggregator = RoleMembershipAggregator(catalog, users)
        assert not aggregator.running
        aggregator.publish(UserIdentityChanged(1))
        assert _counts(catalog)[2] == 1

    def test_failure_is_logged_not_raised(self, caplog) -> None:
        users = FakeUsers(_user(1, role_id=2))
        users.fail = True
        aggregator = RoleMembershipAggregator(RoleCatalog(), users)
        with caplog.at_level("ERROR", logger="itam.rbac.membership"):
            aggregator.publish(UserIdentityChanged(1, reason="create"))
        assert "Failed to update role user counts" in caplog.text


class TestConsumer:
    def test_processes_published_event(self) -> None:
        catalog = RoleCatalog()
        users = FakeUsers()
        aggregator = RoleMembershipAggregator(catalog, users)

        async def scenario() -> None:
            task = asyncio.create_task(aggregator.run())
            await asyncio.sleep(0)
            assert aggregator.running
            users.users.append(_user(1, role_id=4))
            aggregator.publish(UserIdentityChanged(1))
            await aggregator.join()
            task.cancel()

        asyncio.run(scenario())
        assert _counts(catalog)[4] == 1
        assert not aggregator.running

    def test_burst_is_coalesced(self) -> None:
        users = FakeUsers(_user(1, role_id=4))
        aggregator = RoleMembershipAggregator(RoleCatalog(), users)

        async def scenario() -> None:
            task = asyncio.create_task(aggregator.run())
            await asyncio.sleep(0)
            for user_id in range(10):
                aggregator.publish(UserIdentityChanged(user_id))
            await aggregator.join()
            task.cancel()

        asyncio.run(scenario())
        assert users.scans == 1

    def test_event_from_worker_thread(self) -> None:
        catalog = RoleCatalog()
        users = FakeUsers(_user(1, is_admin=True))
        aggregator = RoleMembershipAggregator(catalog, users)

        async def scenario() -> None:
            task = asyncio.create_task(aggregator.run())
            await asyncio.sleep(0)
            worker = threading.Thread(target=aggregator.publish, args=(UserIdentityChanged(1),))
            worker.start()
            await asyncio.to_thread(worker.join)
            # call_soon_threadsafe schedules the put; let it run before joining.
            await asyncio.sleep(0)
            await aggregator.join()
            task.cancel()

        asyncio.run(scenario())
        assert _counts(catalog)[1] == 1

    def test_consumer_survives_failed_rescan(self) -> None:
        catalog = RoleCatalog()
        users = FakeUsers(_user(1, role_id=3))
        aggregator = RoleMembershipAggregator(catalog, users)

        async def scenario() -> None:
            task = asyncio.create_task(aggregator.run())
            await asyncio.sleep(0)
            users.fail = True
            aggregator.publish(UserIdentityChanged(1))
            await aggregator.join()
            users.fail = False
            aggregator.publish(UserIdentityChanged(1))
            await aggregator.join()
            assert not task.done()
            task.cancel()

        asyncio.run(scenario())
        assert _counts(catalog)[3] == 1
