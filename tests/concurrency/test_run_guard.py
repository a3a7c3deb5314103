"""
Concurrency tests for OrgRunGuard: at most one active run per organisation.
"""

import threading
import time
from datetime import date
from uuid import uuid4

import pytest

from billing_kernel.exceptions import BillingRunInProgressError

from billing_batch.domain.types import BillingRunRequest, BillingRunStatus
from billing_batch.services.run_guard import OrgRunGuard


class TestOrgRunGuard:

    def test_second_hold_rejected_immediately(self):
        guard = OrgRunGuard()
        org_id = uuid4()

        with guard.hold(org_id):
            assert guard.is_held(org_id)
            with pytest.raises(BillingRunInProgressError) as exc_info:
                with guard.hold(str(org_id)):
                    pass

        assert exc_info.value.org_id == str(org_id)
        assert not guard.is_held(org_id)

    def test_orgs_are_independent(self):
        guard = OrgRunGuard()
        a, b = uuid4(), uuid4()

        with guard.hold(a), guard.hold(b):
            assert guard.is_held(a) and guard.is_held(b)

    def test_released_orgs_are_forgotten(self):
        guard = OrgRunGuard()
        org_ids = [uuid4() for _ in range(50)]

        for org_id in org_ids:
            with guard.hold(org_id):
                assert guard.held_count == 1

        assert guard.held_count == 0

    def test_rejected_hold_keeps_the_winner(self):
        guard = OrgRunGuard()
        org_id = uuid4()

        with guard.hold(org_id):
            with pytest.raises(BillingRunInProgressError):
                with guard.hold(org_id):
                    pass
            assert guard.is_held(org_id)

        assert not guard.is_held(org_id)

    def test_released_when_body_raises(self):
        guard = OrgRunGuard()
        org_id = uuid4()

        with pytest.raises(RuntimeError):
            with guard.hold(org_id):
                raise RuntimeError("run crashed")

        with guard.hold(org_id):
            pass

    def test_only_one_thread_wins(self):
        guard = OrgRunGuard()
        org_id = uuid4()
        n_threads = 8
        barrier = threading.Barrier(n_threads)
        release = threading.Event()
        results: list[str] = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                with guard.hold(org_id):
                    with results_lock:
                        results.append("held")
                    release.wait(timeout=5)
            except BillingRunInProgressError:
                with results_lock:
                    results.append("rejected")

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        # Keep the winner holding until every loser has reported
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            with results_lock:
                if results.count("rejected") == n_threads - 1:
                    break
            time.sleep(0.01)
        release.set()
        for t in threads:
            t.join(timeout=10)

        assert results.count("held") == 1
        assert results.count("rejected") == n_threads - 1


class TestRunSerialisation:

    def test_create_run_rejected_while_another_holds_the_org(
        self, executor, run_guard, org, test_actor_id,
    ):
        entered = threading.Event()
        release = threading.Event()

        def long_running_run():
            with run_guard.hold(org.id):
                entered.set()
                release.wait(timeout=5)

        holder = threading.Thread(target=long_running_run)
        holder.start()
        try:
            assert entered.wait(timeout=5)
            request = BillingRunRequest(org.id, date(2026, 3, 1), date(2026, 3, 31))
            with pytest.raises(BillingRunInProgressError):
                executor.create_run(request, test_actor_id)
        finally:
            release.set()
            holder.join(timeout=10)

        run = executor.create_run(
            BillingRunRequest(org.id, date(2026, 3, 1), date(2026, 3, 31)), test_actor_id,
        )
        assert run.status == BillingRunStatus.COMPLETED

    def test_other_org_not_blocked(self, executor, run_guard, org, make_org, test_actor_id):
        other = make_org("Other School")

        with run_guard.hold(org.id):
            run = executor.create_run(
                BillingRunRequest(other.id, date(2026, 3, 1), date(2026, 3, 31)),
                test_actor_id,
            )

        assert run.org_id == other.id

    def test_retry_also_guarded(self, executor, run_guard, org, test_actor_id):
        run = executor.create_run(
            BillingRunRequest(org.id, date(2026, 3, 1), date(2026, 3, 31)), test_actor_id,
        )

        with run_guard.hold(org.id):
            with pytest.raises(BillingRunInProgressError):
                executor.retry_run(org.id, run.run_id, [uuid4()], test_actor_id)
