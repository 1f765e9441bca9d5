"""Integration tests for the job scheduler and its singleton guard"""

import asyncio
import pytest
from datetime import date, timedelta
from hirepay.domain.exceptions import JobAlreadyRunningError
from hirepay.infrastructure.database.repositories import JobLeaseRepository
from hirepay.services.overdue import OverdueSweepResult
from hirepay.services.retries import RetryBatchResult
from hirepay.services.scheduler import OVERDUE_JOB, RETRY_JOB, JobLeaseGuard
from hirepay.utils.date_utils import utcnow


async def test_run_now_retry_job(db, scheduler, contract, make_payment):
    make_payment(contract, failed=True, next_retry_at=utcnow() - timedelta(minutes=1))

    result = await scheduler.run_now(RETRY_JOB)

    assert isinstance(result, RetryBatchResult)
    assert result.pending == 1


async def test_run_now_overdue_job(db, scheduler, customer, make_contract):
    make_contract(customer, first_due=date.today() - timedelta(days=5))

    result = await scheduler.run_now(OVERDUE_JOB)

    assert isinstance(result, OverdueSweepResult)
    assert result.installments_marked == 1


async def test_lease_released_after_run(db, scheduler):
    await scheduler.run_now(RETRY_JOB)

    lease = JobLeaseRepository(db).get(RETRY_JOB)
    assert lease is not None
    assert lease.holder is None


async def test_no_overlap_in_process(db, scheduler):
    """A second run while the job holds the guard is refused, not queued"""
    async with scheduler.guard.hold(RETRY_JOB):
        with pytest.raises(JobAlreadyRunningError):
            await scheduler.run_now(RETRY_JOB)
        assert await scheduler.tick(RETRY_JOB) is None

    # other jobs are unaffected
    assert isinstance(await scheduler.run_now(OVERDUE_JOB), OverdueSweepResult)


async def test_no_overlap_across_processes(db, scheduler, session_factory):
    other_process = JobLeaseGuard(session_factory, ttl_seconds=300)

    async with other_process.hold(RETRY_JOB):
        with pytest.raises(JobAlreadyRunningError):
            await scheduler.run_now(RETRY_JOB)

    assert isinstance(await scheduler.run_now(RETRY_JOB), RetryBatchResult)


async def test_lease_renewed_while_job_runs(db, session_factory):
    """A run that outlives the lease TTL keeps its lease through the heartbeat"""
    long_runner = JobLeaseGuard(session_factory, ttl_seconds=1, heartbeat_seconds=0.2)
    other_process = JobLeaseGuard(session_factory, ttl_seconds=1)

    async with long_runner.hold(RETRY_JOB) as holder:
        await asyncio.sleep(1.5)

        with pytest.raises(JobAlreadyRunningError):
            async with other_process.hold(RETRY_JOB):
                pass

        db.expire_all()
        lease = JobLeaseRepository(db).get(RETRY_JOB)
        assert lease.holder == holder
        assert lease.expires_at > utcnow()

    db.expire_all()
    assert JobLeaseRepository(db).get(RETRY_JOB).holder is None


async def test_heartbeat_stops_when_lease_lost(db, session_factory):
    guard = JobLeaseGuard(session_factory, ttl_seconds=1, heartbeat_seconds=0.1)

    async with guard.hold(RETRY_JOB) as holder:
        leases = JobLeaseRepository(db)
        leases.release(RETRY_JOB, holder)
        assert leases.try_acquire(RETRY_JOB, "other-worker", 60)
        await asyncio.sleep(0.3)

        db.expire_all()
        assert JobLeaseRepository(db).get(RETRY_JOB).holder == "other-worker"

    # releasing on exit does not touch a lease held by someone else
    db.expire_all()
    assert JobLeaseRepository(db).get(RETRY_JOB).holder == "other-worker"


async def test_expired_lease_taken_over(db, scheduler):
    leases = JobLeaseRepository(db)
    assert leases.try_acquire(RETRY_JOB, "crashed-worker", 60, now=utcnow() - timedelta(hours=2))

    assert isinstance(await scheduler.run_now(RETRY_JOB), RetryBatchResult)


async def test_failing_job_releases_guard(db, scheduler):
    async def boom(session):
        raise RuntimeError("boom")

    scheduler.jobs[OVERDUE_JOB] = (3600, boom)

    with pytest.raises(RuntimeError):
        await scheduler.run_now(OVERDUE_JOB)
    assert await scheduler.tick(OVERDUE_JOB) is None
    assert not scheduler.guard.is_running(OVERDUE_JOB)
    db.expire_all()
    assert JobLeaseRepository(db).get(OVERDUE_JOB).holder is None


async def test_unknown_job(scheduler):
    with pytest.raises(KeyError):
        await scheduler.run_now("nope")


async def test_start_and_stop(scheduler):
    scheduler.start()
    scheduler.start()
    assert len(scheduler._loops) == 2

    await scheduler.stop()
    assert scheduler._loops == []
