"""Background job scheduler with singleton-job guard"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Set
from sqlalchemy.orm import Session, sessionmaker
from hirepay.config import settings
from hirepay.domain.exceptions import JobAlreadyRunningError
from hirepay.infrastructure.clients.hubtel import HubtelClient
from hirepay.infrastructure.database.repositories import JobLeaseRepository
from hirepay.infrastructure.observability.metrics import record_job_run
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.overdue import run_overdue_sweep
from hirepay.services.retries import retry_all_eligible_payments

logger = logging.getLogger(__name__)

RETRY_JOB = "payment-retry-auto"
OVERDUE_JOB = "overdue-sweep"


class JobLeaseGuard:
    """
    Singleton guard keyed by job name.

    Two layers: an in-process set stops a second tick in this process
    before it touches the database, and a JobLease row (compare-and-swap
    with a TTL) stops ticks in other processes. While the job runs a
    heartbeat keeps renewing the lease, so only a crashed holder lets it
    expire; the job is then blocked for one TTL at most.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: int | None = None,
        heartbeat_seconds: float | None = None,
    ):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds or settings.job_lease_seconds
        self.heartbeat_seconds = heartbeat_seconds or self.ttl_seconds / 3
        self._running: Set[str] = set()

    def is_running(self, job_name: str) -> bool:
        return job_name in self._running

    def _renew(self, job_name: str, holder: str) -> bool:
        db = self.session_factory()
        try:
            return JobLeaseRepository(db).renew(job_name, holder, self.ttl_seconds)
        finally:
            db.close()

    async def _heartbeat(self, job_name: str, holder: str) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                renewed = self._renew(job_name, holder)
            except Exception:
                logger.exception(f"Lease renewal for {job_name} failed")
                continue
            if not renewed:
                logger.warning(f"Lease for {job_name} was lost while the job was running")
                return

    @asynccontextmanager
    async def hold(self, job_name: str):
        """
        Raises:
            JobAlreadyRunningError: The job runs here or holds a live lease elsewhere
        """
        if job_name in self._running:
            raise JobAlreadyRunningError(f"Job {job_name} is already running")
        self._running.add(job_name)

        try:
            holder = uuid.uuid4().hex
            db = self.session_factory()
            try:
                acquired = JobLeaseRepository(db).try_acquire(job_name, holder, self.ttl_seconds)
            finally:
                db.close()
            if not acquired:
                raise JobAlreadyRunningError(f"Job {job_name} is running in another process")

            heartbeat = asyncio.create_task(self._heartbeat(job_name, holder))
            try:
                yield holder
            finally:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
                db = self.session_factory()
                try:
                    JobLeaseRepository(db).release(job_name, holder)
                finally:
                    db.close()
        finally:
            self._running.discard(job_name)


class PaymentScheduler:
    """
    Recurring jobs driven by asyncio.

    Every interval a tick is started as its own task, so a long run never
    delays the timer; a tick that finds its job still running is skipped,
    never queued.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway_factory: Callable[[], HubtelClient] = HubtelClient,
        notifier: PaymentNotifier | None = None,
        retry_interval_seconds: int | None = None,
        overdue_interval_seconds: int | None = None,
        guard: JobLeaseGuard | None = None,
    ):
        self.session_factory = session_factory
        self.gateway_factory = gateway_factory
        self.notifier = notifier or PaymentNotifier()
        self.guard = guard or JobLeaseGuard(session_factory)
        self.jobs: Dict[str, tuple[int, Callable[[Session], Awaitable[Any]]]] = {
            RETRY_JOB: (retry_interval_seconds or settings.retry_job_interval_seconds, self._run_retry_job),
            OVERDUE_JOB: (overdue_interval_seconds or settings.overdue_job_interval_seconds, self._run_overdue_job),
        }
        self._loops: list[asyncio.Task] = []
        self._ticks: Set[asyncio.Task] = set()

    async def _run_retry_job(self, db: Session):
        return await retry_all_eligible_payments(db, self.gateway_factory(), self.notifier)

    async def _run_overdue_job(self, db: Session):
        return run_overdue_sweep(db)

    async def run_now(self, job_name: str) -> Any:
        """
        Run a job immediately under the singleton guard.

        Raises:
            KeyError: Unknown job
            JobAlreadyRunningError: The job is already running
        """
        _, job = self.jobs[job_name]
        async with self.guard.hold(job_name):
            logger.info(f"Job {job_name} started")
            db = self.session_factory()
            try:
                result = await job(db)
            except Exception:
                db.rollback()
                record_job_run(job_name, "error")
                raise
            finally:
                db.close()
            record_job_run(job_name, "completed")
            logger.info(f"Job {job_name} completed")
            return result

    async def tick(self, job_name: str) -> Optional[Any]:
        """One scheduled run; overlap and failures are logged, never raised"""
        try:
            return await self.run_now(job_name)
        except JobAlreadyRunningError:
            record_job_run(job_name, "skipped")
            logger.info(f"Job {job_name} still running, tick skipped")
        except Exception:
            logger.exception(f"Job {job_name} failed")
        return None

    def _spawn_tick(self, job_name: str) -> asyncio.Task:
        task = asyncio.create_task(self.tick(job_name))
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def _loop(self, job_name: str, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self._spawn_tick(job_name)

    def start(self) -> None:
        if self._loops:
            return
        for job_name, (interval, _) in self.jobs.items():
            self._loops.append(asyncio.create_task(self._loop(job_name, interval)))
            logger.info(f"Scheduled {job_name} every {interval}s")

    async def stop(self) -> None:
        tasks = self._loops + list(self._ticks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []
        self._ticks.clear()
