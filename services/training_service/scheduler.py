"""
定时重训练：每个 job 一个 asyncio task，按固定频率触发（以 event loop 时钟对齐）。
一次 firing 超过间隔时，错过的 tick 被丢弃，不会连续补跑。

循环每次迭代都检查 job 的停止事件；cancel() 只设置事件，正在执行的 firing
会跑完，但不会再被调度。单次 firing 的异常只记录在 job 上，不影响后续 firing。
"""
import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from models.schemas import utc_timestamp
from .service import TrainingService

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 24 * 60 * 60 * 1000


@dataclass
class ScheduledJob:
    job_id: str
    selector: str
    interval_ms: int
    created_at: str = field(default_factory=utc_timestamp)
    firings: int = 0
    skipped: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_fired_at: Optional[str] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return not self.stop_event.is_set() and self.task is not None and not self.task.done()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "selector": self.selector,
            "interval_ms": self.interval_ms,
            "created_at": self.created_at,
            "active": self.active,
            "firings": self.firings,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_error": self.last_error,
            "last_fired_at": self.last_fired_at,
        }


class RetrainingScheduler:
    def __init__(self, service: TrainingService):
        self.service = service
        self._jobs: Dict[str, ScheduledJob] = {}

    def schedule(self, selector: str = "all", interval_ms: int = DEFAULT_INTERVAL_MS) -> ScheduledJob:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        job = ScheduledJob(job_id=uuid.uuid4().hex[:12], selector=selector, interval_ms=interval_ms)
        job.task = asyncio.get_running_loop().create_task(self._run(job), name=f"retrain-{job.job_id}")
        self._jobs[job.job_id] = job
        logger.info("Scheduled retraining job %s for %s every %.2f hours",
                    job.job_id, selector, interval_ms / 3_600_000)
        return job

    def cancel(self, job: Union[ScheduledJob, str]) -> bool:
        job_id = job.job_id if isinstance(job, ScheduledJob) else job
        found = self._jobs.pop(job_id, None)
        if found is None:
            return False
        found.stop_event.set()
        logger.info("Retraining job %s cancelled", job_id)
        return True

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    async def shutdown(self) -> None:
        jobs = list(self._jobs.values())
        self._jobs.clear()
        for job in jobs:
            job.stop_event.set()
            if job.task is not None:
                job.task.cancel()
        for job in jobs:
            if job.task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await job.task
        if jobs:
            logger.info("RetrainingScheduler stopped %d jobs", len(jobs))

    async def _run(self, job: ScheduledJob) -> None:
        loop = asyncio.get_running_loop()
        interval = job.interval_ms / 1000.0
        next_at = loop.time() + interval
        while not job.stop_event.is_set():
            try:
                await asyncio.wait_for(job.stop_event.wait(), timeout=max(next_at - loop.time(), 0))
            except asyncio.TimeoutError:
                await self._fire(job)
                # 固定频率：下一次按起始时刻对齐，超时错过的 tick 直接丢弃，不补跑
                next_at += interval
                while next_at <= loop.time():
                    next_at += interval

    async def _fire(self, job: ScheduledJob) -> None:
        job.firings += 1
        job.last_fired_at = utc_timestamp()
        logger.info("Retraining job %s firing #%d", job.job_id, job.firings)
        try:
            result = await self.service.run_retraining(job.selector)
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            logger.exception("Retraining job %s firing #%d failed", job.job_id, job.firings)
            return
        if result is None:
            job.skipped += 1
