"""
Job queue decoupling chat request acceptance from upstream completion.

Two backends share one interface:
- InMemoryCompletionQueue: asyncio.Queue plus per-job futures, single process
- RedisCompletionQueue: durable Redis list, results handed back through
  short-lived per-job result lists

Delivery is at-least-once at best; a job lost with a crashed worker shows up
as a result timeout on the awaiting request.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog

from ..database.redis import RedisCache

logger = structlog.get_logger()

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class CompletionJob:
    """A transcript snapshot waiting for one completion attempt."""

    session_key: str
    messages: list[dict[str, str]]
    job_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_json(self) -> str:
        return json.dumps(
            {
                "job_id": self.job_id,
                "session_key": self.session_key,
                "messages": self.messages,
                "created_at": self.created_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "CompletionJob":
        data = json.loads(raw)
        return cls(
            job_id=data["job_id"],
            session_key=data["session_key"],
            messages=data["messages"],
            created_at=data["created_at"],
        )


@dataclass(frozen=True)
class JobOutcome:
    """Resolution of a job: the raw completion body, or an error string."""

    status: str
    result: dict[str, Any] | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_COMPLETED

    def to_json(self) -> str:
        return json.dumps(
            {"status": self.status, "result": self.result, "error": self.error}
        )

    @classmethod
    def from_json(cls, raw: str) -> "JobOutcome":
        data = json.loads(raw)
        return cls(
            status=data["status"],
            result=data.get("result"),
            error=data.get("error"),
        )


class CompletionQueue(ABC):
    """Interface shared by the queue backends."""

    @abstractmethod
    async def enqueue(self, job: CompletionJob) -> str:
        """Add a job and return its id."""

    @abstractmethod
    async def next_job(self, timeout: float) -> CompletionJob | None:
        """Claim the next job, or None if nothing arrives within `timeout`."""

    @abstractmethod
    async def resolve(self, job_id: str, result: dict[str, Any]) -> None:
        """Publish a successful completion for a job."""

    @abstractmethod
    async def reject(self, job_id: str, error: str) -> None:
        """Publish a failure for a job."""

    @abstractmethod
    async def wait_result(self, job_id: str, timeout: float) -> JobOutcome | None:
        """Block until the job resolves; None on timeout."""


class InMemoryCompletionQueue(CompletionQueue):
    """Process-local queue used when no Redis broker is configured."""

    def __init__(self) -> None:
        self._jobs: asyncio.Queue[CompletionJob] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[JobOutcome]] = {}

    async def enqueue(self, job: CompletionJob) -> str:
        self._pending[job.job_id] = asyncio.get_running_loop().create_future()
        await self._jobs.put(job)
        logger.debug("Job enqueued", job_id=job.job_id, session_id=job.session_key)
        return job.job_id

    async def next_job(self, timeout: float) -> CompletionJob | None:
        try:
            return await asyncio.wait_for(self._jobs.get(), timeout=timeout)
        except TimeoutError:
            return None

    async def resolve(self, job_id: str, result: dict[str, Any]) -> None:
        self._settle(job_id, JobOutcome(status=STATUS_COMPLETED, result=result))

    async def reject(self, job_id: str, error: str) -> None:
        self._settle(job_id, JobOutcome(status=STATUS_FAILED, error=error))

    async def wait_result(self, job_id: str, timeout: float) -> JobOutcome | None:
        future = self._pending.get(job_id)
        if future is None:
            raise KeyError(f"Unknown job: {job_id}")
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self._pending.pop(job_id, None)

    def pending_count(self) -> int:
        return len(self._pending)

    def _settle(self, job_id: str, outcome: JobOutcome) -> None:
        future = self._pending.get(job_id)
        if future is None or future.done():
            logger.warning("Outcome for unknown or settled job dropped", job_id=job_id)
            return
        future.set_result(outcome)


class RedisCompletionQueue(CompletionQueue):
    """
    Durable queue on a Redis list.

    Producers LPUSH job JSON onto `queue_key`; workers BRPOP it. Outcomes are
    RPUSHed onto `chat:result:<job_id>` with a TTL and awaited with BLPOP, so
    the request and the worker may live in different processes.
    """

    def __init__(
        self,
        redis_cache: RedisCache,
        queue_key: str = "chat:jobs",
        result_ttl_seconds: int = 300,
    ):
        self.redis = redis_cache
        self.queue_key = queue_key
        self.result_ttl_seconds = result_ttl_seconds

    @staticmethod
    def result_key(job_id: str) -> str:
        return f"chat:result:{job_id}"

    async def enqueue(self, job: CompletionJob) -> str:
        client = self.redis.require_client()
        await client.lpush(self.queue_key, job.to_json())
        logger.debug("Job enqueued", job_id=job.job_id, session_id=job.session_key)
        return job.job_id

    async def next_job(self, timeout: float) -> CompletionJob | None:
        client = self.redis.require_client()
        # BRPOP treats 0 as "block forever"
        item = await client.brpop([self.queue_key], timeout=max(1, int(timeout)))
        if item is None:
            return None
        _, raw = item
        try:
            return CompletionJob.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Discarding malformed job", error=str(e), raw=raw[:200])
            return None

    async def resolve(self, job_id: str, result: dict[str, Any]) -> None:
        await self._publish(job_id, JobOutcome(status=STATUS_COMPLETED, result=result))

    async def reject(self, job_id: str, error: str) -> None:
        await self._publish(job_id, JobOutcome(status=STATUS_FAILED, error=error))

    async def wait_result(self, job_id: str, timeout: float) -> JobOutcome | None:
        client = self.redis.require_client()
        key = self.result_key(job_id)
        item = await client.blpop([key], timeout=max(1, int(timeout)))
        if item is None:
            return None
        await client.delete(key)
        _, raw = item
        return JobOutcome.from_json(raw)

    async def _publish(self, job_id: str, outcome: JobOutcome) -> None:
        client = self.redis.require_client()
        key = self.result_key(job_id)
        await client.rpush(key, outcome.to_json())
        await client.expire(key, self.result_ttl_seconds)
