"""
Chat completion worker.

Consumes CompletionJobs and calls the gateway exactly once per job (no
internal retry). Runs in-process next to the API when the in-memory queue
is used, or standalone against Redis:

    python -m crypto_chat_proxy.workers.completion_worker
"""

import asyncio
import logging
import signal
import sys
from uuid import uuid4

import structlog

from ..agent.llm_client import ChatCompletionGateway
from ..core.config import get_settings
from ..core.exceptions import UpstreamError
from ..database.redis import RedisCache
from .completion_queue import CompletionJob, CompletionQueue, RedisCompletionQueue

logger = structlog.get_logger()


class CompletionWorker:
    def __init__(
        self,
        queue: CompletionQueue,
        gateway: ChatCompletionGateway,
        poll_timeout_seconds: float = 1.0,
    ) -> None:
        self.queue = queue
        self.gateway = gateway
        self.poll_timeout = poll_timeout_seconds
        self.worker_id = f"completion-worker:{uuid4()}"
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Run the worker loop as a background task."""
        if self._task is None:
            self._shutdown.clear()
            self._task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        """Signal shutdown and wait for the background task to finish."""
        await self.shutdown()
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def shutdown(self) -> None:
        self._shutdown.set()

    async def run_forever(self) -> None:
        logger.info("Completion worker starting", worker_id=self.worker_id)
        try:
            while not self._shutdown.is_set():
                try:
                    job = await self.queue.next_job(self.poll_timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.warning(
                        "Failed to claim job (will retry)",
                        worker_id=self.worker_id,
                        error=str(exc),
                    )
                    await asyncio.sleep(self.poll_timeout)
                    continue
                if job is None:
                    continue

                # Never crash the worker loop because of a single job.
                try:
                    await self.process(job)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error(
                        "Unhandled exception executing job",
                        worker_id=self.worker_id,
                        job_id=job.job_id,
                        error=str(exc),
                    )
        finally:
            logger.info("Completion worker stopped", worker_id=self.worker_id)

    async def process(self, job: CompletionJob) -> bool:
        """
        Execute one job and publish its outcome.

        Returns:
            True if the job resolved with a completion, False if rejected
        """
        logger.info(
            "Executing completion job",
            job_id=job.job_id,
            session_id=job.session_key,
            message_count=len(job.messages),
        )
        try:
            completion = await self.gateway.complete(job.messages)
        except UpstreamError as exc:
            logger.warning(
                "Completion job failed",
                job_id=job.job_id,
                **exc.to_dict(),
            )
            await self.queue.reject(job.job_id, exc.message)
            return False
        except Exception as exc:
            logger.error(
                "Completion job crashed",
                job_id=job.job_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self.queue.reject(job.job_id, "internal error")
            return False

        await self.queue.resolve(job.job_id, completion.raw)
        return True


async def main() -> int:
    """Standalone worker against the Redis queue."""
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    if not settings.redis_url:
        logger.error("REDIS_URL is required to run a standalone completion worker")
        return 1

    redis_cache = RedisCache()
    await redis_cache.connect(settings.redis_url)
    gateway = ChatCompletionGateway(settings)
    worker = CompletionWorker(RedisCompletionQueue(redis_cache), gateway)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.create_task(worker.shutdown()))
        except NotImplementedError:
            signal.signal(sig, lambda *_: asyncio.create_task(worker.shutdown()))

    try:
        await worker.run_forever()
    finally:
        await gateway.close()
        await redis_cache.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
