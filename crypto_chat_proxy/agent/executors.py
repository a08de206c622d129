"""
Completion executors: how the chat pipeline turns a transcript into a reply.

- InlineRetryingExecutor: calls the gateway directly, retrying transient
  failures a fixed number of times with a fixed delay.
- QueuedSingleAttemptExecutor: hands the transcript to a job queue and waits
  for a worker, which makes exactly one gateway call.

Both raise ServiceUnavailableError when no completion can be obtained.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import structlog

from ..core.config import Settings
from ..core.exceptions import (
    ConfigurationError,
    ServiceUnavailableError,
    UpstreamError,
)
from ..workers.completion_queue import CompletionJob, CompletionQueue
from .llm_client import ChatCompletion, ChatCompletionGateway
from .state import Transcript

logger = structlog.get_logger()


class CompletionExecutor(ABC):
    """Obtains a completion for a transcript."""

    name: str = "base"

    @abstractmethod
    async def execute(self, transcript: Transcript) -> ChatCompletion:
        """
        Raises:
            ServiceUnavailableError: If no completion could be obtained
        """


class InlineRetryingExecutor(CompletionExecutor):
    """Direct gateway calls with bounded retry and a fixed delay between attempts."""

    name = "inline"

    def __init__(
        self,
        gateway: ChatCompletionGateway,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay_seconds
        self._sleep = sleep

    async def execute(self, transcript: Transcript) -> ChatCompletion:
        messages = transcript.snapshot()
        last_error: UpstreamError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.gateway.complete(messages)
            except UpstreamError as e:
                last_error = e
                logger.warning(
                    "Chat completion attempt failed",
                    session_id=transcript.session_key,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=e.message,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_delay)

        logger.error(
            "Chat completion retries exhausted",
            session_id=transcript.session_key,
            attempts=self.max_attempts,
            last_error=last_error.message if last_error else None,
        )
        raise ServiceUnavailableError(
            session_id=transcript.session_key, attempts=self.max_attempts
        )


class QueuedSingleAttemptExecutor(CompletionExecutor):
    """Enqueue the transcript and await the worker's single attempt."""

    name = "queued"

    def __init__(self, queue: CompletionQueue, result_timeout_seconds: float = 60.0):
        self.queue = queue
        self.result_timeout = result_timeout_seconds

    async def execute(self, transcript: Transcript) -> ChatCompletion:
        job = CompletionJob(
            session_key=transcript.session_key, messages=transcript.snapshot()
        )
        job_id = await self.queue.enqueue(job)
        outcome = await self.queue.wait_result(job_id, self.result_timeout)

        if outcome is None:
            logger.error(
                "Completion job timed out",
                session_id=transcript.session_key,
                job_id=job_id,
                timeout=self.result_timeout,
            )
            raise ServiceUnavailableError(session_id=transcript.session_key, job_id=job_id)

        if not outcome.succeeded:
            logger.error(
                "Completion job rejected",
                session_id=transcript.session_key,
                job_id=job_id,
                error=outcome.error,
            )
            raise ServiceUnavailableError(session_id=transcript.session_key, job_id=job_id)

        try:
            return ChatCompletion.from_response(outcome.result)
        except UpstreamError as e:
            logger.error(
                "Completion job returned malformed result",
                session_id=transcript.session_key,
                job_id=job_id,
                error=e.message,
            )
            raise ServiceUnavailableError(
                session_id=transcript.session_key, job_id=job_id
            ) from e


def build_completion_executor(
    settings: Settings,
    gateway: ChatCompletionGateway,
    queue: CompletionQueue | None = None,
) -> CompletionExecutor:
    """Pick the executor variant named by `settings.chat_executor`."""
    if settings.uses_queue:
        if queue is None:
            raise ConfigurationError("Queued executor requires a completion queue")
        return QueuedSingleAttemptExecutor(
            queue, result_timeout_seconds=settings.chat_queue_result_timeout_seconds
        )
    return InlineRetryingExecutor(
        gateway,
        max_attempts=settings.chat_max_attempts,
        retry_delay_seconds=settings.chat_retry_delay_seconds,
    )
