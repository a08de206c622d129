"""
In-memory session conversation store with per-key locking and TTL cleanup.

Transcripts live for the process lifetime only. Growth is bounded twice:
between turns each transcript holds at most `max_messages` entries (the
system message is always kept), and sessions idle past the TTL are evicted.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

import structlog

from .llm_client import ROOT_SYSTEM_PROMPT
from .state import ChatMessage, Transcript

logger = structlog.get_logger()


class SessionConversationStore:
    """
    Maps a session key to its transcript.

    The store is the only writer of transcripts. Callers that mutate the same
    key concurrently must hold `lock(session_key)` around the read/append
    sequence; distinct keys never contend.
    """

    def __init__(
        self,
        system_prompt: str = ROOT_SYSTEM_PROMPT,
        max_messages: int = 50,
        ttl_minutes: int = 60,
        cleanup_interval_seconds: int = 60,
    ):
        """
        Initialize session store.

        Args:
            system_prompt: Instruction seeded as the first message of every transcript
            max_messages: Upper bound on transcript length, system message included
            ttl_minutes: Idle time after which a session is evicted
            cleanup_interval_seconds: How often the background cleanup runs
        """
        if max_messages < 2:
            raise ValueError("max_messages must leave room for the system message")

        self._system_prompt = system_prompt
        self._max_messages = max_messages
        self._ttl = timedelta(minutes=ttl_minutes)
        self._cleanup_interval = cleanup_interval_seconds

        self._transcripts: dict[str, Transcript] = {}
        self._access_times: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._cleanup_task: asyncio.Task | None = None

        logger.info(
            "SessionConversationStore initialized",
            max_messages=max_messages,
            ttl_minutes=ttl_minutes,
        )

    # ----- background cleanup -----

    async def start(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Session cleanup task started")

    async def stop(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Session cleanup task stopped")

    # ----- transcript access -----

    def get_or_create(self, session_key: str) -> Transcript:
        """
        Return the transcript for a session key, seeding it on first use.

        An expired transcript is discarded and replaced by a fresh one.
        """
        if session_key in self._transcripts and self._is_expired(session_key):
            logger.info("Session expired", session_id=session_key)
            self._delete(session_key)

        transcript = self._transcripts.get(session_key)
        if transcript is None:
            transcript = Transcript(session_key=session_key)
            transcript.add_message(
                ChatMessage(role="system", content=self._system_prompt)
            )
            self._transcripts[session_key] = transcript
            logger.info("Session created", session_id=session_key)

        self._access_times[session_key] = datetime.now(UTC)
        return transcript

    def append(self, session_key: str, message: ChatMessage) -> Transcript:
        """
        Append a message without trimming.

        An existing transcript is extended even if its TTL has lapsed, so a
        reply recorded at the end of a long turn lands in the same history;
        expiry is applied by get_or_create when a turn starts.
        """
        transcript = self._transcripts.get(session_key)
        if transcript is None:
            transcript = self.get_or_create(session_key)
        transcript.add_message(message)
        self._access_times[session_key] = datetime.now(UTC)
        return transcript

    def trim(self, session_key: str) -> int:
        """
        Drop the oldest turns until the transcript fits `max_messages`.

        Cuts only in front of a user message so history never opens with an
        orphaned assistant reply. Returns the number of messages dropped.
        """
        transcript = self._transcripts.get(session_key)
        if transcript is None:
            return 0

        messages = transcript.messages
        cut = len(messages) - self._max_messages
        if cut <= 0:
            return 0
        # messages[0] is the system instruction and is never dropped
        while 1 + cut < len(messages) and messages[1 + cut].role != "user":
            cut += 1
        del messages[1 : 1 + cut]

        logger.debug("Transcript trimmed", session_id=session_key, dropped=cut)
        return cut

    def remove_last(self, session_key: str, message: ChatMessage) -> bool:
        """
        Drop `message` if it is still the newest entry of the transcript.

        Used to roll back an unanswered user turn after a failed completion.
        """
        transcript = self._transcripts.get(session_key)
        if transcript is None or len(transcript.messages) < 2:
            return False
        if transcript.messages[-1] is not message:
            return False
        transcript.messages.pop()
        logger.debug("Rolled back last message", session_id=session_key)
        return True

    def delete(self, session_key: str) -> bool:
        """Delete a session. Returns False if it did not exist."""
        return self._delete(session_key)

    def session_count(self) -> int:
        """Number of live sessions."""
        return len(self._transcripts)

    @asynccontextmanager
    async def lock(self, session_key: str) -> AsyncIterator[None]:
        """Serialize work on one session key in arrival order."""
        lock = self._locks.setdefault(session_key, asyncio.Lock())
        async with lock:
            yield

    # ----- internals -----

    def _is_expired(self, session_key: str) -> bool:
        last_access = self._access_times.get(session_key)
        if last_access is None:
            return True
        return datetime.now(UTC) > last_access + self._ttl

    def _delete(self, session_key: str) -> bool:
        if session_key not in self._transcripts:
            return False
        del self._transcripts[session_key]
        self._access_times.pop(session_key, None)
        lock = self._locks.get(session_key)
        if lock is not None and not lock.locked():
            del self._locks[session_key]
        logger.debug("Session deleted", session_id=session_key)
        return True

    async def _cleanup_loop(self) -> None:
        """Background task to evict expired sessions."""
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                self.cleanup_expired()
            except asyncio.CancelledError:
                logger.info("Session cleanup loop cancelled")
                break
            except Exception as e:
                logger.error("Error in session cleanup loop", error=str(e))

    def cleanup_expired(self) -> int:
        """Evict idle sessions that nobody is currently working on."""
        expired = [
            key
            for key in list(self._transcripts.keys())
            if self._is_expired(key)
            and not (key in self._locks and self._locks[key].locked())
        ]
        for key in expired:
            self._delete(key)

        if expired:
            logger.info(
                "Session cleanup completed",
                expired_count=len(expired),
                active_count=len(self._transcripts),
            )
        return len(expired)
