"""
Chat request pipeline.

validate -> extend transcript -> obtain completion -> record reply -> trim.

Each request holds the session's lock from extension to reply, so request N
is completed against a transcript containing exactly user turns 1..N.
A failed completion removes the user turn it added.
"""

from typing import Any

import structlog

from ..core.exceptions import ValidationError
from .executors import CompletionExecutor
from .llm_client import ChatCompletion
from .session_store import SessionConversationStore
from .state import ChatMessage

logger = structlog.get_logger()


def validate_message(message: Any) -> str:
    """
    Accept any non-empty, non-whitespace string.

    Raises:
        ValidationError: If the message is absent, not a string, or blank
    """
    if not message or not isinstance(message, str) or not message.strip():
        raise ValidationError("Invalid input: message must be a non-empty string.")
    return message


class ChatPipeline:
    """Orchestrates one chat turn against the session store and an executor."""

    def __init__(self, store: SessionConversationStore, executor: CompletionExecutor):
        self.store = store
        self.executor = executor

    async def handle(self, session_key: str, user_text: Any) -> ChatCompletion:
        """
        Run one chat turn.

        Args:
            session_key: Session identifier scoping the transcript
            user_text: Raw message from the request body

        Returns:
            ChatCompletion whose message has been appended to the transcript

        Raises:
            ValidationError: Bad input; no state was touched
            ServiceUnavailableError: No completion could be obtained; the
                transcript is left as it was before the request
        """
        text = validate_message(user_text)

        async with self.store.lock(session_key):
            # Expiry is applied once, here; appends below never reseed mid-turn
            self.store.get_or_create(session_key)
            user_message = ChatMessage(role="user", content=text)
            transcript = self.store.append(session_key, user_message)

            logger.info(
                "Chat turn started",
                session_id=session_key,
                executor=self.executor.name,
                transcript_length=len(transcript),
            )

            try:
                completion = await self.executor.execute(transcript)
            except BaseException:
                # Includes cancellation: a turn without a reply leaves no trace
                self.store.remove_last(session_key, user_message)
                raise

            self.store.append(session_key, completion.message)
            self.store.trim(session_key)

            logger.info(
                "Chat turn completed",
                session_id=session_key,
                transcript_length=len(transcript),
            )
            return completion
