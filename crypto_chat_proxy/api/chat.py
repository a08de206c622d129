"""
Chat proxy endpoint.

Forwards a user message to the upstream chat completion API with the
session's history and returns the upstream completion body unchanged.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header

from ..agent.chat_pipeline import ChatPipeline
from ..core.config import Settings, get_settings
from ..core.exceptions import ValidationError
from .dependencies.app_state import get_chat_pipeline
from .schemas import ChatRequest

logger = structlog.get_logger()

router = APIRouter()


def resolve_session_key(session_id: str | None, settings: Settings) -> str:
    """Session header value, or the default key when the header is optional."""
    if session_id and session_id.strip():
        return session_id.strip()
    if settings.require_session_id:
        raise ValidationError("Missing session-id header")
    return settings.default_session_id


@router.post("/proxy/chat")
async def proxy_chat(
    body: ChatRequest,
    session_id: str | None = Header(default=None),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Run one chat turn for the session named by the `session-id` header.

    **Request:**
    ```json
    {"message": "gm"}
    ```

    **Responses:** 200 with the upstream completion body, 400 on invalid
    input, 500 when the AI is unavailable.
    """
    session_key = resolve_session_key(session_id, settings)
    completion = await pipeline.handle(session_key, body.message)
    return completion.raw
