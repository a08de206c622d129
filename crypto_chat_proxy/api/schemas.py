"""API request/response schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Body of POST /proxy/chat.

    `message` is left untyped so that non-string input reaches the pipeline's
    own validation and gets the same 400 as an empty message.
    """

    model_config = ConfigDict(extra="ignore")

    message: Any = Field(default=None, description="User's chat message")


class PriceResponse(BaseModel):
    """Cached crypto prices."""

    btcPrice: float = Field(..., description="BTC price in USD")
    ethPrice: float = Field(..., description="ETH price in USD")
    solPrice: float = Field(..., description="SOL price in USD")
    lastUpdated: str = Field(..., description="Snapshot fetch time (ISO format)")


class ErrorResponse(BaseModel):
    """Error body returned for every AppError."""

    error: str
    error_type: str
