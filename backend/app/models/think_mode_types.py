"""
Think Mode Type Definitions

Pydantic models for Think Mode chat requests and client settings.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TIMEOUT_SECONDS = 45.0


class ChatMessage(BaseModel):
    """A single conversation turn"""

    role: Literal["system", "user", "assistant"]
    content: str


class ThinkModeChatRequest(BaseModel):
    """
    Body of a Think Mode chat request.
    Accepts `userName` as sent by the web client.
    """

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(..., min_length=1)
    user_name: str | None = Field(None, alias="userName")
    mode: str = "strategic"
    request_id: str | None = None


class ThinkModeClientSettings(BaseModel):
    """
    Settings for the caller-side Think Mode client.

    timeout_seconds caps the whole session, from connect to last byte.
    stop_on_done ends a session at `[DONE]` instead of at end of data.
    """

    chat_url: str
    access_token: str | None = None
    timeout_seconds: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    stop_on_done: bool = False
    mode: str = "strategic"
