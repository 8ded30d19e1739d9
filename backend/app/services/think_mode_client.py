"""
Caller-side Think Mode client.

Sends a conversation to the Think Mode chat endpoint and drives the streamed
answer to a SessionOutcome, reporting the cumulative text as it arrives.
The client imposes the wall-clock timeout and makes sure only one session
renders into a given display target at a time.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from app.models.stream_types import (
    Cancelled,
    EmptySuccess,
    Failure,
    FailureReason,
    ProgressCallback,
    SessionOutcome,
    Success,
)
from app.models.think_mode_types import ChatMessage, ThinkModeClientSettings
from app.services.session_tracking_service import SessionTrackingService
from app.services.stream_session import StreamSessionDriver

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_MESSAGE = (
    "I ran into an issue generating a response. Please try again in a moment."
)


def describe_outcome(outcome: SessionOutcome) -> str | None:
    """
    User-facing message for an outcome that should be shown as a retryable error.

    Returns None for successful and cancelled sessions.
    """
    if isinstance(outcome, (Success, Cancelled)):
        return None
    if isinstance(outcome, EmptySuccess):
        return EMPTY_RESPONSE_MESSAGE

    if outcome.reason == FailureReason.TIMEOUT:
        return "Think Mode took too long to respond. Please try again."
    if outcome.reason == FailureReason.TRANSPORT_ERROR:
        return "Could not reach Think Mode. Check your connection and try again."
    return outcome.message or EMPTY_RESPONSE_MESSAGE


class ThinkModeClient:
    """
    Stream Think Mode answers over HTTP.

    Usage:
        async with ThinkModeClient(settings) as client:
            outcome = await client.send(messages, on_progress=render, target="panel")
    """

    def __init__(
        self,
        settings: ThinkModeClientSettings,
        http_client: httpx.AsyncClient | None = None,
        sessions: SessionTrackingService | None = None,
    ):
        self.settings = settings
        self.sessions = sessions or SessionTrackingService()
        self._http_client = http_client
        self._owns_http_client = http_client is None

    async def __aenter__(self) -> "ThinkModeClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.timeout_seconds)
            )
        return self._http_client

    async def send(
        self,
        messages: Sequence[ChatMessage | dict[str, str]],
        on_progress: ProgressCallback | None = None,
        target: str = "default",
        user_name: str | None = None,
    ) -> SessionOutcome:
        """
        Run one Think Mode session.

        Starting a session on a target that already has one running cancels
        the running one, which then returns Cancelled.

        Raises:
            ValueError: If no access token is configured
        """
        if not self.settings.access_token:
            raise ValueError("Please sign in to use Think Mode.")

        request_id = self.sessions.register_session(target)
        task = asyncio.create_task(self._run_session(messages, on_progress, user_name))
        self.sessions.set_session_task(request_id, task)

        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            stopped_by_us = current is None or current.cancelling() == 0
            if stopped_by_us and self.sessions.is_cancelled(request_id):
                logger.info(f"[ThinkMode] Session {request_id} was stopped")
                return Cancelled()
            raise
        finally:
            self.sessions.complete_session(request_id)

    def cancel(self, target: str = "default") -> bool:
        """Stop whatever session is rendering into the target"""
        cancelled = False
        for session in self.sessions.get_sessions_for_target(target):
            cancelled = self.sessions.cancel_session(session.request_id) or cancelled
        return cancelled

    def _build_payload(
        self, messages: Sequence[ChatMessage | dict[str, str]], user_name: str | None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": [
                m.model_dump() if isinstance(m, ChatMessage) else dict(m)
                for m in messages
            ],
            "mode": self.settings.mode,
        }
        if user_name:
            payload["userName"] = user_name
        return payload

    async def _run_session(
        self,
        messages: Sequence[ChatMessage | dict[str, str]],
        on_progress: ProgressCallback | None,
        user_name: str | None,
    ) -> SessionOutcome:
        payload = self._build_payload(messages, user_name)
        headers = {"Authorization": f"Bearer {self.settings.access_token}"}
        driver = StreamSessionDriver(stop_on_done=self.settings.stop_on_done)

        logger.info(
            f"[ThinkMode] Sending request with {len(payload['messages'])} messages "
            f"to {self.settings.chat_url}"
        )

        try:
            async with asyncio.timeout(self.settings.timeout_seconds):
                async with self._client().stream(
                    "POST", self.settings.chat_url, json=payload, headers=headers
                ) as response:
                    return await driver.run(response, on_progress)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning(
                f"[ThinkMode] Session timed out after {self.settings.timeout_seconds}s"
            )
            return Failure(
                reason=FailureReason.TIMEOUT,
                message=f"Timed out after {self.settings.timeout_seconds:g} seconds",
            )
        except httpx.TransportError as e:
            logger.error(f"[ThinkMode] Transport failure: {e}")
            return Failure(reason=FailureReason.TRANSPORT_ERROR, message=str(e))
