"""
Session Tracking Service

Tracks active streaming chat sessions so they can be stopped. Each session
belongs to a display target (a chat panel, a dialog); starting a new session
on a target cancels the one already running there, so two sessions never
write into the same display concurrently.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class ActiveSession:
    """Represents an active streaming session"""

    request_id: str
    target: str
    created_at: datetime = field(default_factory=datetime.now)
    task: asyncio.Task | None = None
    cancelled: bool = False


class SessionTrackingService:
    """Service to track and cancel active streaming sessions"""

    def __init__(self, max_session_age: timedelta = timedelta(hours=2)):
        self._active_sessions: dict[str, ActiveSession] = {}
        self._max_session_age = max_session_age

    def generate_request_id(self) -> str:
        """Generate a unique request ID"""
        return str(uuid.uuid4())

    def register_session(self, target: str, request_id: str | None = None) -> str:
        """
        Register a new streaming session, superseding any active one on the same target

        Args:
            target: Display target the session renders into
            request_id: Optional specific request ID, generates new one if not provided

        Returns:
            The request ID for this session

        Raises:
            ValueError: If request_id belongs to a session that is still tracked
        """
        if request_id is not None and request_id in self._active_sessions:
            raise ValueError(f"Request ID {request_id} is already in use")

        for previous in self.get_sessions_for_target(target):
            logger.info(
                f"Superseding session {previous.request_id} on target {target!r}"
            )
            self.cancel_session(previous.request_id)

        if request_id is None:
            request_id = self.generate_request_id()

        self._active_sessions[request_id] = ActiveSession(
            request_id=request_id, target=target
        )
        logger.info(f"Registered streaming session {request_id} for {target!r}")
        return request_id

    def get_sessions_for_target(self, target: str) -> list[ActiveSession]:
        return [
            session
            for session in self._active_sessions.values()
            if session.target == target and not session.cancelled
        ]

    def set_session_task(self, request_id: str, task: asyncio.Task) -> bool:
        """
        Associate an asyncio task with a session for cancellation

        Returns:
            True if task was set, False if session not found
        """
        if request_id in self._active_sessions:
            self._active_sessions[request_id].task = task
            logger.debug(f"Set task for session {request_id}")
            return True
        return False

    def cancel_session(self, request_id: str) -> bool:
        """
        Cancel a streaming session

        Returns:
            True if the session was cancelled, False if not found
        """
        session = self._active_sessions.get(request_id)
        if session is None:
            logger.warning(f"Session {request_id} not found for cancellation")
            return False

        if session.cancelled:
            logger.info(f"Session {request_id} already cancelled")
            return True

        session.cancelled = True

        if session.task and not session.task.done():
            session.task.cancel()
            logger.info(f"Cancelled session {request_id} and its associated task")
        else:
            logger.info(f"Cancelled session {request_id} (no active task)")

        return True

    def is_cancelled(self, request_id: str) -> bool:
        session = self._active_sessions.get(request_id)
        return session.cancelled if session else False

    def complete_session(self, request_id: str) -> bool:
        """
        Mark a session as completed and stop tracking it

        Returns:
            True if session was found and removed, False otherwise
        """
        if request_id in self._active_sessions:
            del self._active_sessions[request_id]
            logger.info(f"Completed and removed session {request_id}")
            return True
        return False

    def get_active_sessions(self) -> dict[str, ActiveSession]:
        """Get all active sessions (for debugging/monitoring)"""
        return self._active_sessions.copy()

    def cleanup_old_sessions(self) -> int:
        """
        Clean up sessions that may have been abandoned

        Returns:
            Number of sessions cleaned up
        """
        now = datetime.now()
        to_remove = [
            request_id
            for request_id, session in self._active_sessions.items()
            if now - session.created_at > self._max_session_age
        ]

        for request_id in to_remove:
            task = self._active_sessions[request_id].task
            if task and not task.done():
                task.cancel()
            del self._active_sessions[request_id]

        if to_remove:
            logger.info(f"Cleaned up {len(to_remove)} old sessions")

        return len(to_remove)


# Global instance
session_tracking_service = SessionTrackingService()
