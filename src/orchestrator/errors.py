"""Typed errors raised by the orchestration core.

Every error carries a machine-readable OrchestrationErrorCode, a human
message, and optional session/agent identifiers plus free-form details so
an outer transport layer can serialize it without inspecting the type.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class OrchestrationErrorCode(str, Enum):
    """Machine-readable error codes."""

    AGENT_NOT_AVAILABLE = "AGENT_NOT_AVAILABLE"
    CAPABILITY_NOT_FOUND = "CAPABILITY_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    COMMUNICATION_FAILED = "COMMUNICATION_FAILED"
    RESOURCE_EXCEEDED = "RESOURCE_EXCEEDED"
    COORDINATION_TIMEOUT = "COORDINATION_TIMEOUT"
    INVALID_ORCHESTRATION_TYPE = "INVALID_ORCHESTRATION_TYPE"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"


class OrchestrationError(Exception):
    """Base error for all orchestration failures.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable description.
        session_id: Session the error relates to, if any.
        agent_id: Agent the error relates to, if any.
        details: Additional structured context.
    """

    def __init__(
        self,
        code: OrchestrationErrorCode,
        message: str,
        *,
        session_id: str | None = None,
        agent_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.session_id = session_id
        self.agent_id = agent_id
        self.details = details or {}
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured responses and logging."""
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.session_id is not None:
            payload["session_id"] = self.session_id
        if self.agent_id is not None:
            payload["agent_id"] = self.agent_id
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidStatusTransitionError(OrchestrationError):
    """Raised when a status update violates the session lifecycle."""

    def __init__(self, session_id: str, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            OrchestrationErrorCode.INVALID_STATUS_TRANSITION,
            f"Invalid status transition for session {session_id}: "
            f"{from_status} -> {to_status}",
            session_id=session_id,
            details={"from_status": from_status, "to_status": to_status},
        )
