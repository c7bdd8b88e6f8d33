"""Communication router: records messages exchanged between session participants.

Messages are only accepted while the owning session is active. When the
sender asks for acknowledgment and names a direct recipient, the message is
stamped as acknowledged at send time and the recipient is reported as
having acknowledged it; broadcasts (no recipient) are never auto-acknowledged.
Delivery is reported as soon as the row is written.
"""

from __future__ import annotations

import structlog

from src.orchestrator.core.monitoring import record_message, track_operation
from src.orchestrator.errors import OrchestrationError, OrchestrationErrorCode
from src.orchestrator.schemas import MessageResponse, SendMessageRequest, SessionStatus
from src.orchestrator.sessions.repository import OrchestrationRepository

logger = structlog.get_logger(__name__)


class CommunicationRouter:
    """Validates and records inter-agent messages.

    Args:
        repository: Persistence for sessions and messages.
    """

    def __init__(self, repository: OrchestrationRepository) -> None:
        self._repository = repository

    async def send_message(self, request: SendMessageRequest) -> MessageResponse:
        """Record a message in an active session.

        Args:
            request: Sender, optional recipient, type, payload, ack flag.

        Returns:
            MessageResponse with the new message id, delivered=True, and the
            recipients that acknowledged it.

        Raises:
            OrchestrationError: SESSION_NOT_FOUND for an unknown session,
                COMMUNICATION_FAILED when the session is not active.
        """
        async with track_operation("send_message"):
            async with self._repository.transaction() as db:
                session = await self._repository.get_session(db, request.session_id)
                if session is None:
                    raise OrchestrationError(
                        OrchestrationErrorCode.SESSION_NOT_FOUND,
                        f"Session {request.session_id} not found",
                        session_id=request.session_id,
                    )
                if session.status != SessionStatus.ACTIVE:
                    raise OrchestrationError(
                        OrchestrationErrorCode.COMMUNICATION_FAILED,
                        f"Cannot send message to inactive session {request.session_id}",
                        session_id=request.session_id,
                        agent_id=request.from_agent_id,
                        details={"status": session.status.value},
                    )

                message = await self._repository.insert_message(
                    db,
                    session_id=request.session_id,
                    from_agent_id=request.from_agent_id,
                    to_agent_id=request.to_agent_id,
                    message_type=request.message_type,
                    payload=request.payload,
                )

                acknowledged_by: list[str] = []
                if request.require_acknowledgment and request.to_agent_id:
                    await self._repository.acknowledge_message(db, message.id)
                    acknowledged_by = [request.to_agent_id]

            record_message(request.message_type.value)
            logger.debug(
                "agent_message_sent",
                session_id=request.session_id,
                message_id=message.id,
                message_type=request.message_type.value,
                from_agent_id=request.from_agent_id,
                to_agent_id=request.to_agent_id,
                broadcast=request.to_agent_id is None,
            )

            return MessageResponse(
                message_id=message.id,
                delivered=True,
                acknowledged_by=acknowledged_by,
            )
