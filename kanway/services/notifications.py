"""Change notifications for request transitions and new acceptances.

Notifications are informational. They are sent after the state change is
committed and a delivery failure is logged, never propagated.
"""

import logging
from typing import Protocol
from uuid import UUID

from kanway.api.websockets import ConnectionManager, connection_manager
from kanway.db.models import RequestStatus, ServiceRequest
from kanway.utils.time import utcnow

logger = logging.getLogger(__name__)


class NotificationEmitter(Protocol):
    async def request_status_changed(
        self,
        request: ServiceRequest,
        old_status: RequestStatus,
        new_status: RequestStatus,
        previous_provider_id: UUID | None = None,
    ) -> None: ...

    async def acceptance_created(
        self,
        request: ServiceRequest,
        provider_id: UUID,
    ) -> None: ...


class WebSocketNotificationEmitter:
    """Pushes JSON events to the connected parties of a request"""

    def __init__(self, manager: ConnectionManager | None = None):
        self.manager = manager or connection_manager

    async def request_status_changed(
        self,
        request: ServiceRequest,
        old_status: RequestStatus,
        new_status: RequestStatus,
        previous_provider_id: UUID | None = None,
    ) -> None:
        message = {
            "type": "request_status",
            "data": {
                "request_id": str(request.id),
                "old_status": old_status.value,
                "new_status": new_status.value,
                "assigned_provider_id": str(request.assigned_provider_id) if request.assigned_provider_id else None,
                "timestamp": utcnow().isoformat(),
            },
        }
        recipients = {str(request.requester_id)}
        if request.assigned_provider_id:
            recipients.add(str(request.assigned_provider_id))
        # Cancellation clears the provider but they still need to hear about it
        if previous_provider_id:
            recipients.add(str(previous_provider_id))

        await self._deliver(recipients, message)

    async def acceptance_created(self, request: ServiceRequest, provider_id: UUID) -> None:
        message = {
            "type": "acceptance_created",
            "data": {
                "request_id": str(request.id),
                "provider_id": str(provider_id),
                "timestamp": utcnow().isoformat(),
            },
        }
        await self._deliver({str(request.requester_id)}, message)

    async def _deliver(self, recipients: set[str], message: dict) -> None:
        for profile_id in recipients:
            try:
                await self.manager.send_to_profile(profile_id, message)
            except Exception as e:
                logger.warning(f"Notification to {profile_id} failed: {e}")


class NullNotificationEmitter:
    """Emitter that drops every event"""

    async def request_status_changed(self, request, old_status, new_status, previous_provider_id=None) -> None:
        return None

    async def acceptance_created(self, request, provider_id) -> None:
        return None


async def safe_notify(coro) -> None:
    """Await a notification, logging instead of raising on failure"""
    try:
        await coro
    except Exception as e:
        logger.warning(f"Notification failed: {e}", exc_info=True)


def get_notifier() -> NotificationEmitter:
    """FastAPI dependency for the emitter used by request and acceptance services"""
    return WebSocketNotificationEmitter()
