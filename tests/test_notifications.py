"""Tests for request/acceptance notifications"""

import json
from uuid import uuid4

from fastapi.websockets import WebSocketState

from kanway.api.websockets import ConnectionManager
from kanway.db.models import RequestStatus, ServiceRequest
from kanway.services.notifications import WebSocketNotificationEmitter, safe_notify


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.fail = fail

    async def accept(self):
        pass

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


def make_request(provider_id=None):
    return ServiceRequest(id=uuid4(), requester_id=uuid4(), assigned_provider_id=provider_id)


async def connected(manager, profile_id, socket=None):
    socket = socket or FakeSocket()
    await manager.connect(socket, str(profile_id))
    return socket


async def test_status_change_reaches_both_parties():
    manager = ConnectionManager()
    provider_id = uuid4()
    request = make_request(provider_id)
    requester_socket = await connected(manager, request.requester_id)
    provider_socket = await connected(manager, provider_id)

    await WebSocketNotificationEmitter(manager).request_status_changed(
        request, RequestStatus.PENDING, RequestStatus.ASSIGNED
    )

    for socket in (requester_socket, provider_socket):
        assert len(socket.sent) == 1
        message = socket.sent[0]
        assert message["type"] == "request_status"
        assert message["data"]["request_id"] == str(request.id)
        assert message["data"]["new_status"] == "assigned"


async def test_cancellation_reaches_previous_provider():
    manager = ConnectionManager()
    provider_id = uuid4()
    request = make_request(provider_id=None)
    provider_socket = await connected(manager, provider_id)

    await WebSocketNotificationEmitter(manager).request_status_changed(
        request, RequestStatus.ASSIGNED, RequestStatus.CANCELLED, previous_provider_id=provider_id
    )

    assert provider_socket.sent[0]["data"]["new_status"] == "cancelled"


async def test_acceptance_goes_to_requester_only():
    manager = ConnectionManager()
    provider_id = uuid4()
    request = make_request()
    requester_socket = await connected(manager, request.requester_id)
    provider_socket = await connected(manager, provider_id)

    await WebSocketNotificationEmitter(manager).acceptance_created(request, provider_id)

    assert requester_socket.sent[0]["type"] == "acceptance_created"
    assert requester_socket.sent[0]["data"]["provider_id"] == str(provider_id)
    assert provider_socket.sent == []


async def test_broken_socket_is_dropped():
    manager = ConnectionManager()
    request = make_request()
    await connected(manager, request.requester_id, FakeSocket(fail=True))

    await WebSocketNotificationEmitter(manager).acceptance_created(request, uuid4())

    assert manager.is_online(str(request.requester_id)) is False


async def test_safe_notify_swallows_errors(caplog):
    async def boom():
        raise RuntimeError("emitter down")

    await safe_notify(boom())

    assert "emitter down" in caplog.text
