"""WebSocket endpoints for real-time request and acceptance updates"""

import json
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.websockets import WebSocketState

from kanway.api.deps import decode_identity

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """Manages WebSocket connections keyed by public profile id"""

    def __init__(self):
        self.connections: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, profile_id: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()
        self.connections.setdefault(profile_id, []).append(websocket)
        logger.info(f"Profile {profile_id} connected. Total connections: {len(self.connections[profile_id])}")

    def disconnect(self, websocket: WebSocket, profile_id: str):
        """Remove a WebSocket connection"""
        sockets = self.connections.get(profile_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self.connections.pop(profile_id, None)
        logger.info(f"Profile {profile_id} disconnected")

    def is_online(self, profile_id: str) -> bool:
        return bool(self.connections.get(profile_id))

    async def send_to_profile(self, profile_id: str, message: dict) -> int:
        """Send a message to every socket of one profile; returns deliveries"""
        sockets = list(self.connections.get(profile_id, []))
        if not sockets:
            return 0

        message_json = json.dumps(message, default=str)
        delivered = 0
        disconnected = []

        for connection in sockets:
            try:
                if connection.client_state == WebSocketState.CONNECTED:
                    await connection.send_text(message_json)
                    delivered += 1
                else:
                    disconnected.append(connection)
            except Exception as e:
                logger.error(f"Error sending WebSocket message: {e}")
                disconnected.append(connection)

        # Clean up disconnected connections
        for connection in disconnected:
            self.disconnect(connection, profile_id)

        return delivered

    async def broadcast(self, message: dict) -> int:
        delivered = 0
        for profile_id in list(self.connections):
            delivered += await self.send_to_profile(profile_id, message)
        return delivered


# Global connection manager instance
connection_manager = ConnectionManager()


@router.websocket("/{profile_id}")
async def profile_websocket_endpoint(websocket: WebSocket, profile_id: str, token: str = Query(...)):
    """Real-time channel for one requester or provider"""
    try:
        caller_id = decode_identity(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if str(caller_id) != profile_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await connection_manager.connect(websocket, profile_id)

    try:
        await websocket.send_text(json.dumps({
            "type": "connection",
            "data": {"status": "connected", "profile_id": profile_id}
        }))

        # Keep connection alive and answer pings
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
                if message.get("type") == "ping":
                    await websocket.send_text(json.dumps({
                        "type": "pong",
                        "data": {"timestamp": message.get("timestamp")}
                    }))
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received from WebSocket: {data}")

    except WebSocketDisconnect:
        connection_manager.disconnect(websocket, profile_id)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        connection_manager.disconnect(websocket, profile_id)
