from typing import Dict, List
from fastapi import WebSocket
import logging

logger = logging.getLogger("classroom_monitor")

class ConnectionManager:
    def __init__(self):
        # Map class_id -> dashboards listening to that class
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, class_id: str):
        await websocket.accept()
        self.active_connections.setdefault(class_id, []).append(websocket)
        logger.info(f"WebSocket connected for class: {class_id}")

    def disconnect(self, websocket: WebSocket, class_id: str):
        connections = self.active_connections.get(class_id, [])
        if websocket in connections:
            connections.remove(websocket)
            logger.info(f"WebSocket disconnected for class: {class_id}")
        if not connections:
            self.active_connections.pop(class_id, None)

    def listener_count(self, class_id: str) -> int:
        return len(self.active_connections.get(class_id, []))

    async def broadcast(self, message: dict, class_id: str):
        for websocket in list(self.active_connections.get(class_id, [])):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping WebSocket for class {class_id}: {e}")
                self.disconnect(websocket, class_id)

manager = ConnectionManager()
