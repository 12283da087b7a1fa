from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.encoders import jsonable_encoder
from classroom_monitor.attendance import AttendanceService
from classroom_monitor.frame import Frame, LatestFrameSource
from classroom_monitor.models import CycleResult, FrameUploadRequest
from classroom_monitor.monitor import DetectionMonitor
from classroom_monitor.session import DetectionSession
from classroom_monitor.ws_manager import manager
from datetime import datetime
from typing import Dict, List, Optional
import asyncio
import logging

router = APIRouter()
logger = logging.getLogger("classroom_monitor")


async def publish_cycle(result: CycleResult) -> None:
    """Push a committed detection cycle to the dashboards of its class."""
    await manager.broadcast({
        "type": "detection_result",
        "result": jsonable_encoder(result),
    }, result.class_id)


# In-memory frame sources without a running monitor expire after this many idle seconds
SOURCE_TTL = 300


class MonitorRegistry:
    """Running monitors and their frame sources, one per class id."""

    def __init__(self):
        self.sources: Dict[str, LatestFrameSource] = {}
        self.monitors: Dict[str, DetectionMonitor] = {}
        self._starting: Dict[str, asyncio.Future] = {}

    def _cleanup_sources(self) -> None:
        if not self.sources:
            return

        now = datetime.utcnow()
        expired = [
            class_id
            for class_id, source in self.sources.items()
            if (now - source.updated_at).total_seconds() > SOURCE_TTL
            and not self.is_running(class_id)
            and class_id not in self._starting
        ]
        for class_id in expired:
            logger.info(f"Expiring idle frame source for class {class_id}")
            self.sources.pop(class_id, None)

    def source(self, class_id: str) -> LatestFrameSource:
        self._cleanup_sources()
        if class_id not in self.sources:
            self.sources[class_id] = LatestFrameSource()
        return self.sources[class_id]

    def get(self, class_id: str) -> Optional[DetectionMonitor]:
        return self.monitors.get(class_id)

    def is_running(self, class_id: str) -> bool:
        monitor = self.monitors.get(class_id)
        return monitor is not None and monitor.running

    async def start(self, service: AttendanceService, class_id: str, **session_options) -> DetectionMonitor:
        if self.is_running(class_id):
            logger.info(f"Monitoring already running for class {class_id}")
            return self.monitors[class_id]

        pending = self._starting.get(class_id)
        if pending is not None:
            logger.info(f"Monitoring already starting for class {class_id}")
            return await asyncio.shield(pending)

        # Claim the class before the first await so a concurrent start joins this one
        pending = self._starting[class_id] = asyncio.get_running_loop().create_future()
        try:
            session = DetectionSession(class_id, service, **session_options)
            await asyncio.to_thread(session.refresh_roster)
            monitor = DetectionMonitor(
                session, self.source(class_id), interval_ms=session.interval_ms, on_result=publish_cycle
            )
            monitor.start()
            self.monitors[class_id] = monitor
        except asyncio.CancelledError:
            pending.cancel()
            raise
        except Exception as e:
            pending.set_exception(e)
            # Marked retrieved; concurrent starts re-raise it
            pending.exception()
            raise
        else:
            pending.set_result(monitor)
            return monitor
        finally:
            self._starting.pop(class_id, None)

    async def stop(self, class_id: str) -> bool:
        pending = self._starting.get(class_id)
        if pending is not None:
            try:
                await asyncio.shield(pending)
            except Exception as e:
                logger.warning(f"Pending monitor start for class {class_id} failed: {e}")

        monitor = self.monitors.pop(class_id, None)
        if monitor is None:
            return False
        await monitor.stop()
        monitor.session.dispose()
        source = self.sources.pop(class_id, None)
        if source is not None:
            source.clear()
        return True

    async def stop_all(self, except_class: Optional[str] = None) -> List[str]:
        stopped = []
        for class_id in list(self.monitors):
            if class_id != except_class and await self.stop(class_id):
                stopped.append(class_id)
        return stopped


registry = MonitorRegistry()


@router.post("/monitoring/{class_id}/frame")
async def upload_frame(class_id: str, request: FrameUploadRequest):
    """
    Camera client uploads its latest frame here; the next detection cycle samples it.
    """
    try:
        frame = Frame.from_base64(request.image)
    except Exception as e:
        logger.warning(f"Rejected frame for class {class_id}: {e}")
        raise HTTPException(status_code=400, detail="Invalid image data")

    registry.source(class_id).push(frame)
    logger.debug(f"Frame {frame.width}x{frame.height} received for class {class_id}")
    return {"status": "success", "width": frame.width, "height": frame.height}


@router.websocket("/ws/monitoring/{class_id}")
async def websocket_endpoint(websocket: WebSocket, class_id: str):
    """
    Dashboard connects here to receive each committed detection cycle.
    """
    await manager.connect(websocket, class_id)
    try:
        while True:
            # Keep alive / Heartbeat
            msg = await websocket.receive_text()
            logger.debug(f"WebSocket heartbeat received: {msg}")
    except WebSocketDisconnect:
        manager.disconnect(websocket, class_id)
    except Exception as e:
        logger.error(f"WebSocket error for class {class_id}: {e}")
        manager.disconnect(websocket, class_id)
