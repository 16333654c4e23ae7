from fastapi import APIRouter, FastAPI, WebSocket, WebSocketDisconnect
from typing import Dict, Optional, Set
import json
import asyncio
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 30.0


def encode_event(event_type: str, data: dict) -> str:
    # default=str covers datetimes and addresses
    return json.dumps({"type": event_type, "data": data}, default=str)


class ConnectionManager:
    """
    Tracks WebSocket clients and the scans each one follows.

    A client with no subscriptions receives the events of every scan; once
    it subscribes to a job it only receives events of the jobs it named.
    """

    def __init__(self):
        self.subscriptions: Dict[WebSocket, Set[str]] = {}

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.subscriptions[websocket] = set()

    def disconnect(self, websocket: WebSocket):
        self.subscriptions.pop(websocket, None)

    def subscribe(self, websocket: WebSocket, job_id: str) -> None:
        self.subscriptions.setdefault(websocket, set()).add(job_id)

    def unsubscribe(self, websocket: WebSocket, job_id: Optional[str] = None) -> None:
        """Drop one job, or every job when ``job_id`` is None."""
        jobs = self.subscriptions.get(websocket)
        if jobs is None:
            return
        if job_id is None:
            jobs.clear()
        else:
            jobs.discard(job_id)

    def wants(self, websocket: WebSocket, job_id: str) -> bool:
        jobs = self.subscriptions.get(websocket)
        return jobs is not None and (not jobs or job_id in jobs)

    async def publish(self, job_id: str, event_type: str, data: dict) -> int:
        """Send one scan event to the clients following that scan. Returns clients reached."""
        message = encode_event(event_type, data)
        targets = [ws for ws in list(self.subscriptions) if self.wants(ws, job_id)]

        sent = 0
        for connection in targets:
            try:
                await connection.send_text(message)
                sent += 1
            except (WebSocketDisconnect, RuntimeError, OSError):
                logger.debug("Dropping WebSocket client that went away")
                self.disconnect(connection)
        return sent

    async def send_personal(self, websocket: WebSocket, event_type: str, data: dict):
        await websocket.send_text(encode_event(event_type, data))

    async def handle_message(self, websocket: WebSocket, message: dict) -> None:
        """Answer one client control message."""
        kind = message.get("type")
        job_id = message.get("job_id")

        if kind == "ping":
            await self.send_personal(websocket, "pong", {})
        elif kind == "subscribe":
            if not isinstance(job_id, str) or not job_id:
                await self.send_personal(websocket, "error", {"message": "subscribe needs a job_id"})
                return
            self.subscribe(websocket, job_id)
            await self.send_personal(websocket, "subscribed", {"job_id": job_id})
        elif kind == "unsubscribe":
            self.unsubscribe(websocket, job_id if isinstance(job_id, str) else None)
            await self.send_personal(websocket, "unsubscribed", {"job_id": job_id})


async def forward_events(orchestrator, job_id: str, manager: ConnectionManager):
    """Publish every event of one scan until it completes."""
    async for event in orchestrator.events(job_id):
        await manager.publish(job_id, event.type, event.to_dict())


def relay_scan_events(app: FastAPI, job_id: str) -> asyncio.Task:
    """Start forwarding a scan's events to WebSocket clients."""
    task = asyncio.create_task(
        forward_events(app.state.orchestrator, job_id, app.state.connections),
        name=f"relay-{job_id}",
    )
    app.state.relay_tasks.add(task)
    task.add_done_callback(app.state.relay_tasks.discard)
    return task


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for real-time scan events."""
    manager: ConnectionManager = websocket.app.state.connections
    await manager.connect(websocket)

    try:
        await manager.send_personal(websocket, "connected", {
            "message": "Connected to LAN Scan WebSocket"
        })

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                try:
                    await manager.send_personal(websocket, "ping", {})
                except (WebSocketDisconnect, RuntimeError):
                    break
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict):
                await manager.handle_message(websocket, message)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
