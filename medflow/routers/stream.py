import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from medflow.models.patient import Patient

logger = logging.getLogger(__name__)
router = APIRouter()

# Seconds without a snapshot before a keepalive ping is sent.
PING_INTERVAL = 10.0


@router.websocket("/ws/patients")
async def patients_ws(websocket: WebSocket):
    """Live patient collection.

    Sends the full snapshot on connect and again after every change. Slow
    clients only ever receive the latest snapshot.
    """
    await websocket.accept()
    store = websocket.app.state.store
    queue: asyncio.Queue[list[Patient]] = asyncio.Queue(maxsize=1)

    def _on_change(snapshot: list[Patient]) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(snapshot)

    unsubscribe = store.subscribe(_on_change)
    logger.info("Patient stream client connected")

    try:
        while True:
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=PING_INTERVAL)
            except TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue
            await websocket.send_json({
                "type": "snapshot",
                "patients": [p.model_dump(mode="json") for p in snapshot],
            })
    except WebSocketDisconnect:
        logger.info("Patient stream client disconnected")
    except Exception as e:
        logger.error("Patient stream error: %s", e)
    finally:
        unsubscribe()
