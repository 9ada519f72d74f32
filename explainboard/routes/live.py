import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request, Response, WebSocket, WebSocketDisconnect

from explainboard.errors import CaptureUnavailable, LiveConnectionError, SessionAlreadyActive
from explainboard.recording.controller import LiveSessionController
from explainboard.routes.exports import ExportFormat, export_response
from explainboard.services.export import (
    LIVE_SESSION_FILENAME,
    LIVE_SESSION_TITLE,
    live_session_blocks,
    live_session_markdown,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])

# Connected live-board clients and in-flight broadcast tasks.
_websockets: list[WebSocket] = []
_pending_sends: set[asyncio.Task] = set()


def _controller(request: Request) -> LiveSessionController:
    return request.app.state.live


# ==================================================================
# REST endpoints
# ==================================================================


@router.post("/api/live/start")
async def start_live_session(request: Request) -> dict:
    """Open the microphone and start streaming to the live transcription model."""
    controller = _controller(request)
    try:
        await controller.start()
    except SessionAlreadyActive as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CaptureUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except LiveConnectionError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return controller.snapshot()


@router.post("/api/live/stop")
async def stop_live_session(request: Request) -> dict:
    """Stop the session.  Safe to call when nothing is running."""
    controller = _controller(request)
    controller.stop()
    return controller.snapshot()


@router.get("/api/live")
async def get_live_session(request: Request) -> dict:
    return _controller(request).snapshot()


@router.get("/api/live/export/{fmt}")
async def export_live_session(fmt: ExportFormat, request: Request) -> Response:
    segments = _controller(request).pipeline.board.segments
    if not segments:
        raise HTTPException(status_code=404, detail="No live segments to export.")
    return await export_response(
        fmt,
        LIVE_SESSION_FILENAME,
        markdown=live_session_markdown(segments),
        title=LIVE_SESSION_TITLE,
        introduction="",
        blocks=live_session_blocks(segments),
    )


# ==================================================================
# WebSocket endpoint
# ==================================================================


@router.websocket("/ws/live")
async def live_websocket(websocket: WebSocket) -> None:
    """Live update stream: session status and board changes."""
    await websocket.accept()
    _websockets.append(websocket)

    controller: LiveSessionController = websocket.app.state.live
    snapshot = controller.snapshot()
    await websocket.send_json({
        "type": "session_status",
        "status": snapshot["status"],
        "error": snapshot["error"],
    })

    try:
        while True:
            await websocket.receive_text()  # keep-alive; client sends pings
    except WebSocketDisconnect:
        if websocket in _websockets:
            _websockets.remove(websocket)


# ==================================================================
# Internal helpers (run on the event loop)
# ==================================================================


def broadcast(event: dict) -> None:
    """Controller listener: fan *event* out to every connected client."""
    if not _websockets:
        return
    task = asyncio.get_running_loop().create_task(_send_to_all(event))
    _pending_sends.add(task)
    task.add_done_callback(_pending_sends.discard)


async def _send_to_all(message: dict) -> None:
    for ws in list(_websockets):
        try:
            await ws.send_json(message)
        except Exception:
            logger.debug("Dropping disconnected live client")
            if ws in _websockets:
                _websockets.remove(ws)
