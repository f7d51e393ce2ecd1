"""WebSocket endpoint for the media-streaming audio feed.

The telephony side opens one connection per call leg and streams JSON
frames (see src.recap.meetings.ingest). Audio is buffered under the
``source_key`` path parameter, which the call controller later passes to
POST /meetings as ``audio_source_key``.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from src.recap.api.deps import get_frame_handler
from src.recap.meetings.ingest import FrameOutcome

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["ingest"])


@router.websocket("/ws/audio/{source_key}")
async def audio_websocket(websocket: WebSocket, source_key: str) -> None:
    """Receive audio frames and append them to the audio buffer store."""
    handler = get_frame_handler(websocket)
    if handler is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    logger.info("websocket.connected", source_key=source_key)

    frames = 0
    buffered = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""

            frames += 1
            if handler.handle_message(source_key, raw) == FrameOutcome.BUFFERED:
                buffered += 1

    except WebSocketDisconnect:
        logger.info(
            "websocket.disconnected",
            source_key=source_key,
            frames=frames,
            buffered=buffered,
        )
    except Exception:
        logger.warning(
            "websocket.error",
            source_key=source_key,
            exc_info=True,
        )
