"""WebSocket endpoint pushing the tracked-services state to the UI.

Clients connect to ``/ws/services`` and receive the current state right
away, then a new message after every reconciliation pass. A plain "ping"
text is answered with a pong; anything else sent by the client is ignored.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dbservices.core.logging import get_logger
from dbservices.services.reconciler import create_services_state_message

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/services")
async def services_state_endpoint(websocket: WebSocket) -> None:
    publisher = getattr(websocket.app.state, "state_publisher", None)
    manager = getattr(websocket.app.state, "services_manager", None)
    if publisher is None or manager is None:
        await websocket.close(code=1013)  # Try Again Later
        return

    await publisher.connect(websocket)
    try:
        await publisher.send_to(websocket, create_services_state_message(manager.get_services()))
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type":"pong"}')
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await publisher.disconnect(websocket)
