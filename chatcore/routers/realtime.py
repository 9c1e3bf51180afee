import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chatcore.errors import NotFoundError
from chatcore.routers.conversations import get_conversation_service
from chatcore.services.conversation_service import ConversationService
from chatcore.utils.dependencies import user_id_from_token
from chatcore.utils.realtime_bus import encode_frame, get_bus
from chatcore.utils.websocket_manager import conversation_room


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, bus = Depends(get_bus), service: ConversationService = Depends(get_conversation_service)):
    # token comes as ?token=... since browsers cannot set headers on websockets
    user_id = user_id_from_token(websocket.query_params.get("token"))
    if user_id is None:
        await websocket.close(code=4401)
        return

    await bus.connect(user_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(encode_frame("error", {"message": "Invalid JSON frame"}))
                continue
            if not isinstance(msg, dict):
                await websocket.send_text(encode_frame("error", {"message": "Invalid frame"}))
                continue

            frame_type = msg.get("type")
            if frame_type == "ping":
                await websocket.send_text(encode_frame("pong", {}))
                continue

            if frame_type in ("join_conversation", "leave_conversation"):
                conversation_id = msg.get("conversation_id")
                if not isinstance(conversation_id, str) or not conversation_id:
                    await websocket.send_text(encode_frame("error", {"message": "conversation_id required"}))
                    continue
                if frame_type == "leave_conversation":
                    bus.leave(conversation_room(conversation_id), websocket)
                    await websocket.send_text(encode_frame("left", {"conversation_id": conversation_id}))
                    continue
                try:
                    await service.get_conversation_by_id(conversation_id, user_id)
                except NotFoundError:
                    await websocket.send_text(encode_frame("error", {"message": "Conversation not found", "conversation_id": conversation_id}))
                    continue
                bus.join(conversation_room(conversation_id), websocket)
                await websocket.send_text(encode_frame("joined", {"conversation_id": conversation_id}))
                continue

            await websocket.send_text(encode_frame("error", {"message": f"Unknown frame type: {frame_type!r}"}))
    except WebSocketDisconnect:
        pass
    finally:
        bus.disconnect(user_id, websocket)
