import logging
from typing import Dict, List, Set

from fastapi import WebSocket


logger = logging.getLogger(__name__)


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation_{conversation_id}"


class RoomManager:
    """Process-local registry of sockets joined to named rooms."""

    def __init__(self) -> None:
        self.rooms: Dict[str, List[WebSocket]] = {}

    def join(self, room: str, websocket: WebSocket) -> None:
        members = self.rooms.setdefault(room, [])
        if websocket not in members:
            members.append(websocket)

    def leave(self, room: str, websocket: WebSocket) -> None:
        if room in self.rooms:
            try:
                self.rooms[room].remove(websocket)
            except ValueError:
                pass
            if not self.rooms[room]:
                del self.rooms[room]

    def leave_all(self, websocket: WebSocket) -> Set[str]:
        left = {room for room, members in self.rooms.items() if websocket in members}
        for room in left:
            self.leave(room, websocket)
        return left

    def members(self, room: str) -> List[WebSocket]:
        return list(self.rooms.get(room, []))

    async def send_to_room(self, room: str, message: str) -> int:
        sent = 0
        for conn in self.members(room):
            try:
                await conn.send_text(message)
                sent += 1
            except Exception as exc:
                # dead socket: drop it everywhere, the client re-syncs on reconnect
                logger.warning("Dropping socket from %s after send failure: %s", room, exc)
                self.leave_all(conn)
        return sent
