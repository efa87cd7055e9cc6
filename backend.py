import uuid
from typing import Callable, Dict, FrozenSet, Iterator, List, Optional, Set

from pydantic import BaseModel, Field

from constants import DEFAULT_DISPLAY_NAME, ROOM_ID_LENGTH
from errors import NotAMember, RoomNotFound, SessionNotFound
from logging_config import get_logger

logger = get_logger(__name__)


def generate_session_id() -> str:
    return str(uuid.uuid4())


def generate_room_id() -> str:
    return uuid.uuid4().hex[:ROOM_ID_LENGTH]


class IdAllocator:
    """Hands out identifiers that are never reissued for the life of the process.

    Session and room ids are drawn through the same allocator so the two id
    spaces can never overlap either.
    """

    def __init__(self):
        self._issued: Set[str] = set()

    def allocate(self, factory: Callable[[], str]) -> str:
        new_id = factory()
        while new_id in self._issued:
            logger.debug(f"Identifier {new_id} already issued, drawing another")
            new_id = factory()
        self._issued.add(new_id)
        return new_id

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._issued


class Session(BaseModel):
    session_id: str
    display_name: str = DEFAULT_DISPLAY_NAME
    current_room: Optional[str] = None


class Room(BaseModel):
    room_id: str
    members: Set[str] = Field(default_factory=set)


class ConnectionRegistry:
    """Owns one Session per open channel."""

    def __init__(self, allocator: Optional[IdAllocator] = None, id_factory: Callable[[], str] = generate_session_id):
        self._sessions: Dict[str, Session] = {}
        self._allocator = allocator or IdAllocator()
        self._id_factory = id_factory

    def register(self) -> str:
        session_id = self._allocator.allocate(self._id_factory)
        self._sessions[session_id] = Session(session_id=session_id)
        logger.debug(f"Registered session {session_id} ({len(self._sessions)} open)")
        return session_id

    def lookup(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def set_name(self, session_id: str, name: str) -> bool:
        """Update the display name. Blank names are rejected as a no-op and return False."""
        session = self.lookup(session_id)
        name = name.strip() if name else ""
        if not name:
            logger.debug(f"Rejected blank display name for session {session_id}")
            return False
        session.display_name = name
        logger.debug(f"Session {session_id} is now known as {name!r}")
        return True

    def set_room(self, session_id: str, room_id: Optional[str]):
        session = self.lookup(session_id)
        session.current_room = room_id

    def unregister(self, session_id: str) -> Optional[Session]:
        """Remove a session. Callers must leave its room first; returns None if already gone."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.debug(f"Session {session_id} already unregistered")
            return None
        if session.current_room is not None:
            logger.warning(f"Session {session_id} unregistered while still in room {session.current_room}")
        logger.debug(f"Unregistered session {session_id} ({len(self._sessions)} open)")
        return session

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def clear(self):
        self._sessions.clear()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))


class RoomDirectory:
    """Owns the active rooms. Members are held by session id only."""

    def __init__(self, allocator: Optional[IdAllocator] = None, id_factory: Callable[[], str] = generate_room_id):
        self._rooms: Dict[str, Room] = {}
        self._allocator = allocator or IdAllocator()
        self._id_factory = id_factory

    def create_room(self) -> str:
        room_id = self._allocator.allocate(self._id_factory)
        self._rooms[room_id] = Room(room_id=room_id)
        logger.info(f"Room {room_id} created ({len(self._rooms)} active)")
        return room_id

    def exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    def _get(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def join_room(self, room_id: str, session_id: str):
        room = self._get(room_id)
        room.members.add(session_id)
        logger.debug(f"Session {session_id} added to room {room_id} ({len(room.members)} members)")

    def leave_room(self, room_id: str, session_id: str) -> bool:
        """Remove a member. Returns True when the room emptied and was deleted."""
        room = self._get(room_id)
        if session_id not in room.members:
            raise NotAMember(room_id, session_id)
        room.members.discard(session_id)
        logger.debug(f"Session {session_id} removed from room {room_id} ({len(room.members)} members)")
        if not room.members:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} is empty, deleted ({len(self._rooms)} active)")
            return True
        return False

    def members_of(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._get(room_id).members)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def clear(self):
        self._rooms.clear()

    def __len__(self) -> int:
        return len(self._rooms)
