"""Protocol state machine for the relay.

The MessageRouter owns the ConnectionRegistry and RoomDirectory and is the only
code that mutates them. Every entry point (connect, receive, dispatch,
disconnect) runs to completion synchronously and returns the deliveries the
transport has to perform; nothing here awaits or touches a socket. Running all
calls on one event loop is what makes each event's read-modify-write atomic, so
a multi-threaded host must serialize calls behind a single lock.
"""
import time
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple, Union

from backend import ConnectionRegistry, IdAllocator, RoomDirectory, Session
from constants import ALREADY_IN_ROOM_MESSAGE, ROOM_NOT_FOUND_MESSAGE
from errors import AlreadyInRoom, NotAMember, RoomNotFound, StateCorrupted
from logging_config import get_logger
from schemas.events import (
    ChatMessageEvent,
    ConnectedEvent,
    CreateRoomEvent,
    ErrorEvent,
    InboundEvent,
    JoinRoomEvent,
    LeaveRoomEvent,
    NameSetEvent,
    OutboundEvent,
    ProtocolError,
    RoomBroadcastEvent,
    RoomCreatedEvent,
    RoomJoinedEvent,
    RoomLeftEvent,
    SetNameEvent,
    decode_event,
)

logger = get_logger(__name__)


def current_millis() -> int:
    return int(time.time() * 1000)


class Delivery(NamedTuple):
    """One outbound event addressed to one session's channel."""

    session_id: str
    event: OutboundEvent


class MessageRouter:
    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        directory: Optional[RoomDirectory] = None,
        clock: Callable[[], int] = current_millis,
    ):
        allocator = IdAllocator()
        self.registry = registry if registry is not None else ConnectionRegistry(allocator)
        self.directory = directory if directory is not None else RoomDirectory(allocator)
        self._clock = clock
        self._handlers = {
            CreateRoomEvent: self._create_room,
            JoinRoomEvent: self._join_room,
            LeaveRoomEvent: self._leave_room,
            ChatMessageEvent: self._chat_message,
            SetNameEvent: self._set_name,
        }

    def connect(self) -> Tuple[str, List[Delivery]]:
        session_id = self.registry.register()
        logger.info(f"Session {session_id} connected")
        return session_id, [Delivery(session_id, ConnectedEvent(client_id=session_id))]

    def receive(self, session_id: str, raw: Union[str, bytes]) -> List[Delivery]:
        """Decode a raw frame and dispatch it. Undecodable frames are dropped."""
        decoded = decode_event(raw)
        if isinstance(decoded, ProtocolError):
            logger.warning(f"Dropped frame from session {session_id}: {decoded.reason} {decoded.detail}")
            return []
        return self.dispatch(session_id, decoded)

    def dispatch(self, session_id: str, event: InboundEvent) -> List[Delivery]:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"Ignoring unsupported event {type(event).__name__} from session {session_id}")
            return []

        session = self.registry.get(session_id)
        if session is None:
            logger.warning(f"Ignoring {event.type} from unknown session {session_id}")
            return []

        logger.debug(f"Dispatching {event.type} from session {session_id}")
        try:
            deliveries = handler(session, event)
        except RoomNotFound as e:
            logger.warning(f"{event.type} from session {session_id} rejected: room {e.room_id} not found")
            return [Delivery(session_id, ErrorEvent(message=ROOM_NOT_FOUND_MESSAGE))]
        except AlreadyInRoom as e:
            logger.warning(f"{event.type} from session {session_id} rejected: already in room {e.room_id}")
            return [Delivery(session_id, ErrorEvent(message=ALREADY_IN_ROOM_MESSAGE))]

        logger.debug(f"{event.type} from session {session_id} produced {len(deliveries)} deliveries")
        return deliveries

    def disconnect(self, session_id: str) -> List[Delivery]:
        """Channel closed: leave the current room, then drop the session. Safe to repeat."""
        session = self.registry.get(session_id)
        if session is None:
            logger.debug(f"Disconnect for session {session_id} ignored, already unregistered")
            return []

        deliveries = []
        if session.current_room is not None:
            room_id, remaining = self._remove_from_room(session)
            deliveries = self._notice_to(remaining, "user_left", room_id, session, f"{session.display_name} left the room")

        self.registry.unregister(session_id)
        logger.info(f"Session {session_id} disconnected")
        return deliveries

    def clear(self):
        self.directory.clear()
        self.registry.clear()
        logger.info("Router state cleared")

    def verify_state(self):
        """Raise StateCorrupted unless sessions and rooms agree on every membership."""
        for session in self.registry:
            if session.current_room is None:
                continue
            if not self.directory.exists(session.current_room):
                raise StateCorrupted(f"Session {session.session_id} points at missing room {session.current_room}")
            if session.session_id not in self.directory.members_of(session.current_room):
                raise StateCorrupted(f"Session {session.session_id} missing from room {session.current_room}")

        for room in self.directory.rooms():
            if not room.members:
                raise StateCorrupted(f"Room {room.room_id} has no members")
            for member_id in room.members:
                member = self.registry.get(member_id)
                if member is None:
                    raise StateCorrupted(f"Room {room.room_id} holds unknown session {member_id}")
                if member.current_room != room.room_id:
                    raise StateCorrupted(
                        f"Room {room.room_id} holds session {member_id} whose room is {member.current_room}"
                    )

    # Handlers

    def _create_room(self, session: Session, event: CreateRoomEvent) -> List[Delivery]:
        """Create a room and join it. Refused while the session is already in a room."""
        if session.current_room is not None:
            raise AlreadyInRoom(session.session_id, session.current_room)

        if event.sender_name:
            self.registry.set_name(session.session_id, event.sender_name)
        room_id = self.directory.create_room()
        self._add_to_room(session, room_id)
        logger.info(f"Session {session.session_id} created room {room_id}")
        return [Delivery(session.session_id, RoomCreatedEvent(room_id=room_id))]

    def _join_room(self, session: Session, event: JoinRoomEvent) -> List[Delivery]:
        if session.current_room is not None:
            raise AlreadyInRoom(session.session_id, session.current_room)
        if not self.directory.exists(event.room_id):
            raise RoomNotFound(event.room_id)

        existing = self.directory.members_of(event.room_id)
        if event.sender_name:
            self.registry.set_name(session.session_id, event.sender_name)
        self._add_to_room(session, event.room_id)
        logger.info(f"Session {session.session_id} joined room {event.room_id} ({len(existing) + 1} members)")

        deliveries = [Delivery(session.session_id, RoomJoinedEvent(room_id=event.room_id))]
        deliveries.extend(
            self._notice_to(existing, "user_joined", event.room_id, session, f"{session.display_name} joined the room")
        )
        return deliveries

    def _leave_room(self, session: Session, event: LeaveRoomEvent) -> List[Delivery]:
        if session.current_room is None:
            logger.warning(f"leave_room from session {session.session_id} ignored: not in a room")
            return []

        room_id, remaining = self._remove_from_room(session)
        deliveries = self._notice_to(remaining, "user_left", room_id, session, f"{session.display_name} left the room")
        deliveries.append(Delivery(session.session_id, RoomLeftEvent(room_id=room_id)))
        return deliveries

    def _chat_message(self, session: Session, event: ChatMessageEvent) -> List[Delivery]:
        if session.current_room is None:
            logger.warning(f"chat_message from session {session.session_id} ignored: not in a room")
            return []
        if event.room_id != session.current_room:
            logger.warning(
                f"chat_message from session {session.session_id} for room {event.room_id} ignored: "
                f"session is in room {session.current_room}"
            )
            return []

        recipients = self.directory.members_of(session.current_room) - {session.session_id}
        return self._notice_to(recipients, "chat_message", session.current_room, session, event.message)

    def _set_name(self, session: Session, event: SetNameEvent) -> List[Delivery]:
        if not self.registry.set_name(session.session_id, event.sender_name):
            logger.warning(f"set_name from session {session.session_id} ignored: blank name")
            return []

        deliveries = [Delivery(session.session_id, NameSetEvent(sender_name=session.display_name))]
        if session.current_room is not None:
            others = self.directory.members_of(session.current_room) - {session.session_id}
            deliveries.extend(
                self._notice_to(
                    others,
                    "user_renamed",
                    session.current_room,
                    session,
                    f"User has changed their name to {session.display_name}",
                )
            )
        return deliveries

    # Membership helpers: each updates both sides of the session <-> room link

    def _add_to_room(self, session: Session, room_id: str):
        self.directory.join_room(room_id, session.session_id)
        self.registry.set_room(session.session_id, room_id)

    def _remove_from_room(self, session: Session) -> Tuple[str, frozenset]:
        room_id = session.current_room
        try:
            destroyed = self.directory.leave_room(room_id, session.session_id)
        except (RoomNotFound, NotAMember) as e:
            raise StateCorrupted(f"Session {session.session_id} thinks it is in room {room_id}: {e}") from e
        self.registry.set_room(session.session_id, None)

        if destroyed:
            logger.info(f"Session {session.session_id} left room {room_id}, room destroyed")
            return room_id, frozenset()
        remaining = self.directory.members_of(room_id)
        logger.info(f"Session {session.session_id} left room {room_id} ({len(remaining)} members remain)")
        return room_id, remaining

    def _notice_to(
        self, recipients: Iterable[str], event_type: str, room_id: str, sender: Session, message: str
    ) -> List[Delivery]:
        recipients = list(recipients)
        if not recipients:
            return []
        # One timestamp per broadcast so every recipient sees the same value
        event = RoomBroadcastEvent(
            type=event_type,
            room_id=room_id,
            sender_id=sender.session_id,
            sender_name=sender.display_name,
            message=message,
            timestamp=self._clock(),
        )
        return [Delivery(recipient, event) for recipient in recipients]
