class RelayError(Exception):
    """Base class for errors raised by the session and room state."""


class SessionNotFound(RelayError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class RoomNotFound(RelayError):
    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class NotAMember(RelayError):
    def __init__(self, room_id: str, session_id: str):
        super().__init__(f"Session {session_id} is not a member of room {room_id}")
        self.room_id = room_id
        self.session_id = session_id


class AlreadyInRoom(RelayError):
    def __init__(self, session_id: str, room_id: str):
        super().__init__(f"Session {session_id} is already in room {room_id}")
        self.session_id = session_id
        self.room_id = room_id


class StateCorrupted(RelayError):
    """Session and room records disagree about membership."""
