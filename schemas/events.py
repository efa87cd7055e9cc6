import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class EventModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Inbound events (client -> server)

class CreateRoomEvent(EventModel):
    type: Literal["create_room"]
    sender_name: Optional[str] = None


class JoinRoomEvent(EventModel):
    type: Literal["join_room"]
    room_id: str = Field(min_length=1)
    sender_name: Optional[str] = None


class LeaveRoomEvent(EventModel):
    type: Literal["leave_room"]


class ChatMessageEvent(EventModel):
    type: Literal["chat_message"]
    room_id: str = Field(min_length=1)
    message: str = Field(min_length=1)


class SetNameEvent(EventModel):
    type: Literal["set_name"]
    sender_name: str = Field(min_length=1)


InboundEvent = Annotated[
    Union[CreateRoomEvent, JoinRoomEvent, LeaveRoomEvent, ChatMessageEvent, SetNameEvent],
    Field(discriminator="type"),
]

INBOUND_EVENT_TYPES = frozenset({"create_room", "join_room", "leave_room", "chat_message", "set_name"})

_inbound_adapter = TypeAdapter(InboundEvent)


class ProtocolError(BaseModel):
    """Result of a frame that could not be decoded into an inbound event."""

    reason: Literal["invalid_json", "not_an_object", "unknown_type", "invalid_payload"]
    detail: str = ""


def decode_event(raw: Union[str, bytes]) -> Union[InboundEvent, ProtocolError]:
    """Decode one text frame. Never raises; failures come back as ProtocolError."""
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        return ProtocolError(reason="invalid_json", detail=str(e))

    if not isinstance(data, dict):
        return ProtocolError(reason="not_an_object", detail=type(data).__name__)

    event_type = data.get("type")
    if not isinstance(event_type, str) or event_type not in INBOUND_EVENT_TYPES:
        return ProtocolError(reason="unknown_type", detail=repr(event_type))

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        return ProtocolError(reason="invalid_payload", detail=f"{e.error_count()} validation error(s) for {event_type}")


# Outbound events (server -> client)

class ConnectedEvent(EventModel):
    type: Literal["connected"] = "connected"
    client_id: str


class RoomCreatedEvent(EventModel):
    type: Literal["room_created"] = "room_created"
    room_id: str


class RoomJoinedEvent(EventModel):
    type: Literal["room_joined"] = "room_joined"
    room_id: str


class RoomLeftEvent(EventModel):
    type: Literal["room_left"] = "room_left"
    room_id: str


class ErrorEvent(EventModel):
    type: Literal["error"] = "error"
    message: str


class NameSetEvent(EventModel):
    type: Literal["name_set"] = "name_set"
    sender_name: str


class RoomBroadcastEvent(EventModel):
    """Chat messages and membership notices fanned out to a room."""

    type: Literal["chat_message", "user_joined", "user_left", "user_renamed"]
    room_id: str
    sender_id: str
    sender_name: str
    message: str
    timestamp: int


OutboundEvent = Union[
    ConnectedEvent,
    RoomCreatedEvent,
    RoomJoinedEvent,
    RoomLeftEvent,
    ErrorEvent,
    NameSetEvent,
    RoomBroadcastEvent,
]


def encode_event(event: OutboundEvent) -> str:
    return event.model_dump_json(by_alias=True)
