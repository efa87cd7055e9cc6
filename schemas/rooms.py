from pydantic import BaseModel


class RoomMember(BaseModel):
    session_id: str
    display_name: str


class RoomSummary(BaseModel):
    room_id: str
    member_count: int


class RoomDetailsResponse(BaseModel):
    room_id: str
    member_count: int
    members: list[RoomMember]


class HealthResponse(BaseModel):
    status: str
    sessions: int
    rooms: int
