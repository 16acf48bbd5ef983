from pydantic import BaseModel
from typing import Optional
from schemas.fields import Utf8Str


class Room(BaseModel):
    """Stored room record. Never returned as-is over the API."""
    id: int
    name: str
    description: Optional[str] = None
    password_hash: Optional[str] = None
    created_by: str
    created_at: str

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

class CreateRoomRequest(BaseModel):
    name: Optional[Utf8Str] = None
    description: Optional[Utf8Str] = None
    password: Optional[Utf8Str] = None
    username: Optional[Utf8Str] = None

class RoomSummary(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_by: str

class RoomDetailsResponse(RoomSummary):
    created_at: str
    has_password: bool
    online_count: int

class CheckPasswordRequest(BaseModel):
    password: Optional[Utf8Str] = None

class CheckPasswordResponse(BaseModel):
    valid: bool

class DeleteRoomRequest(BaseModel):
    password: Optional[Utf8Str] = None

class DeleteRoomResponse(BaseModel):
    success: bool
