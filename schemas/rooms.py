from pydantic import BaseModel
from typing import Optional


class RoomCredentials(BaseModel):
    name: str
    password: Optional[str] = None

class RoomStatusResponse(BaseModel):
    name: str
    status: str

class RoomDetailsResponse(BaseModel):
    name: str
    online_users_count: int
    has_password: bool
