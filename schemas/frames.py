from pydantic import BaseModel, Field, StrictInt
from typing import Literal


FrameType = Literal["join", "typing", "message", "ping"]

BROADCAST_TYPES = ("typing", "message")


class EncryptedContent(BaseModel):
    # Ciphertext and IV are produced client-side and relayed untouched
    encrypted: list[StrictInt] = Field(default_factory=list)
    iv: list[StrictInt] = Field(default_factory=list)


class Frame(BaseModel):
    type: FrameType
    username: str = ""
    content: EncryptedContent = Field(default_factory=EncryptedContent)
    room: str = ""


def ping_frame(room: str = "") -> dict:
    return {"type": "ping", "room": room}
