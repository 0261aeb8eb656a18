"""
Client -> server messages on the realtime channel.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field


class ClientMessage(BaseModel):
    action: Literal["join_room", "leave_room", "message"]
    event_id: int
    message: Optional[str] = Field(None, max_length=2000)
