# airdlivers/transport/schemas.py
from typing import Literal

from pydantic import BaseModel, Field


class DevEventIn(BaseModel):
    actor_id: str = Field(min_length=1, max_length=64)
    kind: Literal["text", "photo", "button"] = "text"
    payload: str = Field(min_length=1, max_length=4000)
    event_id: str | None = Field(default=None, max_length=128)


class DevEventOut(BaseModel):
    status: str
    reason: str | None = None
    replies: list[dict] = Field(default_factory=list)
