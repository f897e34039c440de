from typing import Optional

from pydantic import BaseModel, Field


class OwnerMessageRequest(BaseModel):
    text: str = Field(min_length=1)


class OwnerMessageResponse(BaseModel):
    success: bool
    takeover: bool = False
    error: Optional[str] = None


class ConnectionStateResponse(BaseModel):
    instance_name: str
    state: str
