from typing import Literal, Optional

from pydantic import BaseModel, Field


class WidgetHistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class WidgetChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[WidgetHistoryItem] = Field(default_factory=list)


class WidgetChatResponse(BaseModel):
    response: str
    source: str  # faq, model, fallback
    faq_id: Optional[str] = None
