from app.schemas.agent import ConnectionStateResponse, OwnerMessageRequest, OwnerMessageResponse
from app.schemas.webhook import WebhookEvent, WebhookResponse
from app.schemas.widget import WidgetChatRequest, WidgetChatResponse

__all__ = [
    "ConnectionStateResponse",
    "OwnerMessageRequest",
    "OwnerMessageResponse",
    "WebhookEvent",
    "WebhookResponse",
    "WidgetChatRequest",
    "WidgetChatResponse",
]
