from app.services.conversation_service import (
    ConversationKey,
    get_agent_by_instance,
    normalize_phone_number,
    save_message,
)
from app.services.result import Result

__all__ = [
    "ConversationKey",
    "Result",
    "get_agent_by_instance",
    "normalize_phone_number",
    "save_message",
]
