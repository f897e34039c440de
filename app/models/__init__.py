from app.models.agent import Agent
from app.models.app_setting import AppSetting
from app.models.conversation import ConversationActivity, ConversationTakeover
from app.models.document import AgentDocument
from app.models.faq import AgentFaq
from app.models.media import AgentMedia
from app.models.message import Message

__all__ = [
    "Agent",
    "AgentDocument",
    "AgentFaq",
    "AgentMedia",
    "AppSetting",
    "ConversationActivity",
    "ConversationTakeover",
    "Message",
]
