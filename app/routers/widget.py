from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import get_logger
from app.models import Agent
from app.schemas.widget import WidgetChatRequest, WidgetChatResponse
from app.services.ai_service import generate_widget_reply
from app.services.credentials_service import CredentialsNotConfiguredError
from app.services.faq_service import log_faq_usage, lookup_faq
from app.services.llm import LLMProviderError
from app.services.tool_service import FALLBACK_REPLY

logger = get_logger("widget")

router = APIRouter(prefix="/widget", tags=["widget"])


@router.post("/{agent_id}/chat", response_model=WidgetChatResponse)
def widget_chat(agent_id: UUID, request: WidgetChatRequest, db: Session = Depends(get_db)):
    agent = db.query(Agent).filter(Agent.id == agent_id, Agent.widget_enabled.is_(True)).first()
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found or widget not enabled")

    match = lookup_faq(db, agent.id, request.message)
    if match is not None:
        log_faq_usage(db, match.faq)
        db.commit()
        return WidgetChatResponse(response=match.faq.answer, source="faq", faq_id=str(match.faq.id))

    history = [item.model_dump() for item in request.history]
    try:
        text = generate_widget_reply(db, agent, request.message, history)
    except CredentialsNotConfiguredError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except LLMProviderError as exc:
        logger.error("Widget completion failed", extra={"context": {"agent_id": str(agent.id), "error": str(exc)}})
        return WidgetChatResponse(response=FALLBACK_REPLY, source="fallback")

    if not text.strip():
        return WidgetChatResponse(response=FALLBACK_REPLY, source="fallback")
    return WidgetChatResponse(response=text, source="model")
