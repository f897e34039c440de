from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import get_logger
from app.schemas.agent import ConnectionStateResponse, OwnerMessageRequest, OwnerMessageResponse
from app.services.conversation_service import (
    ConversationKey,
    get_agent,
    increment_message_count,
    normalize_phone_number,
    save_message,
    upsert_takeover,
)
from app.services.credentials_service import CredentialsNotConfiguredError
from app.services.evolution_service import GatewayError, get_gateway_client

logger = get_logger("agents")

router = APIRouter(prefix="/agents", tags=["agents"])


def _get_agent_or_404(db: Session, agent_id: UUID):
    agent = get_agent(db, agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    if not agent.instance_name:
        raise HTTPException(status_code=409, detail="Agent has no WhatsApp instance")
    return agent


@router.post("/{agent_id}/conversations/{phone_number}/messages", response_model=OwnerMessageResponse)
def send_owner_message(
    agent_id: UUID,
    phone_number: str,
    request: OwnerMessageRequest,
    db: Session = Depends(get_db),
):
    """Operator writes to a customer from the dashboard; the agent steps back."""
    agent = _get_agent_or_404(db, agent_id)
    key = ConversationKey(agent_id=agent.id, phone_number=normalize_phone_number(phone_number))
    try:
        get_gateway_client(db, agent).send_text(agent.instance_name, key.phone_number, request.text)
    except CredentialsNotConfiguredError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except GatewayError as exc:
        logger.error("Owner message send failed", extra={"context": {"agent_id": str(agent.id), "error": str(exc)}})
        return OwnerMessageResponse(success=False, error=str(exc))

    # Takeover window starts once the message is out.
    now = datetime.now(timezone.utc)
    save_message(
        db,
        key,
        "owner",
        request.text,
        status="sent",
        is_from_owner=True,
        message_metadata={"source": "owner_dashboard"},
        now=now,
    )
    upsert_takeover(db, key, now)
    increment_message_count(db, agent.id, now)
    db.commit()
    return OwnerMessageResponse(success=True, takeover=True)


@router.get("/{agent_id}/connection", response_model=ConnectionStateResponse)
def get_connection_state(agent_id: UUID, db: Session = Depends(get_db)):
    agent = _get_agent_or_404(db, agent_id)
    try:
        state = get_gateway_client(db, agent).get_connection_state(agent.instance_name)
    except CredentialsNotConfiguredError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return ConnectionStateResponse(instance_name=agent.instance_name, state=state)
