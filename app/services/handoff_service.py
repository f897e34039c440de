from app.logging_config import get_logger
from app.models import Agent
from app.services.alert_service import alert_error
from app.services.evolution_service import EvolutionClient, GatewayError
from app.services.result import Result
from app.services.tool_service import HandoffRequest

logger = get_logger("handoff")

HISTORY_PREVIEW_CHARS = 1500


def format_handoff_notification(agent: Agent, handoff: HandoffRequest) -> str:
    """WhatsApp message for the human operator on the transfer number."""
    text = f"🔔 *Transferência para Humano Solicitada*\n\n*Agente:* {agent.name}\n*Motivo:* {handoff.reason}"
    if handoff.customer_name:
        text += f"\n*Nome do cliente:* {handoff.customer_name}"
    if handoff.customer_phone:
        text += f"\n*Telefone:* {handoff.customer_phone}"
    if handoff.order_details:
        text += f"\n\n🛒 *Detalhes do Pedido:*\n{handoff.order_details}"

    history = (handoff.conversation_history or "").strip() or "Sem histórico disponível"
    if len(history) > HISTORY_PREVIEW_CHARS:
        history = history[:HISTORY_PREVIEW_CHARS].rstrip() + "…"
    text += f"\n\n💬 *Histórico:*\n{history}"
    return text


def notify_human(gateway: EvolutionClient, agent: Agent, handoff: HandoffRequest) -> Result[None]:
    """Send the handoff summary to the agent's transfer number.

    Never raises: the customer-facing reply does not depend on this succeeding.
    """
    if not agent.notification_number:
        return Result.failure("No transfer number configured", "no_notification_number")

    try:
        gateway.send_text(agent.instance_name, agent.notification_number, format_handoff_notification(agent, handoff))
    except GatewayError as exc:
        logger.error(
            "Human notification failed",
            extra={"context": {"agent_id": str(agent.id), "customer_phone": handoff.customer_phone, "error": str(exc)}},
        )
        alert_error(
            "Human handoff notification failed",
            {"agent": agent.name, "customer_phone": handoff.customer_phone, "error": str(exc)},
        )
        return Result.failure(str(exc), "gateway_error")

    logger.info(
        "Human notified",
        extra={"context": {"agent_id": str(agent.id), "customer_phone": handoff.customer_phone}},
    )
    return Result.success(None)
