import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Agent, AgentDocument, AgentMedia, Message
from app.services.conversation_service import ConversationKey, get_documents, get_media_items, get_recent_messages
from app.services.llm import LLMProvider, LLMProviderError, LLMResponse, get_llm_provider
from app.services.llm.base import UserContent
from app.services.normalizer_service import NormalizedContent
from app.services.policy_service import agent_zone

logger = get_logger("ai_service")

MAX_COMPLETION_TOKENS = 1000

WEEKDAYS_PT = ["segunda-feira", "terça-feira", "quarta-feira", "quinta-feira", "sexta-feira", "sábado", "domingo"]
MONTHS_PT = [
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
]

NATURAL_RESPONSE_INSTRUCTION = """

IMPORTANTE: Responda de forma natural e humana. Quebre suas respostas em mensagens curtas quando apropriado.
- Use frases curtas e diretas
- Não envie blocos grandes de texto
- Separe ideias diferentes com "---" para que sejam enviadas como mensagens separadas
- Seja conversacional e amigável"""

MEDIA_RULES = """

## REGRAS OBRIGATÓRIAS PARA ENVIO DE MÍDIA:
1. NUNCA use markdown para imagens (como ![nome](url)). Isso NÃO funciona.
2. SEMPRE use a função/tool "send_media" quando quiser enviar fotos ou vídeos.
3. Quando o usuário perguntar sobre um produto, chame a função send_media com o nome da mídia.
4. Use a descrição para identificar qual mídia corresponde à pergunta do usuário.
5. Se não encontrar a mídia, informe que não tem imagem disponível.

Exemplo correto: Chamar send_media com media_names: ["PETRO POWER 150"]
Exemplo ERRADO: Escrever ![PETRO POWER 150](url) no texto"""

SEND_MEDIA_TOOL = {
    "type": "function",
    "function": {
        "name": "send_media",
        "description": (
            "Envia fotos ou vídeos de produtos para o usuário. Use quando o usuário perguntar sobre "
            "um produto específico ou pedir para ver imagens/vídeos."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "media_names": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Lista com os nomes exatos das mídias a serem enviadas (conforme listado na galeria)",
                },
                "message": {
                    "type": "string",
                    "description": "Mensagem de texto para acompanhar as mídias (opcional)",
                },
            },
            "required": ["media_names"],
        },
    },
}

NOTIFY_HUMAN_TOOL = {
    "type": "function",
    "function": {
        "name": "notify_human",
        "description": (
            "Notifica um atendente humano via WhatsApp quando você precisa transferir o atendimento ou quando "
            "a situação requer intervenção humana. Use quando: o cliente pedir para falar com um humano, quando "
            "não conseguir resolver o problema, quando precisar confirmar um pedido/compra, ou quando a situação "
            "for complexa demais."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "description": 'Motivo da transferência (ex: "Cliente solicitou atendimento humano")',
                },
                "conversation_history": {
                    "type": "string",
                    "description": (
                        'Histórico COMPLETO da conversa formatado como: "Cliente: mensagem\\nAgente: resposta\\n..."'
                    ),
                },
                "order_details": {
                    "type": "string",
                    "description": "Detalhes do pedido/compra se aplicável (produtos, quantidades, valores, endereço)",
                },
                "customer_name": {
                    "type": "string",
                    "description": "Nome do cliente (se mencionado na conversa)",
                },
            },
            "required": ["reason", "conversation_history"],
        },
    },
}


@dataclass
class GeneratedCompletion:
    """Raw completion plus the catalog it was generated against."""

    response: LLMResponse
    media_items: List[AgentMedia] = field(default_factory=list)
    used_tools: bool = False


def _log_timing(label: str, start_time: float, context: Optional[dict] = None) -> None:
    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    logger.info(f"{label} took {elapsed_ms}ms", extra={"context": {**(context or {}), "elapsed_ms": elapsed_ms}})


def format_datetime_context(agent: Agent, now: datetime) -> str:
    local = now.astimezone(agent_zone(agent))
    stamp = (
        f"{WEEKDAYS_PT[local.weekday()]}, {local.day} de {MONTHS_PT[local.month - 1]} de {local.year}, "
        f"{local:%H:%M}"
    )
    return f"\n\n[INFORMAÇÃO DO SISTEMA - Data e Hora Atual ({local.tzinfo}): {stamp}]\n"


def format_media_catalog(media_items: List[AgentMedia]) -> str:
    if not media_items:
        return ""
    lines = []
    for index, item in enumerate(media_items, start=1):
        line = f'{index}. [{(item.media_type or "image").upper()}] "{item.name}"'
        if item.description:
            line += f" - {item.description}"
        lines.append(line)
    return "\n\n## Galeria de Produtos/Mídia Disponível:\n" + "\n".join(lines) + MEDIA_RULES


def format_transcript(history: List[dict]) -> str:
    return "\n".join(
        f"{'Cliente' if item['role'] == 'user' else 'Agente'}: {item['content']}" for item in history
    )


def format_transfer_block(agent: Agent, history: List[dict]) -> str:
    custom = (
        f"\n\n### Instruções Personalizadas do Negócio:\n{agent.transfer_instructions}\n"
        if agent.transfer_instructions
        else ""
    )
    order_hint = (
        "SIGA AS INSTRUÇÕES PERSONALIZADAS ACIMA para preencher este campo com as informações relevantes."
        if agent.transfer_instructions
        else "Se for um pedido, liste TODOS os detalhes: produtos, quantidades, valores, endereço de entrega, "
        "forma de pagamento, observações, etc."
    )
    return f"""

## Transferência para Atendente Humano:
Você tem a capacidade de notificar um atendente humano via WhatsApp quando necessário.

Use a função "notify_human" APENAS quando:
- O cliente pedir explicitamente para falar com um humano
- O cliente confirmar um pedido/compra
- Você não conseguir resolver o problema do cliente
- A situação for complexa e requer análise humana
- O cliente estiver insatisfeito ou frustrado
{custom}
IMPORTANTE: Ao usar notify_human, forneça:
- reason: Motivo claro (ex: "Confirmação de pedido", "Transferência solicitada", etc.)
- conversation_history: Histórico COMPLETO da conversa. Copie TODAS as mensagens abaixo:

---INÍCIO DO HISTÓRICO---
{format_transcript(history)}
---FIM DO HISTÓRICO---

Inclua também a mensagem atual do cliente no conversation_history.

- order_details: {order_hint}
- customer_name: Nome do cliente se mencionado na conversa"""


def build_system_prompt(
    agent: Agent,
    *,
    now: datetime,
    documents: List[AgentDocument],
    media_items: List[AgentMedia],
    history: List[dict],
    include_transfer: bool = True,
) -> str:
    prompt = (agent.prompt or "") + format_datetime_context(agent, now) + NATURAL_RESPONSE_INSTRUCTION

    docs_context = "\n\n".join(doc.content for doc in documents if doc.content)
    if docs_context:
        prompt += f"\n\nContexto adicional dos documentos:\n{docs_context}"

    prompt += format_media_catalog(media_items)

    if include_transfer and agent.notification_number:
        prompt += format_transfer_block(agent, history)
    return prompt


def build_tools(agent: Agent, media_items: List[AgentMedia]) -> List[dict]:
    tools = []
    if media_items:
        tools.append(SEND_MEDIA_TOOL)
    if agent.notification_number:
        tools.append(NOTIFY_HUMAN_TOOL)
    return tools


def history_from_messages(messages: List[Message]) -> List[dict]:
    return [
        {"role": "user" if message.sender == "user" else "assistant", "content": message.content}
        for message in messages
    ]


def get_conversation_history(db: Session, key: ConversationKey, current_text: Optional[str] = None) -> List[dict]:
    """Chronological chat history; the just-stored current message is not repeated."""
    history = history_from_messages(get_recent_messages(db, key, limit=settings.history_messages))
    if current_text and history and history[-1]["role"] == "user" and history[-1]["content"] == current_text:
        history = history[:-1]
    return history


def build_user_content(content: NormalizedContent) -> UserContent:
    if content.image_base64:
        return [
            {"type": "text", "text": content.text or ""},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{content.image_mime or 'image/jpeg'};base64,{content.image_base64}"},
            },
        ]
    return content.text or ""


def resolve_model(agent: Agent) -> str:
    return agent.openai_model or settings.openai_model


def complete_with_tool_fallback(
    llm: LLMProvider,
    *,
    model: str,
    system_prompt: str,
    history: List[dict],
    user_content: UserContent,
    tools: List[dict],
) -> tuple[LLMResponse, bool]:
    """Run the completion; on failure with tools attached, retry once without them."""
    try:
        response = llm.complete_chat(
            model=model,
            system_prompt=system_prompt,
            history=history,
            user_content=user_content,
            tools=tools or None,
            max_tokens=MAX_COMPLETION_TOKENS,
        )
        return response, bool(tools)
    except LLMProviderError as exc:
        if not tools:
            raise
        logger.warning("Completion with tools failed, retrying without tools", extra={"context": {"error": str(exc)}})

    response = llm.complete_chat(
        model=model,
        system_prompt=system_prompt,
        history=history,
        user_content=user_content,
        tools=None,
        max_tokens=MAX_COMPLETION_TOKENS,
    )
    return response, False


def generate_agent_reply(
    db: Session,
    agent: Agent,
    key: ConversationKey,
    content: NormalizedContent,
    *,
    now: Optional[datetime] = None,
    llm: Optional[LLMProvider] = None,
) -> GeneratedCompletion:
    """Build prompt, history and tools for one turn and run the completion.

    Raises CredentialsNotConfiguredError or LLMProviderError.
    """
    start_time = time.monotonic()
    now = now or datetime.now(timezone.utc)
    llm = llm or get_llm_provider(db, agent)

    history = get_conversation_history(db, key, current_text=content.text)
    media_items = get_media_items(db, agent.id)
    documents = get_documents(db, agent.id)

    system_prompt = build_system_prompt(
        agent, now=now, documents=documents, media_items=media_items, history=history
    )
    tools = build_tools(agent, media_items)

    response, used_tools = complete_with_tool_fallback(
        llm,
        model=resolve_model(agent),
        system_prompt=system_prompt,
        history=history,
        user_content=build_user_content(content),
        tools=tools,
    )
    _log_timing(
        "generate_agent_reply",
        start_time,
        {"agent_id": str(agent.id), "tools": len(tools), "tool_calls": len(response.tool_calls)},
    )
    return GeneratedCompletion(response=response, media_items=media_items, used_tools=used_tools)


def generate_widget_reply(
    db: Session,
    agent: Agent,
    message: str,
    history: List[dict],
    *,
    now: Optional[datetime] = None,
    llm: Optional[LLMProvider] = None,
) -> str:
    """Website widget turn: persona, date and documents only, no tools."""
    now = now or datetime.now(timezone.utc)
    llm = llm or get_llm_provider(db, agent)
    system_prompt = build_system_prompt(
        agent,
        now=now,
        documents=get_documents(db, agent.id),
        media_items=[],
        history=history,
        include_transfer=False,
    )
    response = llm.complete_chat(
        model=resolve_model(agent),
        system_prompt=system_prompt,
        history=history,
        user_content=message,
        max_tokens=MAX_COMPLETION_TOKENS,
    )
    return response.content
