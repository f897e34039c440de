"""Tests for the inbound webhook pipeline."""

import asyncio
import json
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from app.routers.webhook import _handle_webhook_event, reply_timestamp
from app.schemas.webhook import WebhookEvent
from app.services.ai_service import GeneratedCompletion
from app.services.credentials_service import CredentialsNotConfiguredError
from app.services.dedup_service import EventDeduplicator
from app.services.evolution_service import GatewayError
from app.services.inactivity_service import is_stalled
from app.services.llm.base import LLMProviderError, LLMResponse, LLMToolCall
from app.services.policy_service import DEFAULT_OUT_OF_HOURS_MESSAGE, PolicyDecision, PolicyOutcome
from app.services.tenant_service import TenantClients
from app.services.tool_service import HANDOFF_ACK, MEDIA_DEFAULT_ACK
from tests.factories import make_agent, make_media

NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


def _event(text="Oi", event_id="EVT1", from_me=False, event="messages.upsert"):
    return WebhookEvent.model_validate(
        {
            "event": event,
            "instance": "loja-teste",
            "data": {
                "key": {"remoteJid": "5511999990000@s.whatsapp.net", "fromMe": from_me, "id": event_id},
                "pushName": "Maria",
                "message": {"conversation": text},
            },
        }
    )


def _completion(content="", tool_calls=None, media_items=None):
    return GeneratedCompletion(
        response=LLMResponse(content=content, model="gpt-4o", tool_calls=tool_calls or []),
        media_items=media_items or [],
        used_tools=bool(tool_calls),
    )


@pytest.fixture
def gateway():
    return Mock()


@pytest.fixture
def pipeline(db_session, gateway):
    """Patch collaborators of the webhook handler and expose them."""
    agent = make_agent(notification_number="5511888887777")
    clients = TenantClients(db_session, agent, gateway=gateway, llm=Mock())
    with patch("app.routers.webhook.get_agent_by_instance", return_value=agent) as get_agent, patch(
        "app.routers.webhook.evaluate_policies", return_value=PolicyDecision(PolicyOutcome.PROCEED)
    ) as evaluate, patch("app.routers.webhook.generate_agent_reply") as generate, patch(
        "app.routers.webhook.save_message"
    ) as save_message, patch("app.routers.webhook.record_agent_activity") as record_agent_activity, patch(
        "app.routers.webhook.increment_message_count"
    ), patch("app.routers.webhook.alert_error") as alert_error, patch(
        "app.routers.webhook.alert_warning"
    ) as alert_warning, patch(
        "app.services.pacer_service.chunk_delay_seconds", return_value=0
    ), patch("app.services.handoff_service.alert_error"):
        yield SimpleNamespace(
            agent=agent,
            clients=clients,
            db=db_session,
            gateway=gateway,
            get_agent=get_agent,
            evaluate=evaluate,
            generate=generate,
            save_message=save_message,
            record_agent_activity=record_agent_activity,
            alert_error=alert_error,
            alert_warning=alert_warning,
            deduplicator=EventDeduplicator(ttl_seconds=60),
        )


def _run(pipeline, event):
    return asyncio.run(
        _handle_webhook_event(
            event,
            "loja-teste",
            pipeline.db,
            now=NOW,
            deduplicator=pipeline.deduplicator,
            clients=pipeline.clients,
        )
    )


def _sent_texts(gateway):
    return [call.args[2] for call in gateway.send_text.call_args_list]


class TestFiltering:
    def test_non_message_event_ignored(self, pipeline):
        response = _run(pipeline, _event(event="connection.update"))

        assert response.status == "ignored"
        assert response.reason == "unsupported_event"

    def test_duplicate_event_processed_once(self, pipeline):
        pipeline.generate.return_value = _completion("Olá!")

        first = _run(pipeline, _event())
        second = _run(pipeline, _event())

        assert first.reason == "replied"
        assert second.status == "ignored"
        assert second.reason == "duplicate"
        assert pipeline.evaluate.call_count == 1
        assert _sent_texts(pipeline.gateway) == ["Olá!"]

    def test_unknown_instance(self, pipeline):
        pipeline.get_agent.return_value = None

        response = _run(pipeline, _event())

        assert response.reason == "no_agent"
        pipeline.evaluate.assert_not_called()

    def test_empty_content(self, pipeline):
        response = _run(pipeline, _event(text=""))

        assert response.reason == "no_content"
        pipeline.evaluate.assert_not_called()


class TestPolicyOutcomes:
    @pytest.mark.parametrize(
        "outcome",
        [PolicyOutcome.GHOST_MODE, PolicyOutcome.OWNER_MESSAGE_STORED],
    )
    def test_silent_outcomes(self, pipeline, outcome):
        pipeline.evaluate.return_value = PolicyDecision(outcome)

        response = _run(pipeline, _event())

        assert response.status == "ok"
        assert response.reason == outcome.value
        pipeline.generate.assert_not_called()
        pipeline.gateway.send_text.assert_not_called()

    def test_owner_flag_forwarded(self, pipeline):
        pipeline.evaluate.return_value = PolicyDecision(PolicyOutcome.OWNER_MESSAGE_STORED)

        _run(pipeline, _event(from_me=True))

        assert pipeline.evaluate.call_args.kwargs["from_owner"] is True

    def test_takeover_reports_remaining(self, pipeline):
        pipeline.evaluate.return_value = PolicyDecision(PolicyOutcome.TAKEOVER_ACTIVE, remaining_seconds=30)

        response = _run(pipeline, _event())

        assert response.reason == "takeover_active"
        assert response.remaining_seconds == 30
        pipeline.generate.assert_not_called()

    def test_out_of_hours_sends_fixed_reply(self, pipeline):
        pipeline.evaluate.return_value = PolicyDecision(
            PolicyOutcome.OUT_OF_HOURS, reply_text=DEFAULT_OUT_OF_HOURS_MESSAGE
        )

        response = _run(pipeline, _event())

        assert response.reason == "out_of_hours"
        assert response.chunks_sent == 1
        assert _sent_texts(pipeline.gateway) == [DEFAULT_OUT_OF_HOURS_MESSAGE]
        assert pipeline.save_message.call_args.kwargs["message_metadata"] == {"source": "out_of_hours"}
        pipeline.generate.assert_not_called()


class TestReplies:
    def test_text_reply_split_and_recorded(self, pipeline):
        pipeline.generate.return_value = _completion("Olá!\n---\nComo posso ajudar?")

        response = _run(pipeline, _event())

        assert response.reason == "replied"
        assert response.chunks_sent == 2
        assert _sent_texts(pipeline.gateway) == ["Olá!", "Como posso ajudar?"]
        args, kwargs = pipeline.save_message.call_args
        assert args[2] == "agent"
        assert args[3] == "Olá!\n---\nComo posso ajudar?"
        assert kwargs["message_metadata"]["source"] == "model"
        pipeline.record_agent_activity.assert_called_once()

    def test_send_media_reply(self, pipeline):
        catalog = [make_media("PETRO POWER 150 ML")]
        pipeline.generate.return_value = _completion(
            tool_calls=[
                LLMToolCall(id="c1", name="send_media", arguments=json.dumps({"media_names": ["Petro Power 150"]}))
            ],
            media_items=catalog,
        )

        response = _run(pipeline, _event())

        assert response.media_sent == 1
        assert _sent_texts(pipeline.gateway) == [MEDIA_DEFAULT_ACK]
        assert pipeline.gateway.send_media.call_args.kwargs["caption"] == "PETRO POWER 150 ML"
        metadata = pipeline.save_message.call_args.kwargs["message_metadata"]
        assert metadata["source"] == "tool:send_media"
        assert metadata["media"] == ["PETRO POWER 150 ML"]

    def test_handoff_notifies_operator(self, pipeline):
        pipeline.generate.return_value = _completion(
            tool_calls=[
                LLMToolCall(id="c1", name="send_media", arguments=json.dumps({"media_names": ["Kit"]})),
                LLMToolCall(
                    id="c2",
                    name="notify_human",
                    arguments=json.dumps({"reason": "Pedido", "conversation_history": "Cliente: quero"}),
                ),
            ],
            media_items=[make_media("Kit")],
        )

        response = _run(pipeline, _event())

        assert response.media_sent == 0
        pipeline.gateway.send_media.assert_not_called()
        sent = pipeline.gateway.send_text.call_args_list
        assert sent[0].args[1:] == ("5511999990000", HANDOFF_ACK)
        assert sent[1].args[1] == "5511888887777"

    def test_partial_chunk_failure_still_replied(self, pipeline):
        pipeline.generate.return_value = _completion("Um\n---\nDois\n---\nTrês")
        pipeline.gateway.send_text.side_effect = [None, GatewayError("offline")]

        response = _run(pipeline, _event())

        assert response.reason == "replied"
        assert response.chunks_sent == 1
        assert pipeline.gateway.send_text.call_count == 2

    def test_completion_runs_off_the_event_loop_thread(self, pipeline):
        threads = []

        def generate(*args, **kwargs):
            threads.append(threading.get_ident())
            return _completion("Olá!")

        pipeline.generate.side_effect = generate

        response = _run(pipeline, _event())

        assert response.reason == "replied"
        assert threads and threads[0] != threading.get_ident()


class TestReplyTimestamps:
    def test_reply_stamped_after_inbound_message(self, pipeline):
        pipeline.generate.return_value = _completion("Olá!")

        _run(pipeline, _event())

        user_at = pipeline.evaluate.call_args.kwargs["now"]
        agent_at = pipeline.record_agent_activity.call_args.args[2]
        assert agent_at > user_at
        assert pipeline.save_message.call_args.kwargs["now"] == agent_at

    def test_answered_conversation_goes_stale_after_window(self, pipeline):
        pipeline.generate.return_value = _completion("Olá!")

        _run(pipeline, _event())

        user_at = pipeline.evaluate.call_args.kwargs["now"]
        agent_at = pipeline.record_agent_activity.call_args.args[2]
        activity = SimpleNamespace(
            last_user_message_at=user_at, last_agent_message_at=agent_at, inactivity_message_sent=False
        )
        agent = make_agent(inactivity_enabled=True, inactivity_timeout=5)

        assert not is_stalled(activity, agent, user_at + timedelta(minutes=4))
        assert is_stalled(activity, agent, user_at + timedelta(minutes=6))

    def test_out_of_hours_reply_stamped_after_inbound_message(self, pipeline):
        pipeline.evaluate.return_value = PolicyDecision(
            PolicyOutcome.OUT_OF_HOURS, reply_text=DEFAULT_OUT_OF_HOURS_MESSAGE
        )

        _run(pipeline, _event())

        assert pipeline.save_message.call_args.kwargs["now"] > NOW
        assert pipeline.record_agent_activity.call_args.args[2] > NOW

    def test_reply_timestamp_never_ties_future_inbound(self):
        received_at = datetime.now(timezone.utc) + timedelta(hours=1)

        assert reply_timestamp(received_at) == received_at + timedelta(milliseconds=1)


class TestFailures:
    def test_completion_failure_sends_nothing(self, pipeline):
        pipeline.generate.side_effect = LLMProviderError("503", status_code=503)

        response = _run(pipeline, _event())

        assert response.status == "ok"
        assert response.reason == "reply_failed"
        pipeline.gateway.send_text.assert_not_called()
        pipeline.alert_error.assert_called_once()
        pipeline.db.commit.assert_called_once()

    def test_missing_credentials(self, pipeline):
        pipeline.generate.side_effect = CredentialsNotConfiguredError("openai", pipeline.agent.id)

        response = _run(pipeline, _event())

        assert response.status == "error"
        assert response.reason == "credentials_not_configured"
        pipeline.db.rollback.assert_called_once()
        pipeline.alert_warning.assert_called_once()

    def test_unexpected_error_propagates(self, pipeline):
        pipeline.generate.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            _run(pipeline, _event())
        pipeline.db.rollback.assert_called_once()
