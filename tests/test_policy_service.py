from datetime import datetime, time, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from app.services.conversation_service import ConversationKey
from app.services.normalizer_service import NormalizedContent
from app.services.policy_service import (
    DEFAULT_OUT_OF_HOURS_MESSAGE,
    PolicyOutcome,
    evaluate_policies,
    is_within_operating_hours,
    takeover_timeout_seconds,
)
from tests.factories import make_agent

# 15:00 in Sao Paulo (UTC-3)
NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """Patch every persistence call the gate makes."""
    with patch("app.services.policy_service.save_message") as save_message, patch(
        "app.services.policy_service.record_user_activity"
    ) as record_user_activity, patch(
        "app.services.policy_service.increment_message_count"
    ) as increment_message_count, patch(
        "app.services.policy_service.upsert_takeover"
    ) as upsert_takeover, patch(
        "app.services.policy_service.get_takeover", return_value=None
    ) as get_takeover, patch(
        "app.services.policy_service.delete_takeover"
    ) as delete_takeover:
        yield SimpleNamespace(
            save_message=save_message,
            record_user_activity=record_user_activity,
            increment_message_count=increment_message_count,
            upsert_takeover=upsert_takeover,
            get_takeover=get_takeover,
            delete_takeover=delete_takeover,
        )


def _evaluate(db, agent, *, from_owner=False, now=NOW, text="Oi"):
    key = ConversationKey(agent_id=agent.id, phone_number="5511999990000")
    return evaluate_policies(
        db, agent, key, NormalizedContent(text=text), from_owner=from_owner, now=now, event_id="EVT1"
    )


class TestOwnerMessages:
    def test_owner_message_stored_and_takeover_set(self, db_session, store):
        agent = make_agent()

        decision = _evaluate(db_session, agent, from_owner=True)

        assert decision.outcome == PolicyOutcome.OWNER_MESSAGE_STORED
        assert not decision.should_generate
        args, kwargs = store.save_message.call_args
        assert args[2] == "owner"
        assert kwargs["is_from_owner"] is True
        assert kwargs["message_metadata"]["source"] == "owner"
        store.upsert_takeover.assert_called_once()
        assert store.upsert_takeover.call_args.args[2] == NOW
        store.record_user_activity.assert_not_called()
        store.increment_message_count.assert_called_once()

    def test_owner_message_ignores_ghost_mode(self, db_session, store):
        decision = _evaluate(db_session, make_agent(ghost_mode=True), from_owner=True)

        assert decision.outcome == PolicyOutcome.OWNER_MESSAGE_STORED


class TestUserMessages:
    def test_proceed_persists_user_message(self, db_session, store):
        decision = _evaluate(db_session, make_agent())

        assert decision.outcome == PolicyOutcome.PROCEED
        assert decision.should_generate
        args, kwargs = store.save_message.call_args
        assert args[2] == "user"
        assert args[3] == "Oi"
        assert kwargs["message_metadata"]["event_id"] == "EVT1"
        store.record_user_activity.assert_called_once()
        store.increment_message_count.assert_called_once()

    def test_ghost_mode_stores_but_does_not_reply(self, db_session, store):
        decision = _evaluate(db_session, make_agent(ghost_mode=True))

        assert decision.outcome == PolicyOutcome.GHOST_MODE
        store.save_message.assert_called_once()
        store.get_takeover.assert_not_called()

    def test_out_of_hours_uses_default_message(self, db_session, store):
        agent = make_agent(operating_hours_enabled=True)
        # 20:00 local
        decision = _evaluate(db_session, agent, now=datetime(2026, 3, 10, 23, 0, tzinfo=timezone.utc))

        assert decision.outcome == PolicyOutcome.OUT_OF_HOURS
        assert decision.reply_text == DEFAULT_OUT_OF_HOURS_MESSAGE
        store.save_message.assert_called_once()

    def test_out_of_hours_uses_agent_message(self, db_session, store):
        agent = make_agent(operating_hours_enabled=True, out_of_hours_message="Voltamos amanhã!")

        decision = _evaluate(db_session, agent, now=datetime(2026, 3, 10, 23, 0, tzinfo=timezone.utc))

        assert decision.reply_text == "Voltamos amanhã!"

    def test_ghost_mode_wins_over_out_of_hours(self, db_session, store):
        agent = make_agent(ghost_mode=True, operating_hours_enabled=True)

        decision = _evaluate(db_session, agent, now=datetime(2026, 3, 10, 23, 0, tzinfo=timezone.utc))

        assert decision.outcome == PolicyOutcome.GHOST_MODE

    def test_active_takeover_reports_remaining_seconds(self, db_session, store):
        store.get_takeover.return_value = SimpleNamespace(taken_over_at=NOW - timedelta(seconds=30))

        decision = _evaluate(db_session, make_agent(takeover_timeout=60))

        assert decision.outcome == PolicyOutcome.TAKEOVER_ACTIVE
        assert decision.remaining_seconds == 30
        store.delete_takeover.assert_not_called()

    def test_expired_takeover_is_cleared(self, db_session, store):
        store.get_takeover.return_value = SimpleNamespace(taken_over_at=NOW - timedelta(seconds=65))

        decision = _evaluate(db_session, make_agent(takeover_timeout=60))

        assert decision.outcome == PolicyOutcome.PROCEED
        store.delete_takeover.assert_called_once()

    def test_naive_takeover_timestamp_treated_as_utc(self, db_session, store):
        taken = (NOW - timedelta(seconds=10)).replace(tzinfo=None)
        store.get_takeover.return_value = SimpleNamespace(taken_over_at=taken)

        decision = _evaluate(db_session, make_agent(takeover_timeout=60))

        assert decision.remaining_seconds == 50


class TestOperatingHours:
    def test_disabled_is_always_open(self):
        agent = make_agent(operating_hours_enabled=False)
        assert is_within_operating_hours(agent, datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc))

    @pytest.mark.parametrize(
        "utc_hour,utc_minute,expected",
        [
            (11, 59, False),  # 08:59 local
            (12, 0, True),  # 09:00 local
            (20, 59, True),  # 17:59 local
            (21, 0, False),  # 18:00 local, end is exclusive
        ],
    )
    def test_window_boundaries(self, utc_hour, utc_minute, expected):
        agent = make_agent(operating_hours_enabled=True)
        now = datetime(2026, 3, 10, utc_hour, utc_minute, tzinfo=timezone.utc)
        assert is_within_operating_hours(agent, now) is expected

    def test_overnight_window_wraps(self):
        agent = make_agent(
            operating_hours_enabled=True,
            operating_hours_start=time(22, 0),
            operating_hours_end=time(6, 0),
        )
        # 23:30 and 02:00 local are open, 12:00 local is closed
        assert is_within_operating_hours(agent, datetime(2026, 3, 11, 2, 30, tzinfo=timezone.utc))
        assert is_within_operating_hours(agent, datetime(2026, 3, 11, 5, 0, tzinfo=timezone.utc))
        assert not is_within_operating_hours(agent, datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc))

    def test_string_times_accepted(self):
        agent = make_agent(operating_hours_enabled=True, operating_hours_start="08:30", operating_hours_end="12:00")
        assert is_within_operating_hours(agent, datetime(2026, 3, 10, 11, 30, tzinfo=timezone.utc))

    def test_unknown_timezone_falls_back(self):
        agent = make_agent(operating_hours_enabled=True, operating_hours_timezone="Mars/Olympus")
        assert is_within_operating_hours(agent, datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc))


class TestTakeoverTimeout:
    def test_uses_agent_value(self):
        assert takeover_timeout_seconds(make_agent(takeover_timeout=120)) == 120

    def test_non_positive_falls_back_to_default(self):
        assert takeover_timeout_seconds(make_agent(takeover_timeout=0)) == 60
        assert takeover_timeout_seconds(make_agent(takeover_timeout=None)) == 60
