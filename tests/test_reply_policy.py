"""Tests for the chat-room auto-reply policy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from src.models.enums import UserRole
from src.models.request import ChatMessage
from src.services.reply_policy import should_respond

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _msg(sender: UserRole, minutes_ago: float | None) -> ChatMessage:
    timestamp = NOW - timedelta(minutes=minutes_ago) if minutes_ago is not None else None
    return ChatMessage(sender=sender, text="...", timestamp=timestamp)


class TestShouldRespond:
    def test_never_replies_to_authorities(self) -> None:
        messages = [_msg(UserRole.CITIZEN, 1)]
        assert should_respond(messages, UserRole.AUTHORITY, NOW) is False

    def test_first_citizen_message(self) -> None:
        assert should_respond([_msg(UserRole.CITIZEN, 0)], UserRole.CITIZEN, NOW) is True

    def test_silent_while_authority_active(self) -> None:
        messages = [_msg(UserRole.CITIZEN, 30), _msg(UserRole.AUTHORITY, 59), _msg(UserRole.CITIZEN, 0)]
        assert should_respond(messages, UserRole.CITIZEN, NOW) is False, (
            "an authority message in the last hour should silence the assistant"
        )

    def test_authority_older_than_an_hour_is_ignored(self) -> None:
        messages = [_msg(UserRole.CITIZEN, 120), _msg(UserRole.AUTHORITY, 61), _msg(UserRole.CITIZEN, 0)]
        assert should_respond(messages, UserRole.CITIZEN, NOW) is True

    def test_bot_cooldown(self) -> None:
        messages = [_msg(UserRole.CITIZEN, 10), _msg(UserRole.CHATBOT, 4), _msg(UserRole.CITIZEN, 0)]
        assert should_respond(messages, UserRole.CITIZEN, NOW) is False, "bot spoke less than 5 min ago"

    def test_bot_cooldown_elapsed(self) -> None:
        messages = [_msg(UserRole.CITIZEN, 10), _msg(UserRole.CHATBOT, 6), _msg(UserRole.CITIZEN, 0)]
        assert should_respond(messages, UserRole.CITIZEN, NOW) is True

    def test_no_bot_message_yet(self) -> None:
        messages = [_msg(UserRole.CITIZEN, 10), _msg(UserRole.CITIZEN, 0)]
        assert should_respond(messages, UserRole.CITIZEN, NOW) is True

    def test_naive_timestamps_treated_as_utc(self) -> None:
        naive_bot = ChatMessage(sender=UserRole.CHATBOT, timestamp=(NOW - timedelta(minutes=1)).replace(tzinfo=None))
        messages = [_msg(UserRole.CITIZEN, 10), naive_bot, _msg(UserRole.CITIZEN, 0)]
        assert should_respond(messages, UserRole.CITIZEN, NOW) is False
