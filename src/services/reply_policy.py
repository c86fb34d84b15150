"""Auto-reply policy for report chat rooms.

Decides whether the assistant should post into a report's chat, given
the room history and the role of whoever just wrote.  Authorities take
precedence: once one has spoken recently, the assistant stays quiet.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Final

from src.models.enums import UserRole
from src.models.request import ChatMessage

AUTHORITY_SILENCE: Final[timedelta] = timedelta(hours=1)
BOT_COOLDOWN: Final[timedelta] = timedelta(minutes=5)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def should_respond(
    messages: Sequence[ChatMessage],
    user_role: UserRole,
    now: datetime | None = None,
) -> bool:
    """Return whether the assistant should answer the latest message.

    * Never reply to an authority.
    * Stay silent while an authority has posted within the last hour.
    * Always reply to a citizen's first message.
    * Otherwise reply only if the assistant's last message is older
      than five minutes (or it has not spoken yet).
    """
    if user_role is UserRole.AUTHORITY:
        return False
    now = _aware(now or datetime.now(UTC))

    for msg in messages:
        if (
            msg.sender is UserRole.AUTHORITY
            and msg.timestamp is not None
            and now - _aware(msg.timestamp) < AUTHORITY_SILENCE
        ):
            return False

    citizen_messages = [m for m in messages if m.sender is UserRole.CITIZEN]
    if len(citizen_messages) == 1:
        return True

    bot_times = [_aware(m.timestamp) for m in messages if m.sender is UserRole.CHATBOT and m.timestamp]
    if not bot_times:
        return True
    return now - max(bot_times) > BOT_COOLDOWN
