"""Ownership rules for reading and mutating messages and user records."""
from __future__ import annotations

import logging
from typing import List, Optional

from .database import Database
from .errors import NotFound, Unauthorized, ValidationError
from .models import (
    Message,
    MessageDetail,
    MessageReceipt,
    ReceivedMessage,
    SentMessage,
    User,
    UserSummary,
)

logger = logging.getLogger("messagely.access")


def _deny(requester: str, action: str, target: object) -> Unauthorized:
    logger.warning("Denied %s on %s for %s", action, target, requester)
    return Unauthorized("Unauthorized")


class MessageAccess:
    """Gate message reads and writes on the sender/recipient fields."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def _resolve(self, message_id: int) -> MessageDetail:
        message = self._database.get_message(message_id)
        if message is None:
            raise NotFound(f"No such message: {message_id}")
        return message

    def get_message(self, message_id: int, requester: str) -> MessageDetail:
        message = self._resolve(message_id)
        if requester not in (message.from_user.username, message.to_user.username):
            raise _deny(requester, "read", f"message {message_id}")
        return message

    def create_message(
        self,
        from_username: str,
        to_username: Optional[str],
        body: Optional[str],
    ) -> Message:
        if not to_username or not body:
            raise ValidationError("to_username and body required")
        return self._database.create_message(from_username, to_username, body)

    def mark_read(self, message_id: int, requester: str) -> MessageReceipt:
        message = self._resolve(message_id)
        if requester != message.to_user.username:
            raise _deny(requester, "mark-read", f"message {message_id}")

        receipt = self._database.mark_message_read(message_id)
        if receipt is None:
            raise NotFound(f"No such message: {message_id}")
        return receipt


class UserAccess:
    """Any authenticated caller may list users; everything else is self-only."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def list(self, requester: str) -> List[UserSummary]:
        return self._database.list_users()

    def _require_self(self, username: str, requester: str, action: str) -> None:
        if requester != username:
            raise _deny(requester, action, f"user {username}")

    def get_profile(self, username: str, requester: str) -> User:
        self._require_self(username, requester, "read-profile")
        user = self._database.get_user(username)
        if user is None:
            raise NotFound(f"No such user: {username}")
        return user

    def messages_to(self, username: str, requester: str) -> List[ReceivedMessage]:
        self._require_self(username, requester, "read-inbox")
        return self._database.messages_to(username)

    def messages_from(self, username: str, requester: str) -> List[SentMessage]:
        self._require_self(username, requester, "read-outbox")
        return self._database.messages_from(username)


__all__ = ["MessageAccess", "UserAccess"]
