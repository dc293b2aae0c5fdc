"""Domain models for users and messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class UserSummary:
    """Public profile fields shown to any authenticated user."""

    username: str
    first_name: str
    last_name: str
    phone: str


@dataclass(frozen=True)
class User:
    """A registered account. The password hash never leaves the store."""

    username: str
    first_name: str
    last_name: str
    phone: str
    joined_at: datetime
    last_login_at: Optional[datetime]


@dataclass(frozen=True)
class Message:
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None


@dataclass(frozen=True)
class MessageDetail:
    """A message joined with both parties' public profiles."""

    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    from_user: UserSummary
    to_user: UserSummary


@dataclass(frozen=True)
class MessageReceipt:
    id: int
    read_at: datetime


@dataclass(frozen=True)
class ReceivedMessage:
    """An inbound message joined with its sender's profile."""

    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    from_user: UserSummary


@dataclass(frozen=True)
class SentMessage:
    """An outbound message joined with its recipient's profile."""

    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    to_user: UserSummary


__all__ = [
    "Message",
    "MessageDetail",
    "MessageReceipt",
    "ReceivedMessage",
    "SentMessage",
    "User",
    "UserSummary",
]
