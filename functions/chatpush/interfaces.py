"""Collaborator contracts the notification core depends on.

The coordinator and reconciler only see these protocols. Firestore and FCM
implementations live in ``store`` and ``gateway``; tests use in-memory fakes.
"""
from typing import AsyncIterator, Iterable, List, Optional, Protocol, Tuple

from .models import (
    NotificationPayload,
    NotificationRecord,
    PresenceRecord,
    SendResult,
    UserRecord,
)


class ChatStore(Protocol):
    async def get_chat_participants(self, chat_id: str) -> Optional[List[str]]:
        """Participant ids of a chat, or None when the chat does not exist."""

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...


class DeviceTokenStore(Protocol):
    async def remove_tokens(self, user_id: str, tokens: Iterable[str]) -> None:
        """Atomically remove exactly ``tokens`` from the user's token set."""

    async def add_token(self, user_id: str, token: str) -> None:
        ...

    def iter_token_sets(self) -> AsyncIterator[Tuple[str, Tuple[str, ...]]]:
        """Yield ``(user_id, tokens)`` for every user with at least one token."""


class PresenceRegistry(Protocol):
    async def get_presence(self, user_id: str) -> Optional[PresenceRecord]:
        ...


class NotificationLog(Protocol):
    async def append(self, record: NotificationRecord) -> None:
        ...


class PushGateway(Protocol):
    async def send_bulk(
        self, tokens: List[str], payload: NotificationPayload
    ) -> List[SendResult]:
        """Send ``payload`` to every token; one result per token, same order."""

    async def send_dry_run(self, token: str) -> SendResult:
        """Validate deliverability of ``token`` without showing anything."""
