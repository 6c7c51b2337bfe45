"""Shared pytest fixtures for the chat notification functions."""
from typing import Dict, List, Optional, Set, Tuple
from unittest.mock import MagicMock

import pytest

from chatpush.coordinator import FanOutCoordinator
from chatpush.models import (
    GatewayError,
    GatewayErrorCode,
    NotificationPayload,
    NotificationRecord,
    PresenceRecord,
    SendResult,
    UserRecord,
    normalize_tokens,
)
from chatpush.reconciler import TokenReconciler


class FakeStore:
    """In-memory chat store, presence registry and device token store."""

    def __init__(self):
        self.chats: Dict[str, List[str]] = {}
        self.users: Dict[str, dict] = {}
        self.presence: Dict[str, dict] = {}
        self.failing_users: Set[str] = set()
        self.removals: List[Tuple[str, Set[str]]] = []
        self.presence_reads: List[str] = []
        self.user_reads: List[str] = []

    def add_user(self, user_id, display_name=None, tokens=(), image_url=None):
        self.users[user_id] = {
            "displayName": display_name,
            "profileImageUrl": image_url,
            "fcmTokens": list(tokens),
        }

    def tokens_of(self, user_id) -> List[str]:
        return list(self.users[user_id]["fcmTokens"])

    async def get_chat_participants(self, chat_id):
        participants = self.chats.get(chat_id)
        return list(participants) if participants is not None else None

    async def get_user(self, user_id) -> Optional[UserRecord]:
        self.user_reads.append(user_id)
        if user_id in self.failing_users:
            raise RuntimeError(f"read failed for {user_id}")
        data = self.users.get(user_id)
        if data is None:
            return None
        return UserRecord.from_dict(user_id, data)

    async def get_presence(self, user_id):
        self.presence_reads.append(user_id)
        data = self.presence.get(user_id)
        return PresenceRecord.from_dict(data) if data is not None else None

    async def remove_tokens(self, user_id, tokens):
        tokens = set(tokens)
        self.removals.append((user_id, tokens))
        user = self.users[user_id]
        user["fcmTokens"] = [t for t in user["fcmTokens"] if t not in tokens]

    async def add_token(self, user_id, token):
        user = self.users.setdefault(user_id, {"fcmTokens": []})
        if token not in user["fcmTokens"]:
            user["fcmTokens"].append(token)

    async def iter_token_sets(self):
        for user_id, data in list(self.users.items()):
            tokens = normalize_tokens(data.get("fcmTokens"))
            if tokens:
                yield user_id, tokens


class FakeGateway:
    """Records sends; per-token failures are configured by error code."""

    def __init__(self):
        self.sent: List[Tuple[List[str], NotificationPayload]] = []
        self.errors: Dict[str, str] = {}
        self.undeliverable: Set[str] = set()
        self.dry_run_raises: Set[str] = set()
        self.dry_runs: List[str] = []

    async def send_bulk(self, tokens, payload):
        self.sent.append((list(tokens), payload))
        results = []
        for token in tokens:
            code = self.errors.get(token)
            if code is None:
                results.append(SendResult(token, True, message_id=f"msg-{token}"))
            else:
                results.append(SendResult(
                    token, False, GatewayError(GatewayErrorCode.parse(code), code)))
        return results

    async def send_dry_run(self, token):
        self.dry_runs.append(token)
        if token in self.dry_run_raises:
            raise ConnectionError("network unreachable")
        if token in self.undeliverable:
            return SendResult(token, False, GatewayError(
                GatewayErrorCode.REGISTRATION_TOKEN_NOT_REGISTERED))
        return SendResult(token, True)


class FakeNotificationLog:
    def __init__(self):
        self.records: List[NotificationRecord] = []

    async def append(self, record):
        self.records.append(record)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notification_log():
    return FakeNotificationLog()


@pytest.fixture
def reconciler(store, gateway):
    return TokenReconciler(store, gateway, concurrency=4)


@pytest.fixture
def coordinator(store, gateway, reconciler, notification_log):
    return FanOutCoordinator(
        store=store,
        presence=store,
        gateway=gateway,
        reconciler=reconciler,
        notification_log=notification_log,
    )


@pytest.fixture
def mock_firestore():
    """Mock Firestore client."""
    return MagicMock()
