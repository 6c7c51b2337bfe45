"""Firestore-backed collaborators.

The synchronous Firestore client is lazily created and cached for the life of
the function instance. Each blocking call runs in a worker thread so
per-recipient tasks on the event loop overlap their reads.
"""
import asyncio
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from google.cloud import firestore

from . import config
from .models import NotificationRecord, PresenceRecord, UserRecord, normalize_tokens, unique_ids

TOKENS_FIELD = "fcmTokens"

_db = None


def get_db():
    """Lazy-load and cache Firestore client."""
    global _db
    if _db is None:
        _db = firestore.Client()
    return _db


def reset_db():
    """Clear the cached Firestore client (for testing)."""
    global _db
    _db = None


async def _get_snapshot(doc_ref):
    return await asyncio.to_thread(doc_ref.get)


class FirestoreStore:
    """Chat, user, presence and device token access over one client.

    Args:
        db: Optional Firestore client (for dependency injection in tests)
    """

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    def _user_ref(self, user_id: str):
        return self.db.collection(config.USERS_COLLECTION).document(user_id)

    async def get_chat_participants(self, chat_id: str) -> Optional[List[str]]:
        """Read the participant ids of a chat.

        Args:
            chat_id: Chat document id

        Returns:
            De-duplicated ``userIds``, or None if the chat does not exist
        """
        snapshot = await _get_snapshot(
            self.db.collection(config.CHATS_COLLECTION).document(chat_id))
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        user_ids = data.get("userIds")
        return unique_ids(user_ids) if isinstance(user_ids, list) else []

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Read a user profile and its device tokens.

        Args:
            user_id: User document id

        Returns:
            UserRecord, or None if the user does not exist
        """
        snapshot = await _get_snapshot(self._user_ref(user_id))
        if not snapshot.exists:
            return None
        return UserRecord.from_dict(user_id, snapshot.to_dict() or {})

    async def get_presence(self, user_id: str) -> Optional[PresenceRecord]:
        """Read the presence document of a user, or None if there is none."""
        snapshot = await _get_snapshot(
            self.db.collection(config.PRESENCE_COLLECTION).document(user_id))
        if not snapshot.exists:
            return None
        return PresenceRecord.from_dict(snapshot.to_dict())

    async def remove_tokens(self, user_id: str, tokens: Iterable[str]) -> None:
        """Member-wise removal; concurrent registrations are preserved."""
        tokens = list(tokens)
        if not tokens:
            return
        await asyncio.to_thread(
            self._user_ref(user_id).update,
            {TOKENS_FIELD: firestore.ArrayRemove(tokens)})

    async def add_token(self, user_id: str, token: str) -> None:
        """Register a device token. Creates the user document if needed.

        Args:
            user_id: Owner of the device
            token: FCM registration token
        """
        await asyncio.to_thread(
            self._user_ref(user_id).set,
            {TOKENS_FIELD: firestore.ArrayUnion([token])},
            merge=True)

    async def iter_token_sets(self) -> AsyncIterator[Tuple[str, Tuple[str, ...]]]:
        """Stream every user that has at least one registered token.

        Only the ``fcmTokens`` field is fetched, and documents are pulled from
        the query stream one at a time.

        Yields:
            ``(user_id, tokens)`` pairs
        """
        stream = iter(
            self.db.collection(config.USERS_COLLECTION)
            .select([TOKENS_FIELD])
            .stream())
        while True:
            doc = await asyncio.to_thread(next, stream, None)
            if doc is None:
                return
            tokens = normalize_tokens((doc.to_dict() or {}).get(TOKENS_FIELD))
            if tokens:
                yield doc.id, tokens


class FirestoreNotificationLog:
    """Append-only ``notifications`` collection for in-app display."""

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    async def append(self, record: NotificationRecord) -> None:
        """Write one unread notification document with a server timestamp."""
        await asyncio.to_thread(
            self.db.collection(config.NOTIFICATIONS_COLLECTION).add,
            record.to_document(firestore.SERVER_TIMESTAMP))
