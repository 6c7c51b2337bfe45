"""Typed values passed through the notification pipeline.

Firestore documents arrive as loosely shaped dicts. Everything is parsed into
these types at the boundary so the coordinator, composer and reconciler never
look at raw document fields.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class MessageKind(str, Enum):
    """Kind of the event that triggered a notification."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    SYSTEM = "system"
    FRIEND_REQUEST = "friend_request"

    @classmethod
    def parse(cls, raw: Any) -> Optional["MessageKind"]:
        """Return the matching kind, or None for unrecognised values."""
        try:
            return cls(raw)
        except ValueError:
            return None


class NotificationType(str, Enum):
    """``data.type`` discriminator the client routes on."""

    CHAT_MESSAGE = "chat_message"
    MESSAGE = "message"
    FRIEND_REQUEST = "friend_request"
    TEST_NOTIFICATION = "test_notification"


class GatewayErrorCode(str, Enum):
    """Per-token failure classification reported by the push gateway."""

    INVALID_REGISTRATION_TOKEN = "messaging/invalid-registration-token"
    REGISTRATION_TOKEN_NOT_REGISTERED = (
        "messaging/registration-token-not-registered")
    INVALID_ARGUMENT = "messaging/invalid-argument"
    MESSAGE_RATE_EXCEEDED = "messaging/message-rate-exceeded"
    SERVER_UNAVAILABLE = "messaging/server-unavailable"
    INTERNAL_ERROR = "messaging/internal-error"
    MISMATCHED_CREDENTIAL = "messaging/mismatched-credential"
    THIRD_PARTY_AUTH_ERROR = "messaging/third-party-auth-error"
    UNKNOWN_ERROR = "messaging/unknown-error"

    @classmethod
    def parse(cls, raw: Any) -> "GatewayErrorCode":
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN_ERROR


# Only these mean the token will never work again
PERMANENT_TOKEN_ERRORS = frozenset({
    GatewayErrorCode.INVALID_REGISTRATION_TOKEN,
    GatewayErrorCode.REGISTRATION_TOKEN_NOT_REGISTERED,
})


def normalize_tokens(raw: Any) -> Tuple[str, ...]:
    """Collapse a raw ``fcmTokens`` field into unique, non-empty strings.

    Order of first occurrence is kept so send results line up with what the
    client registered.
    """
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return ()
    seen = []
    for token in raw:
        if isinstance(token, str) and token and token not in seen:
            seen.append(token)
    return tuple(seen)


@dataclass(frozen=True)
class ChatEvent:
    """A new chat message or social event that may need a push.

    ``kind`` is None when the stored type is not one we recognise; such
    messages are still delivered with a generic body.
    """

    event_id: str
    kind: Optional[MessageKind]
    sender_id: str
    body: str = ""
    chat_id: Optional[str] = None
    recipient_id: Optional[str] = None

    @classmethod
    def from_message(
        cls, chat_id: str, message_id: str, data: Dict[str, Any]
    ) -> "ChatEvent":
        """Build an event from a ``chats/{chatId}/messages/{id}`` document."""
        text = data.get("text")
        return cls(
            event_id=message_id,
            kind=MessageKind.parse(data.get("type")),
            sender_id=str(data.get("senderId") or ""),
            body=text if isinstance(text, str) else "",
            chat_id=chat_id,
        )

    @classmethod
    def from_friend_request(
        cls, request_id: str, data: Dict[str, Any]
    ) -> "ChatEvent":
        """Build an event from a ``friendRequests/{id}`` document."""
        return cls(
            event_id=request_id,
            kind=MessageKind.FRIEND_REQUEST,
            sender_id=str(data.get("senderId") or ""),
            recipient_id=str(data.get("recipientId") or "") or None,
        )


@dataclass(frozen=True)
class PresenceRecord:
    online: bool = False
    active_chat_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PresenceRecord":
        """A missing document reads as offline with no active chat."""
        if not data:
            return cls()
        active = data.get("activeChatId")
        return cls(
            online=data.get("online") is True,
            active_chat_id=active if isinstance(active, str) else None,
        )

    def is_viewing(self, chat_id: Optional[str]) -> bool:
        """True when the user has ``chat_id`` open right now."""
        return chat_id is not None and self.online and self.active_chat_id == chat_id


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    device_tokens: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, user_id: str, data: Dict[str, Any]) -> "UserRecord":
        name = data.get("displayName")
        image = data.get("profileImageUrl")
        return cls(
            user_id=user_id,
            display_name=name if isinstance(name, str) and name else None,
            profile_image_url=image if isinstance(image, str) and image else None,
            device_tokens=normalize_tokens(data.get("fcmTokens")),
        )


@dataclass(frozen=True)
class Notification:
    title: str
    body: str
    sound: Optional[str]
    click_action: str


@dataclass(frozen=True)
class NotificationPayload:
    """Gateway-ready notification; ``data`` values are always strings."""

    notification: Notification
    data: Dict[str, str] = field(default_factory=dict)

    @property
    def type(self) -> NotificationType:
        return NotificationType(self.data["type"])


@dataclass(frozen=True)
class GatewayError:
    code: GatewayErrorCode
    message: str = ""

    @property
    def is_permanent(self) -> bool:
        return self.code in PERMANENT_TOKEN_ERRORS


@dataclass(frozen=True)
class SendResult:
    token: str
    success: bool
    error: Optional[GatewayError] = None
    message_id: Optional[str] = None


@dataclass(frozen=True)
class NotificationRecord:
    """In-app notification log entry written for friend requests."""

    recipient_id: str
    sender_id: str
    sender_name: str
    sender_image_url: Optional[str] = None
    type: NotificationType = NotificationType.FRIEND_REQUEST
    is_read: bool = False

    def to_document(self, timestamp: Any) -> Dict[str, Any]:
        return {
            "recipientId": self.recipient_id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "senderImageUrl": self.sender_image_url,
            "timestamp": timestamp,
            "type": self.type.value,
            "isRead": self.is_read,
        }


class RecipientStatus(str, Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    NO_TOKENS = "no_tokens"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class RecipientOutcome:
    recipient_id: str
    status: RecipientStatus
    sent: int = 0
    failed: int = 0
    removed: int = 0
    error: Optional[str] = None


@dataclass
class FanOutResult:
    """What happened to each recipient of one event.

    ``skipped`` names the reason when the event produced no recipients at
    all (system message, missing chat).
    """

    event_id: str
    outcomes: List[RecipientOutcome] = field(default_factory=list)
    skipped: Optional[str] = None

    def by_status(self, status: RecipientStatus) -> List[RecipientOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def notified(self) -> List[str]:
        return [o.recipient_id for o in self.by_status(RecipientStatus.SENT)]


@dataclass
class SweepResult:
    users_checked: int = 0
    tokens_checked: int = 0
    tokens_removed: int = 0
    users_cleaned: int = 0
    completed_at: Optional[datetime] = None


def unique_ids(ids: Iterable[Any]) -> List[str]:
    """Ordered, de-duplicated list of non-empty string ids."""
    result: List[str] = []
    for value in ids:
        if isinstance(value, str) and value and value not in result:
            result.append(value)
    return result
