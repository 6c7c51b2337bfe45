"""Push notification fan-out for one-to-one chat.

Firestore and FCM adapters are not eagerly imported to avoid loading the
google-cloud and httpx clients in unit tests that only exercise the core.
Import them directly from chatpush.store and chatpush.gateway when needed.
"""
from .coordinator import FanOutCoordinator
from .logging_config import CloudFunctionLogger
from .models import (
    ChatEvent,
    FanOutResult,
    GatewayErrorCode,
    MessageKind,
    NotificationPayload,
    NotificationType,
    RecipientStatus,
)
from .reconciler import TokenReconciler

__all__ = [
    "ChatEvent",
    "CloudFunctionLogger",
    "FanOutCoordinator",
    "FanOutResult",
    "GatewayErrorCode",
    "MessageKind",
    "NotificationPayload",
    "NotificationType",
    "RecipientStatus",
    "TokenReconciler",
]
