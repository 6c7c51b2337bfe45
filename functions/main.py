"""
Chat Notification Cloud Functions

Handles:
1. Push notifications for new chat messages and friend requests (Firestore triggers)
2. User-initiated chat and test notifications (HTTPS callables)
3. Device token registration (HTTPS callable)
4. Daily sweep of undeliverable device tokens (Cloud Scheduler via Pub/Sub)
"""
import asyncio

import functions_framework
import httpx
from flask import Request

from chatpush import config
from chatpush.auth import caller_uid
from chatpush.coordinator import FanOutCoordinator
from chatpush.events import (
    EventDecodeError,
    parse_friend_request_event,
    parse_message_event,
)
from chatpush.exceptions import (
    InternalError,
    InvalidArgumentError,
    NotificationError,
    UnauthenticatedError,
)
from chatpush.gateway import FcmGateway
from chatpush.http_utils import (
    callable_data,
    callable_error,
    callable_result,
    handle_cors_preflight,
    json_response,
)
from chatpush.logging_config import CloudFunctionLogger
from chatpush.reconciler import TokenReconciler
from chatpush.store import FirestoreNotificationLog, FirestoreStore
from chatpush.validation import TokenValidator, is_valid_document_id

logger = CloudFunctionLogger("chat-functions")


def build_coordinator(client: httpx.AsyncClient) -> FanOutCoordinator:
    """Wire the Firestore and FCM collaborators into a coordinator."""
    store = FirestoreStore()
    gateway = FcmGateway(client)
    reconciler = TokenReconciler(store, gateway)
    return FanOutCoordinator(
        store=store,
        presence=store,
        gateway=gateway,
        reconciler=reconciler,
        notification_log=FirestoreNotificationLog(store.db),
    )


def run(action):
    """Run ``action(coordinator)`` to completion on a fresh event loop."""
    async def _main():
        async with httpx.AsyncClient(
            http2=True, timeout=config.FCM_TIMEOUT_SECONDS
        ) as client:
            return await action(build_coordinator(client))

    return asyncio.run(_main())


# ============ Firestore triggers ============

@functions_framework.cloud_event
def on_new_message(cloud_event):
    """Fan out a push for a new ``chats/{chatId}/messages/{messageId}`` document."""
    try:
        event = parse_message_event(cloud_event)
    except EventDecodeError as e:
        logger.warning(
            "Ignoring message event", error=str(e), event_id=cloud_event.get("id"))
        return

    try:
        result = run(lambda coordinator: coordinator.fan_out(event))
        logger.info(
            "Message event processed", event_id=event.event_id,
            notified=len(result.notified), skipped=result.skipped)
    except Exception as e:
        logger.exception("Error sending message notification", error=str(e))


@functions_framework.cloud_event
def on_new_friend_request(cloud_event):
    """Notify the recipient of a new ``friendRequests/{requestId}`` document."""
    try:
        event = parse_friend_request_event(cloud_event)
    except EventDecodeError as e:
        logger.warning(
            "Ignoring friend request event", error=str(e),
            event_id=cloud_event.get("id"))
        return

    try:
        result = run(lambda coordinator: coordinator.fan_out(event))
        logger.info(
            "Friend request processed", event_id=event.event_id,
            notified=len(result.notified), skipped=result.skipped)
    except Exception as e:
        logger.exception("Error sending friend request notification", error=str(e))


# ============ Scheduled sweep ============

@functions_framework.cloud_event
def cleanup_tokens(cloud_event):
    """Remove device tokens that fail a dry-run send. Runs every 24 hours."""
    try:
        result = run(lambda coordinator: coordinator.reconciler.sweep())
        logger.info(
            "Token sweep finished", users_checked=result.users_checked,
            tokens_removed=result.tokens_removed)
    except Exception as e:
        # Partial progress is kept; the next run picks up the rest
        logger.exception("Token sweep failed", error=str(e))


# ============ HTTPS callables ============

def _handle_callable(request: Request, handler):
    if request.method == "OPTIONS":
        return handle_cors_preflight()

    if request.method != "POST":
        return json_response({"error": "Method not allowed"}, 405)

    try:
        data = callable_data(request)
        return callable_result(handler(caller_uid(request), data))
    except NotificationError as e:
        logger.warning("Callable rejected", status=e.status, reason=e.message)
        return callable_error(e)
    except Exception as e:
        logger.exception("Unhandled callable error", error=str(e))
        return callable_error(InternalError("Internal server error"))


def _require_caller(caller):
    if not caller:
        raise UnauthenticatedError(
            "The function must be called while authenticated.")


def _optional_id(data, key):
    value = data.get(key)
    if value is None:
        return None
    if not is_valid_document_id(value):
        raise InvalidArgumentError(f"Invalid {key}")
    return value


@functions_framework.http
def send_chat_notification(request: Request):
    """
    Callable: push a chat notification to one named recipient.

    data: {
        "recipientId": "uid",
        "message": "text" (optional),
        "title": "text" (optional),
        "chatId": "chat id" (optional)
    }
    """
    def handler(caller, data):
        _require_caller(caller)
        recipient_id = _optional_id(data, "recipientId")
        chat_id = _optional_id(data, "chatId")
        return run(lambda coordinator: coordinator.send_direct(
            caller, recipient_id,
            message=data.get("message"),
            title=data.get("title"),
            chat_id=chat_id,
        ))

    return _handle_callable(request, handler)


@functions_framework.http
def send_test_notification(request: Request):
    """
    Callable: push a diagnostic notification to every device of a user.

    data: {"userId": "uid", "withSound": true}
    """
    def handler(caller, data):
        _require_caller(caller)
        user_id = _optional_id(data, "userId")
        with_sound = bool(data.get("withSound", False))
        return run(lambda coordinator: coordinator.send_test(
            caller, user_id, with_sound=with_sound))

    return _handle_callable(request, handler)


@functions_framework.http
def register_token(request: Request):
    """
    Callable: add an FCM token to the caller's device token set.

    data: {"token": "fcm_token_string"}
    """
    def handler(caller, data):
        _require_caller(caller)
        token = data.get("token")
        token = token.strip() if isinstance(token, str) else ""
        if not TokenValidator.is_valid_fcm_token(token):
            raise InvalidArgumentError("Invalid FCM token format")

        asyncio.run(FirestoreStore().add_token(caller, token))
        logger.info("FCM token registered", user_id=caller)
        return {"success": True, "message": "Token registered successfully"}

    return _handle_callable(request, handler)
