"""Notification fan-out.

One ``FanOutCoordinator`` call handles one event: resolve who should hear
about it, drop anyone currently looking at the chat, then compose, send and
reconcile per recipient. Recipients run as independent tasks; a failure in
one never reaches the others or the caller.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import composer, config
from .exceptions import (
    InternalError,
    NotFoundError,
    NotificationError,
    UnauthenticatedError,
)
from .interfaces import ChatStore, NotificationLog, PresenceRegistry, PushGateway
from .logging_config import CloudFunctionLogger
from .models import (
    ChatEvent,
    FanOutResult,
    MessageKind,
    NotificationPayload,
    NotificationRecord,
    PresenceRecord,
    RecipientOutcome,
    RecipientStatus,
    UserRecord,
    unique_ids,
)
from .reconciler import TokenReconciler

logger = CloudFunctionLogger("chat-notifier")

NO_TOKENS_ERROR = "No notification tokens found"


class FanOutCoordinator:
    def __init__(
        self,
        store: ChatStore,
        presence: PresenceRegistry,
        gateway: PushGateway,
        reconciler: TokenReconciler,
        notification_log: NotificationLog,
        log: Optional[CloudFunctionLogger] = None,
    ):
        self.store = store
        self.presence = presence
        self.gateway = gateway
        self.reconciler = reconciler
        self.notification_log = notification_log
        self.log = log or logger

    # Trigger-driven path

    async def fan_out(self, event: ChatEvent) -> FanOutResult:
        """Notify every eligible recipient of ``event``.

        Never raises. Soft no-ops (system message, missing chat) are reported
        through ``FanOutResult.skipped``; per-recipient failures show up as
        ``RecipientStatus.FAILED`` outcomes.
        """
        log = self.log.bind(
            event_id=event.event_id,
            kind=event.kind.value if event.kind else None,
            chat_id=event.chat_id)
        result = FanOutResult(event_id=event.event_id)

        if event.kind == MessageKind.SYSTEM:
            log.info("System message, no notification")
            result.skipped = "system_message"
            return result

        try:
            recipients = await self._resolve_recipients(event)
        except Exception:
            log.exception("Failed to resolve recipients")
            result.skipped = "recipient_lookup_failed"
            return result

        if recipients is None:
            log.warning("Chat not found, skipping notification")
            result.skipped = "chat_not_found"
            return result
        if not recipients:
            log.info("No recipients for event")
            result.skipped = "no_recipients"
            return result

        sender = await self._lookup_sender(event.sender_id, log)

        outcomes = await asyncio.gather(*(
            self._notify_recipient(event, recipient_id, sender, log)
            for recipient_id in recipients
        ))
        result.outcomes = list(outcomes)

        log.info(
            "Fan-out complete",
            recipients=len(recipients),
            notified=len(result.notified),
            suppressed=len(result.by_status(RecipientStatus.SUPPRESSED)),
            failed=len(result.by_status(RecipientStatus.FAILED)))
        return result

    async def _resolve_recipients(self, event: ChatEvent) -> Optional[List[str]]:
        """Recipient ids for ``event``; None when the chat is gone."""
        if event.kind == MessageKind.FRIEND_REQUEST:
            candidates = [event.recipient_id]
        else:
            if not event.chat_id:
                return None
            participants = await self.store.get_chat_participants(event.chat_id)
            if participants is None:
                return None
            candidates = participants

        return [
            user_id for user_id in unique_ids(candidates)
            if user_id != event.sender_id
        ]

    async def _lookup_sender(
        self, sender_id: str, log: CloudFunctionLogger
    ) -> Optional[UserRecord]:
        if not sender_id:
            return None
        try:
            sender = await self.store.get_user(sender_id)
        except Exception as e:
            log.warning(
                "Sender lookup failed, using default name",
                sender_id=sender_id, error=str(e))
            return None
        if sender is None:
            log.warning("Sender not found, using default name", sender_id=sender_id)
        return sender

    async def _notify_recipient(
        self,
        event: ChatEvent,
        recipient_id: str,
        sender: Optional[UserRecord],
        log: CloudFunctionLogger,
    ) -> RecipientOutcome:
        log = log.bind(recipient_id=recipient_id)
        try:
            return await self._deliver(event, recipient_id, sender, log)
        except Exception as e:
            log.exception("Recipient notification failed", error=str(e))
            return RecipientOutcome(
                recipient_id, RecipientStatus.FAILED, error=str(e))

    async def _deliver(
        self,
        event: ChatEvent,
        recipient_id: str,
        sender: Optional[UserRecord],
        log: CloudFunctionLogger,
    ) -> RecipientOutcome:
        if event.chat_id is not None:
            presence = await self.presence.get_presence(recipient_id) or PresenceRecord()
            if presence.is_viewing(event.chat_id):
                log.info("User is active in chat, skipping notification")
                return RecipientOutcome(recipient_id, RecipientStatus.SUPPRESSED)

        recipient = await self.store.get_user(recipient_id)
        if recipient is None:
            log.info("Recipient not found")
            return RecipientOutcome(recipient_id, RecipientStatus.NOT_FOUND)

        sender_name = (sender.display_name if sender else None) or config.DEFAULT_SENDER_NAME

        if event.kind == MessageKind.FRIEND_REQUEST:
            outcome = await self._push(
                recipient, lambda: composer.friend_request_payload(event, sender_name), log)
            await self.notification_log.append(NotificationRecord(
                recipient_id=recipient_id,
                sender_id=event.sender_id,
                sender_name=sender_name,
                sender_image_url=sender.profile_image_url if sender else None,
            ))
            return outcome

        return await self._push(
            recipient, lambda: composer.chat_message_payload(event, sender_name), log)

    async def _push(self, recipient: UserRecord, build_payload, log) -> RecipientOutcome:
        tokens = list(recipient.device_tokens)
        if not tokens:
            log.info("No tokens for recipient")
            return RecipientOutcome(recipient.user_id, RecipientStatus.NO_TOKENS)

        payload = build_payload()
        results = await self.gateway.send_bulk(tokens, payload)
        removed = await self.reconciler.reconcile(recipient.user_id, tokens, results)

        sent = sum(1 for r in results if r.success)
        log.info(
            "Notification sent", type=payload.data["type"],
            devices=len(tokens), success=sent, removed=len(removed))
        return RecipientOutcome(
            recipient.user_id, RecipientStatus.SENT,
            sent=sent, failed=len(results) - sent, removed=len(removed))

    # Caller-driven paths

    async def send_direct(
        self,
        caller_id: Optional[str],
        recipient_id: Optional[str],
        message: Optional[str] = None,
        title: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Notify one named recipient on behalf of an end user.

        No presence suppression: the caller asked for this push explicitly.

        Raises:
            UnauthenticatedError: No caller identity
            NotFoundError: Recipient does not exist
            InternalError: Any other failure
        """
        if not caller_id:
            raise UnauthenticatedError(
                "The function must be called while authenticated.")

        try:
            recipient = await self.store.get_user(recipient_id) if recipient_id else None
            if recipient is None:
                raise NotFoundError("The specified recipient does not exist.")

            tokens = list(recipient.device_tokens)
            if not tokens:
                self.log.info("No tokens available for user", recipient_id=recipient_id)
                return {"success": False, "error": NO_TOKENS_ERROR}

            payload = composer.direct_payload(caller_id, chat_id, title, message)
            removed = await self._send_and_reconcile(recipient, tokens, payload)
            return {"success": True, "sentTo": len(tokens) - len(removed)}
        except NotificationError:
            raise
        except Exception as e:
            self.log.exception("Error sending notification", recipient_id=recipient_id)
            raise InternalError(str(e)) from e

    async def send_test(
        self,
        caller_id: Optional[str],
        user_id: Optional[str],
        with_sound: bool = True,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Send a diagnostic notification to every device of ``user_id``."""
        if not caller_id:
            raise UnauthenticatedError(
                "The function must be called while authenticated.")

        now = now or datetime.now(timezone.utc)
        try:
            user = await self.store.get_user(user_id) if user_id else None
            if user is None:
                self.log.info("User not found", user_id=user_id)
                return {"success": False, "error": "User not found"}

            tokens = list(user.device_tokens)
            if not tokens:
                self.log.info("No tokens available for user", user_id=user_id)
                return {"success": False, "error": NO_TOKENS_ERROR}

            payload = composer.diagnostic_payload(
                int(now.timestamp() * 1000), with_sound=with_sound)
            results = await self.gateway.send_bulk(tokens, payload)
            await self.reconciler.reconcile(user.user_id, tokens, results)

            success_count = sum(1 for r in results if r.success)
            self.log.info(
                "Test notification sent", user_id=user_id,
                devices=len(tokens), success=success_count)
            return {
                "success": True,
                "sentTo": len(tokens),
                "successCount": success_count,
                "timestamp": now.isoformat(),
            }
        except NotificationError:
            raise
        except Exception as e:
            self.log.exception("Error sending test notification", user_id=user_id)
            raise InternalError(str(e)) from e

    async def _send_and_reconcile(
        self, user: UserRecord, tokens: List[str], payload: NotificationPayload
    ) -> List[str]:
        results = await self.gateway.send_bulk(tokens, payload)
        for result in results:
            if result.error is not None:
                self.log.error(
                    "FCM error", user_id=user.user_id,
                    code=result.error.code.value, reason=result.error.message)
        return await self.reconciler.reconcile(user.user_id, tokens, results)
