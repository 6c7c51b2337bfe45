"""Tests for the notification fan-out coordinator."""
import asyncio
from datetime import datetime, timezone

import pytest

from chatpush.exceptions import InternalError, NotFoundError, UnauthenticatedError
from chatpush.models import ChatEvent, MessageKind, RecipientStatus


def _text_event(text="hi", chat_id="c1", sender_id="u1", event_id="m1"):
    return ChatEvent(
        event_id=event_id, kind=MessageKind.TEXT, sender_id=sender_id,
        body=text, chat_id=chat_id)


@pytest.fixture
def chat(store):
    """Chat c1 between u1 (sender) and u2 (offline, two devices)."""
    store.chats["c1"] = ["u1", "u2"]
    store.add_user("u1", display_name="Alice", tokens=["tokA"])
    store.add_user("u2", display_name="Bob", tokens=["tok1", "tok2"])
    store.presence["u2"] = {"online": False}
    return store


class TestChatMessageFanOut:
    """Scenarios for automatic chat message notifications."""

    def test_offline_recipient_gets_one_bulk_send(self, coordinator, gateway, chat):
        result = asyncio.run(coordinator.fan_out(_text_event()))

        assert len(gateway.sent) == 1
        tokens, payload = gateway.sent[0]
        assert tokens == ["tok1", "tok2"]
        assert payload.notification.body == "hi"
        assert payload.notification.title == "Alice"
        assert payload.data["type"] == "message"
        assert payload.data["chatId"] == "c1"
        assert payload.data["senderId"] == "u1"
        assert result.notified == ["u2"]

    def test_recipient_viewing_chat_is_suppressed(self, coordinator, gateway, chat):
        chat.presence["u2"] = {"online": True, "activeChatId": "c1"}

        result = asyncio.run(coordinator.fan_out(_text_event()))

        assert gateway.sent == []
        assert result.by_status(RecipientStatus.SUPPRESSED)[0].recipient_id == "u2"
        # Suppressed recipients never have their tokens read
        assert "u2" not in chat.user_reads

    def test_online_in_other_chat_is_notified(self, coordinator, gateway, chat):
        chat.presence["u2"] = {"online": True, "activeChatId": "c9"}

        asyncio.run(coordinator.fan_out(_text_event()))

        assert len(gateway.sent) == 1

    def test_offline_with_stale_active_chat_is_notified(self, coordinator, gateway, chat):
        chat.presence["u2"] = {"online": False, "activeChatId": "c1"}

        asyncio.run(coordinator.fan_out(_text_event()))

        assert len(gateway.sent) == 1

    def test_missing_presence_counts_as_offline(self, coordinator, gateway, chat):
        del chat.presence["u2"]

        asyncio.run(coordinator.fan_out(_text_event()))

        assert len(gateway.sent) == 1

    def test_system_message_notifies_nobody(self, coordinator, gateway, chat):
        event = ChatEvent("m1", MessageKind.SYSTEM, "u1", "joined", chat_id="c1")

        result = asyncio.run(coordinator.fan_out(event))

        assert gateway.sent == []
        assert result.skipped == "system_message"
        assert chat.presence_reads == []

    def test_sender_is_never_a_recipient(self, coordinator, gateway, chat):
        chat.chats["c1"] = ["u1", "u2", "u1"]

        result = asyncio.run(coordinator.fan_out(_text_event()))

        assert [o.recipient_id for o in result.outcomes] == ["u2"]
        assert all("tokA" not in tokens for tokens, _ in gateway.sent)

    def test_missing_chat_is_a_silent_no_op(self, coordinator, gateway, store):
        result = asyncio.run(coordinator.fan_out(_text_event(chat_id="gone")))

        assert result.skipped == "chat_not_found"
        assert result.outcomes == []
        assert gateway.sent == []

    def test_recipient_without_tokens_is_skipped(self, coordinator, gateway, chat):
        chat.add_user("u2", display_name="Bob", tokens=[])

        result = asyncio.run(coordinator.fan_out(_text_event()))

        assert gateway.sent == []
        assert result.by_status(RecipientStatus.NO_TOKENS)[0].recipient_id == "u2"
        assert result.by_status(RecipientStatus.FAILED) == []

    def test_unknown_recipient_is_skipped(self, coordinator, gateway, chat):
        chat.chats["c1"] = ["u1", "ghost"]

        result = asyncio.run(coordinator.fan_out(_text_event()))

        assert gateway.sent == []
        assert result.by_status(RecipientStatus.NOT_FOUND)[0].recipient_id == "ghost"

    def test_one_failing_recipient_does_not_block_others(
        self, coordinator, gateway, chat
    ):
        chat.chats["c1"] = ["u1", "u2", "u3", "u4"]
        chat.add_user("u3", tokens=["tok3"])
        chat.add_user("u4", tokens=["tok4"])
        chat.failing_users.add("u3")

        result = asyncio.run(coordinator.fan_out(_text_event()))

        sent_tokens = [tokens for tokens, _ in gateway.sent]
        assert ["tok1", "tok2"] in sent_tokens
        assert ["tok4"] in sent_tokens
        assert len(sent_tokens) == 2
        failed = result.by_status(RecipientStatus.FAILED)
        assert [o.recipient_id for o in failed] == ["u3"]
        assert "read failed" in failed[0].error

    def test_missing_sender_uses_default_name(self, coordinator, gateway, chat):
        del chat.users["u1"]

        asyncio.run(coordinator.fan_out(_text_event()))

        _, payload = gateway.sent[0]
        assert payload.notification.title == "Someone"
        assert payload.data["senderName"] == "Someone"

    def test_sender_lookup_failure_uses_default_name(self, coordinator, gateway, chat):
        chat.failing_users.add("u1")

        asyncio.run(coordinator.fan_out(_text_event()))

        _, payload = gateway.sent[0]
        assert payload.notification.title == "Someone"

    @pytest.mark.parametrize("kind,body", [
        (MessageKind.IMAGE, "📷 Photo"),
        (MessageKind.VIDEO, "🎥 Video"),
        (MessageKind.AUDIO, "🔊 Audio message"),
        (MessageKind.FILE, "📎 File"),
        (None, "New message"),
    ])
    def test_media_bodies(self, coordinator, gateway, chat, kind, body):
        event = ChatEvent("m1", kind, "u1", "ignored", chat_id="c1")

        asyncio.run(coordinator.fan_out(event))

        assert gateway.sent[0][1].notification.body == body

    def test_permanent_error_token_is_removed(self, coordinator, gateway, chat):
        gateway.errors["tok1"] = "messaging/registration-token-not-registered"

        result = asyncio.run(coordinator.fan_out(_text_event()))

        assert chat.removals == [("u2", {"tok1"})]
        assert chat.tokens_of("u2") == ["tok2"]
        outcome = result.outcomes[0]
        assert (outcome.sent, outcome.failed, outcome.removed) == (1, 1, 1)

    def test_recipients_are_processed_concurrently(self, gateway, chat, coordinator):
        chat.chats["c1"] = ["u1", "u2", "u3"]
        chat.add_user("u3", tokens=["tok3"])
        in_flight = []
        peak = []
        original = gateway.send_bulk

        async def slow_send(tokens, payload):
            in_flight.append(tokens)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.remove(tokens)
            return await original(tokens, payload)

        gateway.send_bulk = slow_send

        asyncio.run(coordinator.fan_out(_text_event()))

        assert max(peak) == 2


class TestFriendRequestFanOut:
    """Scenarios for friend request notifications."""

    @pytest.fixture
    def request_event(self, store):
        store.add_user("u1", display_name="Alice", image_url="https://img/a.png")
        store.add_user("u2", display_name="Bob", tokens=["tok1"])
        return ChatEvent.from_friend_request(
            "r1", {"senderId": "u1", "recipientId": "u2"})

    def test_sends_and_logs_notification(
        self, coordinator, gateway, notification_log, request_event
    ):
        asyncio.run(coordinator.fan_out(request_event))

        assert len(gateway.sent) == 1
        _, payload = gateway.sent[0]
        assert payload.data["type"] == "friend_request"
        assert payload.data["requestId"] == "r1"
        assert payload.notification.title == "New Friend Request"
        assert payload.notification.body == "Alice sent you a friend request"

        assert len(notification_log.records) == 1
        record = notification_log.records[0]
        assert record.is_read is False
        assert record.recipient_id == "u2"
        assert record.sender_image_url == "https://img/a.png"

    def test_no_presence_lookup(self, coordinator, store, request_event):
        store.presence["u2"] = {"online": True, "activeChatId": None}

        asyncio.run(coordinator.fan_out(request_event))

        assert store.presence_reads == []

    def test_record_written_without_devices(
        self, coordinator, gateway, store, notification_log, request_event
    ):
        store.add_user("u2", display_name="Bob", tokens=[])

        asyncio.run(coordinator.fan_out(request_event))

        assert gateway.sent == []
        assert len(notification_log.records) == 1

    def test_missing_recipient_writes_nothing(
        self, coordinator, store, notification_log, request_event
    ):
        del store.users["u2"]

        asyncio.run(coordinator.fan_out(request_event))

        assert notification_log.records == []


class TestSendDirect:
    """Tests for the user-initiated chat notification."""

    def test_requires_caller(self, coordinator):
        with pytest.raises(UnauthenticatedError):
            asyncio.run(coordinator.send_direct(None, "u2"))

    def test_unknown_recipient(self, coordinator):
        with pytest.raises(NotFoundError):
            asyncio.run(coordinator.send_direct("u1", "ghost"))

    def test_missing_recipient_id(self, coordinator):
        with pytest.raises(NotFoundError):
            asyncio.run(coordinator.send_direct("u1", None))

    def test_no_tokens(self, coordinator, store):
        store.add_user("u2")

        result = asyncio.run(coordinator.send_direct("u1", "u2"))

        assert result == {"success": False, "error": "No notification tokens found"}

    def test_defaults_and_no_suppression(self, coordinator, gateway, chat):
        chat.presence["u2"] = {"online": True, "activeChatId": "c1"}

        result = asyncio.run(coordinator.send_direct("u1", "u2", chat_id="c1"))

        assert result == {"success": True, "sentTo": 2}
        _, payload = gateway.sent[0]
        assert payload.notification.title == "New Message"
        assert payload.notification.body == "You received a new message"
        assert payload.data["type"] == "chat_message"
        assert payload.data["senderId"] == "u1"

    def test_removed_tokens_reduce_sent_to(self, coordinator, gateway, chat):
        gateway.errors["tok2"] = "messaging/invalid-registration-token"

        result = asyncio.run(coordinator.send_direct(
            "u1", "u2", message="ping", title="Alice", chat_id="c1"))

        assert result == {"success": True, "sentTo": 1}
        assert chat.tokens_of("u2") == ["tok1"]

    def test_store_failure_is_internal(self, coordinator, store):
        store.failing_users.add("u2")

        with pytest.raises(InternalError):
            asyncio.run(coordinator.send_direct("u1", "u2"))


class TestSendTest:
    """Tests for the diagnostic notification."""

    NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_requires_caller(self, coordinator):
        with pytest.raises(UnauthenticatedError):
            asyncio.run(coordinator.send_test("", "u2"))

    def test_user_not_found(self, coordinator):
        result = asyncio.run(coordinator.send_test("u1", "ghost"))
        assert result == {"success": False, "error": "User not found"}

    def test_sends_with_counts(self, coordinator, gateway, chat):
        gateway.errors["tok2"] = "messaging/server-unavailable"

        result = asyncio.run(coordinator.send_test(
            "u1", "u2", with_sound=False, now=self.NOW))

        assert result["success"] is True
        assert result["sentTo"] == 2
        assert result["successCount"] == 1
        assert result["timestamp"] == self.NOW.isoformat()
        _, payload = gateway.sent[0]
        assert payload.data["type"] == "test_notification"
        assert payload.data["timestamp"] == str(int(self.NOW.timestamp() * 1000))
        assert payload.notification.sound is None
        assert chat.removals == []
