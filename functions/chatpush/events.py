"""Decoding of Firestore document-created CloudEvents.

Firestore triggers deliver the new document in the Firestore JSON value
encoding (``{"stringValue": ...}``, ``{"arrayValue": {"values": [...]}}``).
These helpers turn that into plain Python values and then into ChatEvents.
"""
import json
from typing import Any, Dict, List

from .models import ChatEvent


class EventDecodeError(ValueError):
    """The CloudEvent does not describe a document we handle."""


def decode_value(value: Dict[str, Any]) -> Any:
    """Convert one Firestore JSON ``Value`` into a Python value."""
    if not isinstance(value, dict) or not value:
        return None
    kind, raw = next(iter(value.items()))
    if kind == "nullValue":
        return None
    if kind == "integerValue":
        return int(raw)
    if kind == "doubleValue":
        return float(raw)
    if kind == "arrayValue":
        return [decode_value(v) for v in (raw or {}).get("values", [])]
    if kind == "mapValue":
        return decode_fields((raw or {}).get("fields", {}))
    # stringValue, booleanValue, timestampValue, referenceValue, bytesValue
    return raw


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {name: decode_value(value) for name, value in (fields or {}).items()}


def _event_data(cloud_event) -> Dict[str, Any]:
    data = cloud_event.data
    if isinstance(data, (bytes, str)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise EventDecodeError(f"Event data is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise EventDecodeError("Event data is not a document")
    return data


def _document_value(cloud_event) -> Dict[str, Any]:
    value = _event_data(cloud_event).get("value") or {}
    if not isinstance(value, dict):
        raise EventDecodeError("Event value is not a document")
    return value


def document_path(cloud_event) -> List[str]:
    """Path segments below ``documents/`` for the created document."""
    name = _document_value(cloud_event).get("name") or cloud_event.get("subject") or ""
    if not isinstance(name, str):
        raise EventDecodeError(f"Document name is not a string: {name!r}")
    _, sep, path = name.partition("documents/")
    if not sep or not path:
        raise EventDecodeError(f"Cannot find document path in {name!r}")
    return path.split("/")


def document_fields(cloud_event) -> Dict[str, Any]:
    """Decoded fields of the created document.

    Raises:
        EventDecodeError: If any field is not valid Firestore JSON
    """
    try:
        return decode_fields(_document_value(cloud_event).get("fields", {}))
    except EventDecodeError:
        raise
    except (ValueError, TypeError, AttributeError) as e:
        raise EventDecodeError(f"Malformed document fields: {e}") from e


def parse_message_event(cloud_event) -> ChatEvent:
    """ChatEvent for a ``chats/{chatId}/messages/{messageId}`` create."""
    path = document_path(cloud_event)
    if len(path) != 4 or path[0] != "chats" or path[2] != "messages":
        raise EventDecodeError(f"Not a chat message: {'/'.join(path)}")
    return ChatEvent.from_message(path[1], path[3], document_fields(cloud_event))


def parse_friend_request_event(cloud_event) -> ChatEvent:
    """ChatEvent for a ``friendRequests/{requestId}`` create."""
    path = document_path(cloud_event)
    if len(path) != 2 or path[0] != "friendRequests":
        raise EventDecodeError(f"Not a friend request: {'/'.join(path)}")
    event = ChatEvent.from_friend_request(path[1], document_fields(cloud_event))
    if not event.recipient_id:
        raise EventDecodeError("Friend request has no recipientId")
    return event
