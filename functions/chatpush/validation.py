"""Input validation for values supplied by calling clients."""
import re
from typing import Any, Optional


class TokenValidator:
    """Validator for FCM registration tokens."""

    FCM_TOKEN_MIN_LENGTH = 100  # Minimum FCM token length
    FCM_TOKEN_MAX_LENGTH = 300  # Maximum FCM token length with safety margin
    FCM_TOKEN_PATTERN = re.compile(r'^[A-Za-z0-9_:\-]+$')

    @classmethod
    def is_valid_fcm_token(cls, token: Optional[str]) -> bool:
        """Validate FCM token format.

        FCM tokens are typically 152-163 characters containing alphanumeric
        characters, underscores, colons, and hyphens.
        """
        if not token or not isinstance(token, str):
            return False
        if not cls.FCM_TOKEN_MIN_LENGTH <= len(token) <= cls.FCM_TOKEN_MAX_LENGTH:
            return False
        return bool(cls.FCM_TOKEN_PATTERN.match(token))


# Firestore limit on document id size
MAX_DOCUMENT_ID_BYTES = 1500


def is_valid_document_id(value: Any) -> bool:
    """True if ``value`` can be used as a single Firestore document id."""
    if not value or not isinstance(value, str):
        return False
    if "/" in value or value in (".", ".."):
        return False
    if value.startswith("__") and value.endswith("__"):
        return False
    return len(value.encode("utf-8")) <= MAX_DOCUMENT_ID_BYTES
