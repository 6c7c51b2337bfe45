"""Push delivery through the FCM HTTP v1 API.

FCM v1 has no multicast endpoint, so a bulk send is one request per token
issued concurrently over a shared ``httpx.AsyncClient``. Errors are mapped to
``GatewayErrorCode`` so the reconciler can tell permanent token failures from
transient ones.
"""
import asyncio
import threading
from typing import Any, Dict, List

import google.auth
import httpx
from google.auth.transport.requests import Request

from . import config
from .logging_config import CloudFunctionLogger
from .models import GatewayError, GatewayErrorCode, NotificationPayload, SendResult

logger = CloudFunctionLogger("fcm-gateway")

# FCM v1 ``errorCode`` / ``status`` values
FCM_ERROR_CODES = {
    "UNREGISTERED": GatewayErrorCode.REGISTRATION_TOKEN_NOT_REGISTERED,
    "QUOTA_EXCEEDED": GatewayErrorCode.MESSAGE_RATE_EXCEEDED,
    "UNAVAILABLE": GatewayErrorCode.SERVER_UNAVAILABLE,
    "INTERNAL": GatewayErrorCode.INTERNAL_ERROR,
    "SENDER_ID_MISMATCH": GatewayErrorCode.MISMATCHED_CREDENTIAL,
    "THIRD_PARTY_AUTH_ERROR": GatewayErrorCode.THIRD_PARTY_AUTH_ERROR,
}

_credentials = None
_credentials_lock = threading.Lock()


def get_access_token() -> str:
    """Get OAuth2 access token for FCM API using application default credentials.

    Credentials are cached and only refreshed once the current token expires.
    """
    global _credentials
    # Called from worker threads; one refresh at a time
    with _credentials_lock:
        if _credentials is None:
            _credentials, _ = google.auth.default(scopes=[config.FCM_SCOPE])
        if not _credentials.valid:
            _credentials.refresh(Request())
        return _credentials.token


def reset_credentials():
    """Clear the cached credentials (for testing)."""
    global _credentials
    _credentials = None


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    """Decoded JSON body if it is an object, else an empty dict."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def classify_error(response: httpx.Response) -> GatewayError:
    """Map an FCM v1 error response to a GatewayError."""
    error = _json_object(response).get("error")
    if not isinstance(error, dict):
        error = {}

    message = error.get("message")
    if not isinstance(message, str) or not message:
        message = f"HTTP {response.status_code}"
    detail_codes = [
        detail.get("errorCode")
        for detail in error.get("details") or []
        if isinstance(detail, dict) and detail.get("errorCode")
    ]
    fcm_code = detail_codes[0] if detail_codes else error.get("status", "")

    if fcm_code == "INVALID_ARGUMENT":
        if "registration token" in message.lower():
            return GatewayError(GatewayErrorCode.INVALID_REGISTRATION_TOKEN, message)
        return GatewayError(GatewayErrorCode.INVALID_ARGUMENT, message)

    return GatewayError(
        FCM_ERROR_CODES.get(fcm_code, GatewayErrorCode.UNKNOWN_ERROR), message)


def build_message(token: str, payload: NotificationPayload) -> Dict[str, Any]:
    """Translate a payload into an FCM v1 ``message`` object."""
    notification = payload.notification
    android_notification = {"click_action": notification.click_action}
    message = {
        "token": token,
        "notification": {
            "title": notification.title,
            "body": notification.body,
        },
        "data": dict(payload.data),
        "android": {"notification": android_notification},
    }
    if notification.sound:
        android_notification["sound"] = notification.sound
        message["apns"] = {"payload": {"aps": {"sound": notification.sound}}}
    return message


def build_dry_run_message(token: str) -> Dict[str, Any]:
    """Minimal data-only message used to probe a token."""
    return {
        "token": token,
        "data": {"test": "true"},
        "android": {"priority": "normal"},
        "apns": {"headers": {"apns-priority": "5"}},
    }


class FcmGateway:
    """PushGateway over FCM HTTP v1.

    Args:
        client: Open ``httpx.AsyncClient``; the caller owns its lifetime
        project_id: Firebase project receiving the messages
        token_provider: Callable returning an OAuth2 bearer token
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        project_id: str = config.PROJECT_ID,
        token_provider=get_access_token,
    ):
        self.client = client
        self.url = config.FCM_API_URL.format(project_id=project_id)
        self.token_provider = token_provider

    async def _headers(self) -> Dict[str, str]:
        access_token = await asyncio.to_thread(self.token_provider)
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json; UTF-8",
        }

    async def send_bulk(
        self, tokens: List[str], payload: NotificationPayload
    ) -> List[SendResult]:
        """Send one payload to every token, one request per token.

        Args:
            tokens: Device registration tokens
            payload: Notification to deliver

        Returns:
            One SendResult per token, in input order. A failed request becomes
            a failed result for its token only.
        """
        if not tokens:
            return []
        headers = await self._headers()
        results = await asyncio.gather(*(
            self._post(token, {"message": build_message(token, payload)}, headers)
            for token in tokens
        ))
        return list(results)

    async def send_dry_run(self, token: str) -> SendResult:
        """Validate a token with a ``validate_only`` send. Nothing is delivered.

        Args:
            token: Device registration token to check

        Returns:
            SendResult for the token
        """
        headers = await self._headers()
        body = {"message": build_dry_run_message(token), "validate_only": True}
        return await self._post(token, body, headers)

    async def _post(
        self, token: str, body: Dict[str, Any], headers: Dict[str, str]
    ) -> SendResult:
        try:
            response = await self.client.post(self.url, headers=headers, json=body)
        except httpx.HTTPError as e:
            logger.warning("FCM request failed", error=str(e))
            return SendResult(
                token, False, GatewayError(GatewayErrorCode.UNKNOWN_ERROR, str(e)))

        if response.status_code == 200:
            message_id = _json_object(response).get("name")
            if not isinstance(message_id, str):
                message_id = None
            return SendResult(token, True, message_id=message_id)

        return SendResult(token, False, classify_error(response))
