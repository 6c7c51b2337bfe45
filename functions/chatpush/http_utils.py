"""HTTP helpers for Firebase callable functions.

Callable clients post ``{"data": {...}}`` and expect either
``{"result": ...}`` or ``{"error": {"status", "message"}}`` back.
"""
from flask import jsonify
from typing import Any, Dict, Tuple

from .exceptions import InvalidArgumentError, NotificationError

# Standard CORS headers for API responses
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "3600",
}


def cors_headers() -> Dict[str, str]:
    return {"Access-Control-Allow-Origin": "*"}


def handle_cors_preflight() -> Tuple[str, int, Dict[str, str]]:
    """Handle CORS preflight OPTIONS request."""
    return ("", 204, CORS_HEADERS)


def json_response(
    data: Dict[str, Any],
    status: int = 200
) -> Tuple[Any, int, Dict[str, str]]:
    """Create a JSON response with CORS headers."""
    return (jsonify(data), status, cors_headers())


def callable_data(request) -> Dict[str, Any]:
    """Return the ``data`` object of a callable request body.

    Raises:
        InvalidArgumentError: Body is not a callable request
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or "data" not in body:
        raise InvalidArgumentError("Request body must be {\"data\": ...}")
    data = body["data"]
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgumentError("data must be an object")
    return data


def callable_result(result: Any) -> Tuple[Any, int, Dict[str, str]]:
    """Wrap a handler return value as a callable success response.

    Args:
        result: JSON-serializable value sent back as ``result``

    Returns:
        Tuple of (response, 200, headers)
    """
    return json_response({"result": result})


def callable_error(error: NotificationError) -> Tuple[Any, int, Dict[str, str]]:
    """Render a NotificationError as a callable error response.

    Args:
        error: Error carrying the callable status and message

    Returns:
        Tuple of (response, HTTP status for the error kind, headers)
    """
    return json_response({"error": error.to_dict()}, error.http_status)
