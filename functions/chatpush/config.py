"""Runtime configuration for the chat notification functions.

All values come from environment variables so the same code can be deployed
to separate Firebase projects without changes.
"""
import os

PROJECT_ID = os.environ.get("GOOGLE_CLOUD_PROJECT", "chat-app")

# FCM HTTP v1 API endpoint
FCM_API_URL = os.environ.get(
    "FCM_API_URL",
    "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send",
)
FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_TIMEOUT_SECONDS = float(os.environ.get("FCM_TIMEOUT_SECONDS", "10"))

# Upper bound on concurrent dry-run sends during the token sweep
SWEEP_CONCURRENCY = int(os.environ.get("SWEEP_CONCURRENCY", "20"))

# Client-side routing constant understood by the Flutter app
CLICK_ACTION = os.environ.get("CLICK_ACTION", "FLUTTER_NOTIFICATION_CLICK")

USERS_COLLECTION = os.environ.get("USERS_COLLECTION", "users")
CHATS_COLLECTION = os.environ.get("CHATS_COLLECTION", "chats")
PRESENCE_COLLECTION = os.environ.get("PRESENCE_COLLECTION", "presence")
NOTIFICATIONS_COLLECTION = os.environ.get(
    "NOTIFICATIONS_COLLECTION", "notifications")

DEFAULT_SENDER_NAME = "Someone"
