"""
tasks/notification_tasks.py
Celery task for push delivery of in-app notifications.

The notification row is already stored by services.notification.dispatcher;
this task only talks to FCM and retries with backoff on failure.

Usage:
    from tasks.notification_tasks import send_push_notification
    send_push_notification.delay(fcm_token, title, body, data)
"""

import logging

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _firebase_app():
    import firebase_admin
    from firebase_admin import credentials

    if not firebase_admin._apps:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        firebase_admin.initialize_app(cred, {"projectId": settings.FIREBASE_PROJECT_ID or None})
    return firebase_admin.get_app()


def _send_fcm(fcm_token: str, title: str, body: str, data: dict = None) -> bool:
    """Send FCM push notification. Returns True on success."""
    try:
        from firebase_admin import messaging

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (data or {}).items() if v is not None},
            token=fcm_token,
            android=messaging.AndroidConfig(priority="high"),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(badge=1, sound="default")
                )
            ),
        )
        messaging.send(message, app=_firebase_app())
        return True
    except Exception as e:
        logger.warning(f"FCM send failed: {e}")
        return False


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_push_notification(self, fcm_token: str, title: str, body: str, data: dict = None):
    """Send a single FCM push notification with retry on failure."""
    success = _send_fcm(fcm_token, title, body, data)
    if not success:
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    return True
