"""Firebase Cloud Messaging push service wrapper.

Thin wrapper around firebase-admin for sending push messages to member
devices. Handles retries on transient provider errors and reports rejected
device tokens so the caller can clear them.
"""

import logging
import os
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from clubgame.services.game_errors import PushDeliveryError, PushTokenInvalidError

logger = logging.getLogger(__name__)

DEFAULT_ANDROID_CHANNEL_ID = "epin.nadal.chat.channel"
MAX_SEND_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1.0

# Provider errors worth another attempt
RETRYABLE_ERRORS = (
    exceptions.InternalError,
    exceptions.UnavailableError,
    exceptions.DeadlineExceededError,
    exceptions.ResourceExhaustedError,
)
# Provider errors meaning the device token is dead
INVALID_TOKEN_ERRORS = (
    messaging.UnregisteredError,
    exceptions.InvalidArgumentError,
)


def build_message(
    token: str,
    title: str,
    body: str,
    data: Optional[Dict[str, str]] = None,
    visible: bool = True,
    channel_id: str = DEFAULT_ANDROID_CHANNEL_ID,
    tag: Optional[str] = None,
) -> messaging.Message:
    """
    Build an FCM message.

    visible=True produces a system notification (for users not connected to
    the realtime layer). visible=False produces a data-only message the app
    renders itself; title and body then travel inside ``data``.
    """
    payload = {k: str(v) for k, v in (data or {}).items()}
    if not visible:
        payload.update({"title": title, "body": body})
        return messaging.Message(token=token, data=payload)

    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
        data=payload,
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                title=title,
                body=body,
                channel_id=channel_id,
                sound="default",
                tag=tag,
            ),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=0)),
        ),
    )


class PushService:
    """
    Wrapper around firebase-admin messaging.

    Reads configuration from environment variables:
      - FIREBASE_KEY_LOCATION (service-account JSON)
      - PUSH_ANDROID_CHANNEL_ID

    If no key is configured, operates in dry-run mode (logs messages but
    doesn't send). A ``sender`` callable can be injected in place of
    ``messaging.send``.
    """

    def __init__(
        self,
        sender: Optional[Callable[[messaging.Message], str]] = None,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.key_location = os.getenv("FIREBASE_KEY_LOCATION", "")
        self.channel_id = os.getenv("PUSH_ANDROID_CHANNEL_ID", DEFAULT_ANDROID_CHANNEL_ID)
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.sender = sender
        self.dry_run = False

        if sender is not None:
            return
        if self.key_location:
            app = firebase_admin.initialize_app(
                credentials.Certificate(self.key_location), name="clubgame-push"
            )
            self.sender = lambda message: messaging.send(message, app=app)
            logger.info("Firebase messaging initialized from %s", self.key_location)
        else:
            logger.warning(
                "FIREBASE_KEY_LOCATION not configured. Push service running in dry-run mode."
            )
            self.dry_run = True

    def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
        visible: bool = True,
        tag: Optional[str] = None,
    ) -> str:
        """
        Send one push message, retrying transient failures with linear back-off.

        Returns:
            Provider message id (or a DRY_RUN id)

        Raises:
            PushTokenInvalidError: token is unregistered/invalid; clear it
            PushDeliveryError: any other failure after the last attempt
        """
        if not token:
            raise PushTokenInvalidError(token or "", "Empty device token")

        message = build_message(token, title, body, data, visible, self.channel_id, tag)

        if self.dry_run:
            logger.info("[DRY RUN] Push to %s...: %s", token[:12], title)
            return f"DRY_RUN_{datetime.now(timezone.utc).isoformat()}"

        for attempt in range(1, MAX_SEND_ATTEMPTS + 1):
            try:
                message_id = self.sender(message)
                logger.info("Push sent (attempt %d): %s", attempt, message_id)
                return message_id
            except INVALID_TOKEN_ERRORS as e:
                raise PushTokenInvalidError(token, str(e)) from e
            except RETRYABLE_ERRORS as e:
                if attempt == MAX_SEND_ATTEMPTS:
                    raise PushDeliveryError(f"Push failed after {attempt} attempts: {e}") from e
                logger.warning("Push attempt %d/%d failed: %s", attempt, MAX_SEND_ATTEMPTS, e)
                self.sleep(self.retry_delay * attempt)
            except exceptions.FirebaseError as e:
                raise PushDeliveryError(f"Push failed: {e}") from e
        raise PushDeliveryError("Push failed")

    @property
    def is_configured(self) -> bool:
        return not self.dry_run


# Singleton instance
_push_service: Optional[PushService] = None


def get_push_service() -> PushService:
    """Get or create the singleton PushService instance."""
    global _push_service
    if _push_service is None:
        _push_service = PushService()
    return _push_service
