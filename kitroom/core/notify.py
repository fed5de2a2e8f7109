import httpx
import logging
from kitroom.configs import NOTIFY_URL, NOTIFY_TIMEOUT, KITROOM_HTTP_HEADERS

logger = logging.getLogger(__name__)


class Notifier:
    """Hands lending events to the mail relay.

    Delivery is fire-and-forget: a failure is logged and reported as False,
    it never propagates into the operation that produced the event.
    """

    EVENTS = {
        'request_created',
        'request_approved',
        'request_rejected',
        'penalty_assigned',
        'loan_due_reminder',
        'fault_reported',
    }
    HTTP_HEADERS = KITROOM_HTTP_HEADERS

    def __init__(self, url=NOTIFY_URL, timeout=NOTIFY_TIMEOUT):
        self.url = url
        self.timeout = timeout

    def notify(self, event: str, payload: dict) -> bool:
        if event not in self.EVENTS:
            logger.warning(f"Unknown notification event '{event}' dropped")
            return False
        if not self.url:
            logger.info(f"[notify] {event}: {payload}")
            return False
        try:
            with httpx.Client() as client:
                response = client.post(
                    self.url,
                    json={"event": event, "payload": payload},
                    headers=self.HTTP_HEADERS,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return True
        except httpx.HTTPError as e:
            logger.error(f"Error delivering '{event}' notification: {e}")
            return False
