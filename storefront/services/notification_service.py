# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Fire-and-forget notifications (email/push live in another service).
    Dispatch goes through Celery; a broker outage is logged and never
    bubbles up into the checkout that triggered it.
    """

    def notify(self, event_type: str, payload: dict) -> None:
        try:
            send_notification_task.delay(event_type, payload)
        except Exception as e:  # notify never raises
            logger.warning(f"Could not dispatch notification {event_type}: {e}")


@celery_app.task(name="storefront.services.notification_service.send_notification_task")
def send_notification_task(event_type: str, payload: dict):
    """
    Worker side of ``notify``; hands the event to the delivery channels.
    """
    logger.info(f"[NOTIFICATION] {event_type}: {payload}")
    return {"event_type": event_type, "status": "sent"}
