"""
Notification Service
Fire-and-forget delivery of replacement workflow events to a pluggable sink
A failing sink never aborts the workflow step that triggered it
"""

import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)

# Replacement workflow events
REPLACEMENT_REQUESTED = "replacement.requested"
REPLACEMENT_PROPOSED = "replacement.proposed"
REPLACEMENT_ACCEPTED = "replacement.accepted"
REPLACEMENT_DECLINED = "replacement.declined"
REPLACEMENT_CANCELLED = "replacement.cancelled"
REPLACEMENT_OPPORTUNITY = "replacement.opportunity"


class NotificationSink(Protocol):
    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: records events in the log only"""

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"📣 {event}: {payload}")


def send_notification(sink: NotificationSink, event: str, payload: Dict[str, Any]) -> dict:
    """
    Deliver one event to the sink, isolating failures

    Args:
        sink: Delivery channel
        event: Event name (e.g. "replacement.accepted")
        payload: Event data; ids and timestamps only

    Returns:
        Dict with sent status and error message
    """
    result = {"event": event, "sent": False, "error": None}

    try:
        sink.notify(event, payload)
        result["sent"] = True
        logger.debug(f"✅ {event} notification sent")
    except Exception as e:
        result["error"] = str(e)
        logger.error(f"❌ Failed to send {event} notification: {e}")

    return result
