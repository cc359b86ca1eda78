"""
Notification collaborator client
Hands due appointment reminders to the external notification service, which
owns actual delivery over the reminder's declared method (email, SMS, Discord)
"""

import logging
from typing import Optional

import httpx

from ..config import NOTIFICATION_TIMEOUT_SECONDS, NOTIFICATION_WEBHOOK_URL
from ..models import ScheduledReminder

logger = logging.getLogger(__name__)


def build_reminder_payload(reminder: ScheduledReminder) -> dict:
    return {
        "appointmentId": reminder.appointment_id,
        "customerId": reminder.customer_id,
        "reminderTime": reminder.reminder_time.isoformat(),
        "method": reminder.method,
    }


async def send_reminder(
    reminder: ScheduledReminder,
    webhook_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[bool, Optional[str]]:
    """
    Post one reminder to the notification service

    Args:
        reminder: Pending reminder that is due
        webhook_url: Override for NOTIFICATION_WEBHOOK_URL
        client: Optional shared client (a short-lived one is created otherwise)

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    url = webhook_url or NOTIFICATION_WEBHOOK_URL
    if not url:
        logger.debug("No notification webhook configured")
        return False, "Notification webhook not configured"

    payload = build_reminder_payload(reminder)
    try:
        logger.info(
            f"📨 Sending {reminder.method} reminder for appointment {reminder.appointment_id}"
        )
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.post(
                    url, json=payload, timeout=NOTIFICATION_TIMEOUT_SECONDS
                )
        else:
            response = await client.post(url, json=payload, timeout=NOTIFICATION_TIMEOUT_SECONDS)

        if response.status_code in [200, 201, 202, 204]:
            logger.info(f"✅ Reminder {reminder.id} accepted by notification service")
            return True, None

        error_msg = f"Notification service returned {response.status_code}"
        logger.error(f"❌ {error_msg} for reminder {reminder.id}")
        return False, error_msg

    except httpx.HTTPError as e:
        logger.error(f"❌ Failed to send reminder {reminder.id}: {str(e)}")
        return False, str(e)
