"""Scheduled notification trigger."""

import logging
from datetime import date

from freetser import Response
from freetser.server import StorageQueue

from memberdir.birthdays import InvalidDate
from memberdir.notify import NotificationConfigError, run_birthday_notifications
from memberdir.settings import Settings

logger = logging.getLogger("memberdir.handlers.cron")


def birthday_notifications_handler(
    store_queue: StorageQueue, settings: Settings, now: date
) -> Response:
    """Handle /cron/birthday_notifications/ - email today's and upcoming birthdays."""
    try:
        result = run_birthday_notifications(store_queue, settings, now)
    except NotificationConfigError as e:
        logger.error(f"birthday_notifications: {e}")
        return Response.json({"error": str(e)}, status_code=500)
    except InvalidDate as e:
        logger.error(f"birthday_notifications: Invalid member date: {e}")
        return Response.json(
            {"error": "Invalid member data", "details": str(e)}, status_code=500
        )
    except Exception as e:
        logger.error(f"birthday_notifications: Failed to send email: {e}")
        return Response.json(
            {"error": "Failed to send email", "details": str(e)}, status_code=500
        )

    logger.info(f"birthday_notifications: {result.message}")
    return Response.json(result.to_dict())
