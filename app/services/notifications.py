"""
Notifications — persisted messages plus an optional Slack webhook post.

Slack delivery failure never blocks the caller; a persistence failure does.
"""
import logging
import requests

from app.config import SLACK_WEBHOOK_URL, NOTIFICATION_PRIORITIES
from app.database import get_session
from app.models.notification import Notification

logger = logging.getLogger('services.notifications')

_PRIORITY_EMOJI = {
    'low': ':white_circle:',
    'medium': ':large_blue_circle:',
    'high': ':large_orange_circle:',
    'urgent': ':red_circle:',
}


class NotificationService:

    def __init__(self, session_factory=None, webhook_url=SLACK_WEBHOOK_URL):
        self.session_factory = session_factory or get_session
        self.webhook_url = webhook_url

    def send(self, title: str, message: str = '', priority: str = 'medium', lead_id=None, source: str = None) -> int:
        """Store the notification and fan it out. Returns the notification id."""
        if not title:
            raise ValueError("Notification title is required")
        if priority not in NOTIFICATION_PRIORITIES:
            raise ValueError(f"Unknown priority '{priority}'. Available: {NOTIFICATION_PRIORITIES}")

        session = self.session_factory()
        try:
            notification = Notification(
                lead_id=lead_id,
                priority=priority,
                title=title,
                message=message or '',
                source=source,
            )
            session.add(notification)
            session.commit()
            notification_id = notification.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self._post_to_slack(title, message, priority, lead_id)
        return notification_id

    def _post_to_slack(self, title, message, priority, lead_id):
        if not self.webhook_url:
            return

        try:
            blocks = [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": title[:150]},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Priority:* {_PRIORITY_EMOJI.get(priority, '')} {priority}"},
                        {"type": "mrkdwn", "text": f"*Lead:* {lead_id if lead_id is not None else '—'}"},
                    ]
                },
            ]
            if message:
                blocks.append({
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": message[:2900]},
                })

            requests.post(self.webhook_url, json={"blocks": blocks}, timeout=10)
            logger.info("Notification '%s' posted to Slack", title)

        except Exception:
            logger.error("Failed to post notification '%s' to Slack", title, exc_info=True)
