"""
Notification dispatch.

Sends an email for a notification rule that matched a new listing, stamps
the rule's last-triggered time and pushes a notification_match event to the
rule owner's real-time channel.
"""

import asyncio
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage

from .broadcast import Broadcaster, user_topic
from .config import config
from .logging import get_logger
from .models.listing import Listing
from .models.notification import NotificationRule
from .repository import TradeRepository

logger = get_logger(__name__)

SUBJECT_DESCRIPTION_LIMIT = 60


def build_subject(listing: Listing) -> str:
    intent = listing.intent.value.upper() if listing.intent else 'LISTING'
    return f'[Trade Intel] {intent} Alert: {listing.short_description(SUBJECT_DESCRIPTION_LIMIT)}'


def build_body(rule: NotificationRule, listing: Listing) -> str:
    lines = [
        'A new listing matched your notification rule.',
        '',
        f'YOUR RULE: {rule.nl_rule}',
        '',
        'LISTING DETAILS:',
        f'  Description: {listing.description}',
        f'  Intent: {listing.intent.value}',
    ]
    if listing.price is not None:
        lines.append(f'  Price: {listing.price} {listing.price_currency or "USD"}')
    if listing.part_number and listing.part_number.strip():
        lines.append(f'  Part Number: {listing.part_number}')
    if listing.sender_name and listing.sender_name.strip():
        lines.append(f'  Seller: {listing.sender_name}')
    lines.append(f'  Confidence: {listing.confidence_score * 100:.0f}%')
    lines.extend(['', '--', 'Trade Intelligence Platform', ''])
    return '\n'.join(lines)


class NotificationDispatcher:
    """
    Delivers rule matches by email and real-time push.

    Configuration via environment variables:
    - SMTP_HOST: Mail server; when unset, email sending is skipped
    - SMTP_PORT: Mail server port (default: 25)
    - MAIL_FROM_ADDRESS: Sender address
    """

    def __init__(
        self,
        repository: TradeRepository,
        broadcaster: Broadcaster | None = None,
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        from_address: str | None = None,
    ):
        self.repository = repository
        self.broadcaster = broadcaster
        self.smtp_host = smtp_host if smtp_host is not None else config.SMTP_HOST
        self.smtp_port = smtp_port or config.SMTP_PORT
        self.from_address = from_address or config.MAIL_FROM_ADDRESS

    async def dispatch(self, rule: NotificationRule, listing: Listing) -> bool:
        """
        Notify the owner of rule about listing.

        Returns:
            True if the notification was delivered (or mail is disabled);
            False if sending the email failed
        """
        recipient = rule.recipient
        logger.info(
            'notification.dispatching',
            rule_id=str(rule.id),
            listing_id=str(listing.id),
            user_id=str(rule.user_id),
            recipient=recipient,
        )

        if self.smtp_host and recipient:
            message = EmailMessage()
            message['From'] = self.from_address
            message['To'] = recipient
            message['Subject'] = build_subject(listing)
            message.set_content(build_body(rule, listing))
            try:
                await asyncio.to_thread(self._send, message)
            except (smtplib.SMTPException, OSError) as e:
                logger.error(
                    'notification.email_failed',
                    rule_id=str(rule.id),
                    listing_id=str(listing.id),
                    recipient=recipient,
                    error=str(e),
                )
                return False
            logger.info('notification.email_sent', rule_id=str(rule.id), recipient=recipient)
        else:
            logger.debug('notification.email_skipped', rule_id=str(rule.id))

        await self.repository.touch_rule_triggered(rule.id, datetime.now(timezone.utc))

        if self.broadcaster is not None:
            await self.broadcaster.publish(
                user_topic(rule.user_id),
                {
                    'type': 'notification_match',
                    'ruleId': str(rule.id),
                    'listingId': str(listing.id),
                    'description': listing.description,
                    'ruleName': rule.nl_rule,
                },
            )
        return True

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as smtp:
            smtp.send_message(message)
