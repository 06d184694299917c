import asyncio
import logging

import resend

from shiftcover.config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from shiftcover.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


async def send_email(to: str, subject: str, html: str) -> None:
    """
    Send an email through Resend. Without an API key the message is only
    logged, which is what local development relies on.
    """
    if not RESEND_API_KEY:
        logger.warning(f"RESEND_API_KEY not set, not sending '{subject}' to {to}")
        logger.info(f"email to {to}: {html}")
        return

    payload = {
        "from": EMAIL_FROM_ADDRESS,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    try:
        response = await asyncio.to_thread(resend.Emails.send, payload)
    except Exception as e:
        logger.error(f"email send error to {to}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {e}") from e
    logger.info(f"email '{subject}' sent to {to}: {response}")


async def send_invite_email(to: str, link: str) -> None:
    await send_email(
        to,
        "You're invited to Daycare Scheduling",
        f'<p>You have been invited. <a href="{link}">Accept the invite</a> '
        "and set your password.</p>",
    )


async def send_magic_link_email(to: str, link: str) -> None:
    await send_email(
        to,
        "Your sign-in link",
        f'<p><a href="{link}">Sign in to Daycare Scheduling</a>. '
        "The link can be used once.</p>",
    )


async def send_password_reset_email(to: str, link: str) -> None:
    await send_email(
        to,
        "Reset your password",
        f'<p><a href="{link}">Choose a new password</a>. '
        "If you did not ask for this, ignore this email.</p>",
    )
