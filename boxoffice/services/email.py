import aiosmtplib
from fastapi import BackgroundTasks
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from decimal import Decimal
from html import escape
import logging

from boxoffice.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class EmailService:
    @staticmethod
    async def send_email(to_email: str, subject: str, html_content: str) -> bool:
        """Send an email using SMTP. Never raises; returns whether it was sent."""
        if not settings.smtp_user or not settings.smtp_password:
            logger.warning("SMTP not configured, skipping email send")
            return False

        message = MIMEMultipart("alternative")
        message["From"] = settings.smtp_user
        message["To"] = to_email
        message["Subject"] = subject

        html_part = MIMEText(html_content, "html")
        message.attach(html_part)

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_user,
                password=settings.smtp_password,
                start_tls=True
            )
            return True
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            return False

    @staticmethod
    async def send_ticket_confirmation(
        to_email: str,
        event_title: str,
        ticket_number: str,
        attendee_names: list[str],
        total_amount: Decimal
    ) -> bool:
        """Tell the buyer their tickets are paid for."""
        if not to_email:
            logger.warning(f"No email on file for {ticket_number}, skipping confirmation")
            return False

        reservation_url = f"{settings.frontend_url}/my-tickets"
        attendee_rows = "".join(
            f'<li style="margin: 2px 0;">{escape(name)}</li>' for name in attendee_names
        )

        html_content = f"""
        <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h1 style="color: #4F46E5;">Your tickets are confirmed!</h1>
            <p>Thanks for your purchase. Your booking details:</p>
            <div style="background-color: #F3F4F6; padding: 20px; border-radius: 8px; margin: 20px 0;">
                <p style="margin: 5px 0;"><strong>Event:</strong> {escape(event_title)}</p>
                <p style="margin: 5px 0;"><strong>Booking number:</strong> {ticket_number}</p>
                <p style="margin: 5px 0;"><strong>Tickets:</strong> {len(attendee_names)}</p>
                <ul style="margin: 5px 0;">{attendee_rows}</ul>
                <p style="margin: 5px 0;"><strong>Total:</strong> ${Decimal(total_amount):.2f}</p>
            </div>
            <p style="margin: 30px 0;">
                <a href="{reservation_url}"
                   style="background-color: #4F46E5; color: white; padding: 12px 24px;
                          text-decoration: none; border-radius: 6px;">
                    View My Tickets
                </a>
            </p>
            <p>See you at the show!</p>
        </body>
        </html>
        """

        return await EmailService.send_email(
            to_email,
            f"Tickets confirmed: {event_title} ({ticket_number})",
            html_content
        )


def queue_ticket_confirmation(background_tasks: BackgroundTasks, reservation) -> None:
    """Send the paid-ticket email after the response; failures only get logged."""
    background_tasks.add_task(
        EmailService.send_ticket_confirmation,
        reservation.buyer_email,
        reservation.event.title,
        reservation.ticket_number,
        [f"{a['first_name']} {a['last_name']}" for a in reservation.attendees],
        reservation.total_amount
    )
