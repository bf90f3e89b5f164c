"""Email notifications for booking changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.html import strip_tags  # type: ignore

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .models import Booking

logger = logging.getLogger(__name__)


def _local(value) -> str:
    return timezone.localtime(value).strftime("%Y-%m-%d %H:%M")


def _greeting(booking: "Booking") -> str:
    customer = booking.customer
    return customer.get_full_name() or customer.get_username()


def send_email_notification(recipient_email: str, subject: str, html_message: str) -> bool:
    """
    Отправка email; ошибки логируются и не пробрасываются.

    Returns:
        bool: True если письмо отправлено успешно
    """
    if not recipient_email:
        logger.warning(f"No recipient for notification '{subject}'")
        return False
    try:
        send_mail(
            subject=subject,
            message=strip_tags(html_message),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            html_message=html_message,
            fail_silently=False,
        )
    except Exception as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)
        return False

    logger.info(f"Email sent successfully to {recipient_email}: {subject}")
    return True


def send_booking_created_email(booking: "Booking") -> bool:
    html_message = f"""
    <html>
    <body>
        <h2>Hi {_greeting(booking)}!</h2>
        <p>Your booking <strong>#{booking.booking_code}</strong> for box
        <strong>{booking.box.label}</strong> is registered.</p>
        <p>Period: {_local(booking.start_at)} - {_local(booking.end_at)}</p>
        <p>Total: {booking.price}</p>
    </body>
    </html>
    """
    return send_email_notification(booking.customer.email, f"Booking #{booking.booking_code} confirmed", html_message)


def send_booking_extended_email(booking: "Booking", additional_days: int, additional_cost: str) -> bool:
    html_message = f"""
    <html>
    <body>
        <h2>Hi {_greeting(booking)}!</h2>
        <p>Booking <strong>#{booking.booking_code}</strong> now ends
        <strong>{_local(booking.end_at)}</strong>.</p>
        <p>Added: {additional_days} day(s), {additional_cost}.</p>
    </body>
    </html>
    """
    return send_email_notification(booking.customer.email, f"Booking #{booking.booking_code} extended", html_message)


def send_booking_reassigned_email(booking: "Booking", previous_box_label: str) -> bool:
    html_message = f"""
    <html>
    <body>
        <h2>Hi {_greeting(booking)}!</h2>
        <p>Your booking <strong>#{booking.booking_code}</strong> has been moved from box
        {previous_box_label} to box <strong>{booking.box.label}</strong> at the same stand.</p>
        <p>The period is unchanged: {_local(booking.start_at)} - {_local(booking.end_at)}.</p>
    </body>
    </html>
    """
    return send_email_notification(booking.customer.email, f"Booking #{booking.booking_code}: new box", html_message)


def send_booking_cancelled_email(booking: "Booking") -> bool:
    html_message = f"""
    <html>
    <body>
        <h2>Hi {_greeting(booking)}!</h2>
        <p>Booking <strong>#{booking.booking_code}</strong> is cancelled.</p>
        <p>Refund: {booking.refund_amount} {booking.currency}.</p>
    </body>
    </html>
    """
    return send_email_notification(booking.customer.email, f"Booking #{booking.booking_code} cancelled", html_message)
