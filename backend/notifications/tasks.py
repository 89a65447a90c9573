from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _render(template: str, context: dict) -> str:
    """Render a template relative to the notifications app."""
    return render_to_string(template, context).strip()


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    site_name = getattr(settings, "SITE_NAME", "GearShare")
    context = {
        "site_name": site_name,
        "site_url": frontend_origin,
        "brand_primary_color": getattr(settings, "SITE_PRIMARY_COLOR", "#2F6F4E"),
        "brand_text_color": getattr(settings, "SITE_EMAIL_TEXT_COLOR", "#1F2933"),
        "brand_background_color": getattr(settings, "SITE_EMAIL_BACKGROUND_COLOR", "#F2EFEE"),
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id=None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _prepare_email_bodies(
    subject: str, template: str, context: dict | None
) -> tuple[str, str | None]:
    context_with_brand = _build_email_context(context or {})
    context_with_brand["subject"] = subject
    body = _render(f"email/{template}", context_with_brand)
    html_template = f"email/{template.rsplit('.', 1)[0]}.html"
    try:
        html_body = _render(html_template, context_with_brand)
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id=None,
) -> bool:
    if not to_email:
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    text_body, html_body = _prepare_email_bodies(subject, template, context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    if html_body:
        message.attach_alternative(html_body, "text/html")

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        error_text = str(exc) or exc.__class__.__name__
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": str(booking_id), "user_id": user_id},
        )
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error=error_text,
        )
        return False

    _log_notification(
        "email",
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


def _display_name(user: Optional[User]) -> str:
    if not user:
        return "Unknown"
    full_name = (user.get_full_name() or "").strip()
    if full_name:
        return full_name
    return getattr(user, "username", "") or str(user)


def _load_booking(booking_id):
    from bookings.models import Booking

    try:
        return Booking.objects.select_related("listing", "owner", "renter").get(pk=booking_id)
    except Booking.DoesNotExist:
        logger.warning("notifications: booking %s no longer exists", booking_id)
        return None


@shared_task(queue="emails")
def send_booking_request_email(owner_id: int, booking_id: str):
    """Notify the listing owner that a renter submitted a new booking request."""
    owner = _get_user(owner_id)
    if not owner:
        return
    booking = _load_booking(booking_id)
    if booking is None:
        return

    listing_title = getattr(booking.listing, "title", "your listing")
    frontend_origin = getattr(settings, "FRONTEND_ORIGIN", "").rstrip("/") or ""
    context = {
        "owner_full_name": _display_name(owner),
        "renter_full_name": _display_name(booking.renter),
        "booking": booking,
        "listing_title": listing_title,
        "start_date": booking.start_date,
        "end_date": booking.end_date,
        "cta_url": f"{frontend_origin}/bookings/{booking.id}" if frontend_origin else "",
    }
    _send_email_logged(
        "booking_request",
        to_email=owner.email,
        subject=f"New booking request for {listing_title}",
        template="booking_request_new.txt",
        context=context,
        user_id=owner_id,
        booking_id=booking.id,
    )


STATUS_WORDS = {
    "confirmed": "approved",
    "rejected": "declined",
    "cancelled": "cancelled",
    "active": "picked up",
    "completed": "completed",
    "pending_owner_approval": "updated",
}


@shared_task(queue="emails")
def send_booking_status_email(recipient_id: int, booking_id: str, new_status: str):
    """Notify the other party that a booking changed status."""
    recipient = _get_user(recipient_id)
    if not recipient:
        return
    booking = _load_booking(booking_id)
    if booking is None:
        return

    listing_title = getattr(booking.listing, "title", "your listing")
    status_word = STATUS_WORDS.get(new_status, "updated")
    frontend_origin = getattr(settings, "FRONTEND_ORIGIN", "").rstrip("/") or ""
    context = {
        "recipient_full_name": _display_name(recipient),
        "booking": booking,
        "listing_title": listing_title,
        "status_label": status_word.capitalize(),
        "status_reason": booking.status_reason,
        "start_date": booking.start_date,
        "end_date": booking.end_date,
        "cta_url": f"{frontend_origin}/bookings/{booking.id}" if frontend_origin else "",
    }
    _send_email_logged(
        "booking_status_update",
        to_email=getattr(recipient, "email", None),
        subject=f"Booking for {listing_title} was {status_word}",
        template="booking_status_update.txt",
        context=context,
        user_id=recipient_id,
        booking_id=booking.id,
    )
