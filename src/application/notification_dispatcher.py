# src/application/notification_dispatcher.py
"""
Delivers booking notifications recorded in the outbox.

Runs after the business transaction has committed, either as a request
background task or from the dispatch endpoint. Delivery failures stay in
the outbox row (attempts, last_error) and in the logs; they never reach
the caller of the booking operation that produced the event.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os

from sqlalchemy.orm import Session

from src.domain.scheduling import format_local
from src.infrastructure.db.models import OutboxEvent
from src.infrastructure.db.session import get_db_session
from src.infrastructure.notifications.email_sender import (
    EmailMessagePayload,
    NotificationSender,
    get_notification_sender,
)
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.showtime_repository import ShowtimeRepository


logger = logging.getLogger(__name__)

OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
OUTBOX_DISPATCH_BATCH_SIZE = int(os.getenv("OUTBOX_DISPATCH_BATCH_SIZE", "50"))

_SUBJECTS = {
    "BOOKING_CREATED": "Your Cineplus Ticket: {title}",
    "BOOKING_PAYMENT_CONFIRMED": "Payment received for {title}",
    "BOOKING_CANCELLED_BY_USER": "Booking Cancelled: {title}",
    "BOOKING_CANCELLED_BY_SHOWTIME": "Show Cancelled: {title}",
}

_HEADLINES = {
    "BOOKING_CREATED": "Thank you for choosing Cineplus! Your booking details are below.",
    "BOOKING_PAYMENT_CONFIRMED": "We have received your payment. Your ticket is confirmed.",
    "BOOKING_CANCELLED_BY_USER": "Your booking has been cancelled as requested.",
    "BOOKING_CANCELLED_BY_SHOWTIME": (
        "Unfortunately this show has been cancelled by the theater. "
        "Any payment made will be refunded."
    ),
}


class UndeliverableEventError(Exception):
    """The event cannot be turned into a message; retrying will not help."""


@dataclass(frozen=True)
class DispatchResult:
    published: int
    retried: int
    failed: int


def _format_amount(paise: int) -> str:
    return f"Rs. {paise / 100:.2f}"


class NotificationDispatcher:

    def __init__(
        self,
        db: Session,
        sender: NotificationSender | None = None,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
    ):
        self.db = db
        self.sender = sender or get_notification_sender()
        self.max_attempts = max_attempts
        self.outbox_repository = OutboxRepository(db)
        self.catalog_repository = CatalogRepository(db)
        self.showtime_repository = ShowtimeRepository(db)

    def dispatch_pending(self, limit: int = OUTBOX_DISPATCH_BATCH_SIZE) -> DispatchResult:
        published = retried = failed = 0

        for event in self.outbox_repository.list_pending_for_dispatch(limit):
            event.attempts += 1
            try:
                message = self.render(event)
                delivered = self.sender.send(message)
                error = None if delivered else "Notification sender reported failure"
            except UndeliverableEventError as exc:
                delivered, error = False, str(exc)
                event.attempts = max(event.attempts, self.max_attempts)
            except Exception as exc:
                logger.exception(
                    "Notification dispatch failed. event_id=%s event_type=%s",
                    event.id,
                    event.event_type,
                )
                delivered, error = False, str(exc)

            if delivered:
                event.status = "PUBLISHED"
                event.published_at = datetime.now(timezone.utc)
                event.last_error = None
                published += 1
            elif event.attempts >= self.max_attempts:
                event.status = "FAILED"
                event.last_error = error
                failed += 1
                logger.warning(
                    "Outbox event gave up after %s attempts. event_id=%s error=%s",
                    event.attempts,
                    event.id,
                    error,
                )
            else:
                event.last_error = error
                retried += 1

        self.db.flush()
        return DispatchResult(published=published, retried=retried, failed=failed)

    def render(self, event: OutboxEvent) -> EmailMessagePayload:
        if event.event_type not in _SUBJECTS:
            raise UndeliverableEventError(f"No notification for event type {event.event_type}")

        payload = json.loads(event.payload)
        user = self.catalog_repository.get_user(payload.get("user_id", ""))
        if not user or not user.email:
            raise UndeliverableEventError("Recipient not found")

        showtime = self.showtime_repository.get_by_id(payload.get("showtime_id", ""))
        if not showtime:
            raise UndeliverableEventError("Showtime not found")
        theater = self.catalog_repository.get_theater(showtime.theater_id)
        screen = self.catalog_repository.get_screen(showtime.screen_id)

        title = showtime.movie.title
        seats = ", ".join(payload.get("seat_numbers") or []) or "N/A"
        lines = [
            ("Booking ID", payload["booking_id"]),
            ("Movie", title),
            ("Theater", f"{theater.name} ({theater.city})" if theater else "N/A"),
            ("Screen", screen.screen_number if screen else "N/A"),
            ("Date & Time", f"{format_local(showtime.start_time)} (IST)"),
            ("Seats", seats),
            ("Total Amount", _format_amount(payload.get("total_paise", 0))),
        ]
        headline = _HEADLINES[event.event_type]
        greeting = f"Hi {user.name or 'Valued Customer'},"

        html_rows = "".join(f"<p><strong>{label}:</strong> {value}</p>" for label, value in lines)
        html_body = (
            '<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">'
            f"<p>{greeting}</p><p>{headline}</p>{html_rows}"
            "<p>Warm regards,<br/><strong>The Cineplus Team</strong></p></div>"
        )
        text_body = "\n".join(
            [greeting, "", headline, ""]
            + [f"{label}: {value}" for label, value in lines]
            + ["", "The Cineplus Team"]
        )

        return EmailMessagePayload(
            recipient=user.email,
            subject=_SUBJECTS[event.event_type].format(title=title),
            html_body=html_body,
            text_body=text_body,
        )


def dispatch_outbox_in_background() -> None:
    """Entry point for FastAPI background tasks; never raises."""
    try:
        with get_db_session() as db:
            result = NotificationDispatcher(db).dispatch_pending()
        logger.info(
            "Outbox dispatch finished. published=%s retried=%s failed=%s",
            result.published,
            result.retried,
            result.failed,
        )
    except Exception:
        logger.exception("Outbox dispatch run failed")
