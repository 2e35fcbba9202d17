from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.application.availability import SeatAvailabilityResolver
from src.domain.exceptions import (
    BookingEngineError,
    ConflictError,
    InvalidSeatSelectionError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    PaymentVerificationError,
    SeatsUnavailableError,
    ValidationError,
)
from src.domain.offer_engine import Cart, OfferEvaluation, OfferRule, evaluate_best_offer
from src.domain.scheduling import to_utc, utc_now
from src.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStatus,
    ShowtimeStatus,
)
from src.infrastructure.db.models import Booking, Offer
from src.infrastructure.payments.gateway import PaymentGateway, get_payment_gateway
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.repositories.showtime_repository import ShowtimeRepository


logger = logging.getLogger(__name__)

CANCELLATION_CUTOFF = timedelta(hours=2)


@dataclass(frozen=True)
class UserBookingView:
    booking_id: str
    created_at: datetime
    status: BookingStatus
    payment_status: PaymentStatus
    subtotal_paise: int
    discount_paise: int
    total_paise: int
    start_time: datetime
    movie_title: str
    theater_name: str
    theater_city: str
    screen_number: str
    seat_numbers: list[str]


def offer_rule_from_model(offer: Offer) -> OfferRule:
    return OfferRule(
        id=offer.id,
        title=offer.title,
        type=offer.type,
        discount_type=offer.discount_type,
        discount_value=offer.discount_value,
        scope=offer.scope,
        min_tickets=offer.min_tickets,
        code=offer.code,
        movie_id=offer.movie_id,
        is_active=offer.is_active,
        starts_at=to_utc(offer.starts_at) if offer.starts_at else None,
        ends_at=to_utc(offer.ends_at) if offer.ends_at else None,
    )


def load_offer_rules(db: Session) -> list[OfferRule]:
    return [offer_rule_from_model(offer) for offer in CatalogRepository(db).list_active_offers()]


def _booking_payload(booking: Booking, seat_numbers: list[str]) -> dict:
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "showtime_id": booking.showtime_id,
        "seat_numbers": seat_numbers,
        "total_paise": booking.total_paise,
        "status": booking.status.value,
        "payment_status": booking.payment_status.value,
    }


class BookingService:
    """Application service coordinating booking workflow."""

    def __init__(self, db: Session, payment_gateway: PaymentGateway | None = None):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.seat_repository = SeatRepository(db)
        self.showtime_repository = ShowtimeRepository(db)
        self.catalog_repository = CatalogRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.availability = SeatAvailabilityResolver(db)
        self.payment_gateway = payment_gateway or get_payment_gateway()

    def create_booking(
        self,
        user_id: str,
        showtime_id: str,
        seat_ids: list[str],
        now: datetime | None = None,
    ) -> Booking:
        now = now or utc_now()

        # Held until commit: concurrent claims on this showtime queue here.
        showtime = self.showtime_repository.get_by_id(showtime_id, for_update=True)
        if not showtime:
            raise NotFoundError("Showtime not found")
        if showtime.status != ShowtimeStatus.SCHEDULED:
            raise InvalidStateError(
                f"Cannot book for a showtime that is {showtime.status.value}."
            )
        if to_utc(showtime.start_time) <= now:
            raise InvalidStateError("Cannot book for a showtime that has already started.")

        if not self.catalog_repository.get_user(user_id):
            raise NotFoundError("User not found")

        self.seat_repository.lock_screen(showtime.screen_id, shared=True)
        requested = self._normalise_seat_ids(seat_ids)

        held = self.availability.resolve_held_seats(showtime_id)
        already_held = [seat_id for seat_id in requested if seat_id in held]
        if already_held:
            numbers = self.seat_repository.get_seat_numbers(already_held)
            logger.info(
                "Seat conflict on create. showtime_id=%s seats=%s",
                showtime_id,
                already_held,
            )
            raise SeatsUnavailableError([numbers.get(seat_id, seat_id) for seat_id in already_held])

        seats = self.seat_repository.get_seats_by_ids(showtime.screen_id, requested)
        if len(seats) != len(requested):
            raise InvalidSeatSelectionError(
                "Invalid seat selection or mismatch. Please refresh and try again."
            )

        seats_by_id = {seat.id: seat for seat in seats}
        ordered = [seats_by_id[seat_id] for seat_id in requested]
        seat_numbers = {seat.id: seat.seat_number for seat in ordered}

        try:
            booking = self.booking_repository.create_booking(
                user_id=user_id,
                showtime_id=showtime_id,
                seats=ordered,
            )
            self.db.flush()
        except IntegrityError as exc:
            # Lost the race on uq_seat_hold_showtime_seat.
            self.db.rollback()
            held = self.availability.resolve_held_seats(showtime_id)
            lost = [seat_id for seat_id in requested if seat_id in held] or requested
            logger.warning(
                "Seat hold insert rejected. showtime_id=%s seats=%s",
                showtime_id,
                lost,
            )
            raise SeatsUnavailableError([seat_numbers[seat_id] for seat_id in lost]) from exc

        # A layout replacement may have committed between the seat read and the holds.
        if len(self.seat_repository.get_seats_by_ids(showtime.screen_id, requested)) != len(requested):
            self.db.rollback()
            logger.warning(
                "Seat layout changed during booking. showtime_id=%s screen_id=%s",
                showtime_id,
                showtime.screen_id,
            )
            raise InvalidSeatSelectionError(
                "Invalid seat selection or mismatch. Please refresh and try again."
            )

        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_CREATED",
            payload=_booking_payload(booking, [seat_numbers[seat_id] for seat_id in requested]),
            dedupe_key=f"booking:{booking.id}:created",
        )
        self.db.flush()

        logger.info(
            "Booking created. booking_id=%s showtime_id=%s seats=%s total_paise=%s",
            booking.id,
            showtime_id,
            len(ordered),
            booking.total_paise,
        )
        return booking

    def confirm_payment(
        self,
        booking_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking not found")

        if not self.payment_gateway.verify_signature(order_id, payment_id, signature):
            raise PaymentVerificationError("Invalid payment signature.")

        existing = self.booking_repository.get_payment_by_transaction_id(payment_id)
        if existing:
            if existing.booking_id == booking.id:
                # Gateway re-delivery of a payment we already recorded.
                return booking
            raise ConflictError("Payment already recorded for another booking.")

        if booking.payment_status == PaymentStatus.PAID:
            raise ConflictError("Booking is already paid.")

        self._transition(booking, BookingStatus.ACTIVE)
        payment = self.booking_repository.add_payment(
            booking=booking,
            order_id=order_id,
            transaction_id=payment_id,
        )
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(
                "Duplicate payment delivery detected for this payment."
            ) from exc

        booking.payment_status = PaymentStatus.PAID
        booking.payment_id = payment.id
        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_PAYMENT_CONFIRMED",
            payload={
                **_booking_payload(booking, [seat.seat_number for seat in booking.seats]),
                "payment_id": payment_id,
                "order_id": order_id,
            },
            dedupe_key=f"booking:{booking.id}:payment_success:{payment_id}",
        )
        self.db.flush()

        logger.info("Payment confirmed. booking_id=%s payment_id=%s", booking.id, payment_id)
        return booking

    def cancel_booking(
        self,
        booking_id: str,
        user_id: str,
        now: datetime | None = None,
    ) -> Booking:
        now = now or utc_now()

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking not found")
        if booking.user_id != user_id:
            raise NotAuthorizedError("You are not authorized to cancel this booking.")
        if not BookingStateMachine.can_transition(booking.status, BookingStatus.USER_CANCELLED):
            raise InvalidStateError(
                f"This booking cannot be cancelled (status: {booking.status.value})."
            )

        showtime = self.showtime_repository.get_by_id(booking.showtime_id)
        if to_utc(showtime.start_time) - now <= CANCELLATION_CUTOFF:
            raise InvalidStateError(
                "Cancellation deadline passed. Cannot cancel less than "
                f"{int(CANCELLATION_CUTOFF.total_seconds() // 3600)} hours before the show."
            )

        was_paid = booking.payment_status == PaymentStatus.PAID
        self._transition(booking, BookingStatus.USER_CANCELLED)
        booking.payment_status = PaymentStatus.REFUND_PENDING if was_paid else PaymentStatus.CANCELLED
        self.booking_repository.release_seat_holds([booking.id])

        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_CANCELLED_BY_USER",
            payload=_booking_payload(booking, [seat.seat_number for seat in booking.seats]),
            dedupe_key=f"booking:{booking.id}:user_cancelled",
        )
        self.db.flush()

        logger.info(
            "Booking cancelled by user. booking_id=%s refund_pending=%s",
            booking.id,
            was_paid,
        )
        return booking

    def verify_ticket(
        self,
        booking_id: str,
        showtime_id: str,
        verifier_id: str,
        now: datetime | None = None,
    ) -> Booking:
        """
        Every attempt on an existing booking leaves an audit row.
        Rejected attempts are committed before the error propagates.
        """
        now = now or utc_now()

        verifier = self.catalog_repository.get_user(verifier_id)
        if not verifier:
            raise NotFoundError("Verifier not found")
        if not verifier.theater_id:
            raise NotAuthorizedError(
                "User not authorized to verify tickets (missing theater association)."
            )

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking not found")

        rejection = self._verification_rejection(booking, showtime_id, verifier.theater_id)
        if rejection:
            self.booking_repository.add_verification_attempt(
                booking=booking,
                attempted_at=now,
                attempted_by=verifier_id,
                success=False,
                message=str(rejection),
            )
            self.db.commit()
            logger.info(
                "Ticket verification rejected. booking_id=%s verifier_id=%s reason=%s",
                booking_id,
                verifier_id,
                rejection,
            )
            raise rejection

        self._transition(booking, BookingStatus.ACCEPTED)
        booking.verified_at = now
        booking.verified_by = verifier_id
        self.booking_repository.add_verification_attempt(
            booking=booking,
            attempted_at=now,
            attempted_by=verifier_id,
            success=True,
            message="Ticket verified successfully!",
        )
        self.db.flush()

        logger.info("Ticket verified. booking_id=%s verifier_id=%s", booking.id, verifier_id)
        return booking

    def apply_offer(
        self,
        booking_id: str,
        user_id: str,
        promo_code: str | None = None,
        now: datetime | None = None,
    ) -> tuple[Booking, OfferEvaluation]:
        now = now or utc_now()

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking not found")
        if booking.user_id != user_id:
            raise NotAuthorizedError("You are not authorized to modify this booking.")
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError(
                f"Offers can only be applied to pending bookings (status: {booking.status.value})."
            )

        showtime = self.showtime_repository.get_by_id(booking.showtime_id)
        cart = Cart(
            num_tickets=len(booking.seats),
            subtotal_paise=booking.subtotal_paise,
            movie_id=showtime.movie_id,
            is_first_booking=not self.booking_repository.has_paid_booking(
                booking.user_id,
                exclude_booking_id=booking.id,
            ),
        )
        result = evaluate_best_offer(cart, promo_code, load_offer_rules(self.db), now)

        booking.discount_paise = result.discount_paise
        booking.total_paise = result.final_total_paise
        booking.applied_offer_id = result.applied_offer.id if result.applied_offer else None
        self.db.flush()

        logger.info(
            "Offer evaluated for booking. booking_id=%s offer_id=%s discount_paise=%s",
            booking.id,
            booking.applied_offer_id,
            booking.discount_paise,
        )
        return booking, result

    def list_user_bookings(self, user_id: str) -> list[UserBookingView]:
        views = []
        for booking in self.booking_repository.list_for_user(user_id):
            showtime = self.showtime_repository.get_by_id(booking.showtime_id)
            screen = self.catalog_repository.get_screen(showtime.screen_id)
            theater = self.catalog_repository.get_theater(showtime.theater_id)
            views.append(
                UserBookingView(
                    booking_id=booking.id,
                    created_at=to_utc(booking.created_at),
                    status=booking.status,
                    payment_status=booking.payment_status,
                    subtotal_paise=booking.subtotal_paise,
                    discount_paise=booking.discount_paise,
                    total_paise=booking.total_paise,
                    start_time=to_utc(showtime.start_time),
                    movie_title=showtime.movie.title,
                    theater_name=theater.name if theater else "N/A",
                    theater_city=theater.city if theater else "N/A",
                    screen_number=screen.screen_number if screen else "N/A",
                    seat_numbers=[seat.seat_number for seat in booking.seats],
                )
            )
        return views

    @staticmethod
    def _normalise_seat_ids(seat_ids: list[str]) -> list[str]:
        if not seat_ids:
            raise ValidationError("Seat IDs must be provided as a non-empty array.")

        normalised = []
        for seat_id in seat_ids:
            try:
                normalised.append(str(UUID(str(seat_id))))
            except ValueError as exc:
                raise ValidationError("One or more Seat IDs are invalid.") from exc

        if len(set(normalised)) != len(normalised):
            raise ValidationError("Seat IDs must not contain duplicates.")
        return normalised

    def _verification_rejection(
        self,
        booking: Booking,
        showtime_id: str,
        verifier_theater_id: str,
    ) -> BookingEngineError | None:
        if booking.showtime_id != showtime_id:
            return ValidationError("Ticket is not valid for this specific showtime.")

        showtime = self.showtime_repository.get_by_id(booking.showtime_id)
        if showtime.theater_id != verifier_theater_id:
            return NotAuthorizedError("Not authorized to verify tickets for this theater.")

        if booking.status != BookingStatus.ACTIVE or booking.payment_status != PaymentStatus.PAID:
            return InvalidStateError(
                f"Ticket cannot be verified. (Status: {booking.status.value}, "
                f"Payment: {booking.payment_status.value}). Must be active/paid."
            )
        return None

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
