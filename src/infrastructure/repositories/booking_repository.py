# src/infrastructure/repositories/booking_repository.py

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import delete, select

from src.infrastructure.db.models import (
    Booking,
    BookingSeat,
    Payment,
    Seat,
    SeatHold,
    Showtime,
    VerificationAttempt,
)
from src.domain.state_machine import (
    HOLDING_STATUSES,
    BookingStatus,
    PaymentStatus,
    ShowtimeStatus,
)


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .options(selectinload(Booking.seats))
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_showtime(
        self,
        showtime_id: str,
        statuses: Iterable[BookingStatus],
        for_update: bool = False,
    ) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.showtime_id == showtime_id)
            .where(Booking.status.in_(list(statuses)))
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def create_booking(
        self,
        user_id: str,
        showtime_id: str,
        seats: list[Seat],
    ) -> Booking:
        """
        Stages a pending booking with a price snapshot of each seat
        and one hold row per seat. The booking row is flushed for its id;
        the holds go out with the caller's flush, where a second claim on
        a seat fails on uq_seat_hold_showtime_seat.
        """
        subtotal = sum(seat.price_paise for seat in seats)

        booking = Booking(
            user_id=user_id,
            showtime_id=showtime_id,
            subtotal_paise=subtotal,
            discount_paise=0,
            total_paise=subtotal,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        )
        booking.seats = [
            BookingSeat(
                seat_id=seat.id,
                seat_number=seat.seat_number,
                price_paise=seat.price_paise,
            )
            for seat in seats
        ]
        self.db.add(booking)
        self.db.flush()

        for seat in seats:
            self.db.add(
                SeatHold(
                    showtime_id=showtime_id,
                    seat_id=seat.id,
                    booking_id=booking.id,
                )
            )
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def release_seat_holds(self, booking_ids: Iterable[str]) -> None:
        ids = list(booking_ids)
        if not ids:
            return
        self.db.execute(
            delete(SeatHold).where(SeatHold.booking_id.in_(ids))
        )

    def holding_seat_ids(self, showtime_ids: Iterable[str]) -> list[tuple[str, str]]:
        """
        (showtime_id, seat_id) pairs for bookings in a holding state.
        """
        stmt = (
            select(Booking.showtime_id, BookingSeat.seat_id)
            .join(BookingSeat, BookingSeat.booking_id == Booking.id)
            .where(Booking.showtime_id.in_(list(showtime_ids)))
            .where(Booking.status.in_(list(HOLDING_STATUSES)))
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def screen_has_holding_bookings(self, screen_id: str) -> bool:
        stmt = (
            select(Booking.id)
            .join(Showtime, Showtime.id == Booking.showtime_id)
            .where(Showtime.screen_id == screen_id)
            .where(Showtime.status == ShowtimeStatus.SCHEDULED)
            .where(Booking.status.in_(list(HOLDING_STATUSES)))
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def has_paid_booking(self, user_id: str, exclude_booking_id: str | None = None) -> bool:
        stmt = (
            select(Booking.id)
            .where(Booking.user_id == user_id)
            .where(
                Booking.payment_status.in_(
                    [PaymentStatus.PAID, PaymentStatus.REFUND_PENDING, PaymentStatus.REFUNDED]
                )
            )
        )
        if exclude_booking_id:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    def add_verification_attempt(
        self,
        booking: Booking,
        attempted_at: datetime,
        attempted_by: str,
        success: bool,
        message: str,
    ) -> VerificationAttempt:
        attempt = VerificationAttempt(
            attempted_at=attempted_at,
            attempted_by=attempted_by,
            success=success,
            message=message[:255],
        )
        booking.verification_attempts.append(attempt)
        return attempt

    def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.transaction_id == transaction_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_payment(
        self,
        booking: Booking,
        order_id: str,
        transaction_id: str,
    ) -> Payment:
        payment = Payment(
            booking_id=booking.id,
            amount_paise=booking.total_paise,
            currency="INR",
            provider="RAZORPAY",
            order_id=order_id,
            transaction_id=transaction_id,
            status="SUCCESS",
        )
        self.db.add(payment)
        return payment
