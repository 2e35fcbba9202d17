# src/infrastructure/db/models.py

from sqlalchemy import (
    JSON,
    Boolean,
    String,
    Integer,
    Float,
    DateTime,
    Enum,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.offer_engine import DiscountType, OfferScope, OfferType
from src.domain.state_machine import BookingStatus, PaymentStatus, ShowtimeStatus


def _uuid() -> str:
    return str(uuid4())


# -----------------------------
# Catalog (externally owned)
# -----------------------------
class Movie(Base):
    __tablename__ = "movies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    languages: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Theater(Base):
    __tablename__ = "theaters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    city: Mapped[str] = mapped_column(String(64), nullable=False)


class Screen(Base):
    __tablename__ = "screens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    theater_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("theaters.id"),
        nullable=False,
    )
    screen_number: Mapped[str] = mapped_column(String(16), nullable=False)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("theater_id", "screen_number", name="uq_screen_number_per_theater"),
    )


class Seat(Base):
    __tablename__ = "seats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    screen_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("screens.id"),
        nullable=False,
    )
    seat_number: Mapped[str] = mapped_column(String(16), nullable=False)
    row: Mapped[str] = mapped_column(String(4), nullable=False)
    number_in_row: Mapped[float] = mapped_column(Float, nullable=False)
    seat_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Regular")
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("screen_id", "seat_number", name="uq_seat_number_per_screen"),
        CheckConstraint("price_paise >= 0", name="ck_seat_price_nonnegative"),
        CheckConstraint("number_in_row >= 0", name="ck_seat_number_in_row_nonnegative"),
        Index("ix_seats_screen_row", "screen_id", "row", "number_in_row"),
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    theater_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("theaters.id"),
        nullable=True,
    )


# -----------------------------
# Scheduling
# -----------------------------
class Showtime(Base):
    __tablename__ = "showtimes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    movie_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("movies.id"),
        nullable=False,
    )
    screen_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("screens.id"),
        nullable=False,
    )
    # Denormalised from the screen for theater-scoped queries.
    theater_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("theaters.id"),
        nullable=False,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    language: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[ShowtimeStatus] = mapped_column(
        Enum(ShowtimeStatus, name="showtime_status"),
        nullable=False,
        default=ShowtimeStatus.SCHEDULED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    movie: Mapped[Movie] = relationship()

    __table_args__ = (
        Index("ix_showtimes_screen_start", "screen_id", "start_time"),
        Index("ix_showtimes_status_start", "status", "start_time"),
    )


# -----------------------------
# Bookings
# -----------------------------
class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    showtime_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("showtimes.id"),
        nullable=False,
    )
    subtotal_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_paise: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    applied_offer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    seats: Mapped[list["BookingSeat"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSeat.seat_number",
    )
    verification_attempts: Mapped[list["VerificationAttempt"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="VerificationAttempt.attempted_at",
    )

    __table_args__ = (
        CheckConstraint("subtotal_paise >= 0", name="ck_booking_subtotal_nonnegative"),
        CheckConstraint("discount_paise >= 0", name="ck_booking_discount_nonnegative"),
        CheckConstraint("total_paise >= 0", name="ck_booking_total_nonnegative"),
        Index("ix_bookings_showtime_status", "showtime_id", "status"),
        Index("ix_bookings_user_created", "user_id", "created_at"),
    )


class BookingSeat(Base):
    """Seat snapshot taken when the booking was created."""

    __tablename__ = "booking_seats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    # No FK: the snapshot outlives seat layout replacement.
    seat_id: Mapped[str] = mapped_column(String(36), nullable=False)
    seat_number: Mapped[str] = mapped_column(String(16), nullable=False)
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="seats")

    __table_args__ = (
        UniqueConstraint("booking_id", "seat_id", name="uq_booking_seat"),
        CheckConstraint("price_paise >= 0", name="ck_booking_seat_price_nonnegative"),
    )


class SeatHold(Base):
    """
    One row per seat claimed by a booking in a holding state.
    The unique key makes a second claim on the same seat fail atomically.
    """

    __tablename__ = "seat_holds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    showtime_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("showtimes.id"),
        nullable=False,
    )
    seat_id: Mapped[str] = mapped_column(String(36), nullable=False)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("showtime_id", "seat_id", name="uq_seat_hold_showtime_seat"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="RAZORPAY")
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="SUCCESS")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_payment_transaction_id"),
    )


class VerificationAttempt(Base):
    __tablename__ = "verification_attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempted_by: Mapped[str] = mapped_column(String(36), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    message: Mapped[str | None] = mapped_column(String(255), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="verification_attempts")


# -----------------------------
# Offers
# -----------------------------
class Offer(Base):
    __tablename__ = "offers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[OfferType] = mapped_column(Enum(OfferType, name="offer_type"), nullable=False)
    scope: Mapped[OfferScope] = mapped_column(
        Enum(OfferScope, name="offer_scope"),
        nullable=False,
        default=OfferScope.ALL,
    )
    movie_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("movies.id"),
        nullable=True,
    )
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, name="discount_type"),
        nullable=False,
    )
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    min_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_offer_discount_nonnegative"),
    )


# -----------------------------
# Outbox
# -----------------------------
class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
