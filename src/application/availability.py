# src/application/availability.py

from collections.abc import Iterable
from dataclasses import dataclass
import logging

from sqlalchemy.orm import Session

from src.domain.exceptions import InvalidStateError, NotFoundError, ValidationError
from src.infrastructure.db.models import Seat
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.repositories.showtime_repository import ShowtimeRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeatLayoutEntry:
    seat_id: str
    seat_number: str
    row: str
    number_in_row: float
    seat_type: str
    price_paise: int
    is_available: bool


class SeatAvailabilityResolver:
    """
    Point-in-time view of which seats are held for a showtime.
    Read only; a free seat here is not a reservation.
    """

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)

    def resolve_held_seats(self, showtime_id: str) -> set[str]:
        return self.resolve_held_seats_for_showtimes([showtime_id])[showtime_id]

    def resolve_held_seats_for_showtimes(
        self,
        showtime_ids: Iterable[str],
    ) -> dict[str, set[str]]:
        ids = list(showtime_ids)
        held: dict[str, set[str]] = {showtime_id: set() for showtime_id in ids}
        if not ids:
            return held

        for showtime_id, seat_id in self.booking_repository.holding_seat_ids(ids):
            held[showtime_id].add(seat_id)
        return held


def get_seat_layout(db: Session, showtime_id: str) -> list[SeatLayoutEntry]:
    showtime = ShowtimeRepository(db).get_by_id(showtime_id)
    if not showtime:
        raise NotFoundError("Showtime not found")

    seats = SeatRepository(db).get_seats_for_screen(showtime.screen_id)
    held = SeatAvailabilityResolver(db).resolve_held_seats(showtime_id)

    return [
        SeatLayoutEntry(
            seat_id=seat.id,
            seat_number=seat.seat_number,
            row=seat.row,
            number_in_row=seat.number_in_row,
            seat_type=seat.seat_type,
            price_paise=seat.price_paise,
            is_available=seat.id not in held,
        )
        for seat in seats
    ]


def format_seat_number(row: str, number_in_row: float) -> str:
    return f"{row}{number_in_row:g}"


def _normalise_seat_layout(seats: list[dict]) -> list[dict]:
    normalised = []
    seen: set[str] = set()

    for item in seats:
        row = str(item.get("row") or "").strip().upper()
        if not row:
            raise ValidationError("Every seat needs a row.")

        try:
            number = float(item.get("number_in_row"))
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Invalid seat number in row '{row}'. Number must be numeric."
            ) from exc
        if number < 0:
            raise ValidationError(
                f"Invalid seat number in row '{row}'. Number must be positive."
            )

        price = item.get("price_paise")
        if not isinstance(price, int) or price < 0:
            raise ValidationError(f"Invalid price for seat in row '{row}'.")

        seat_number = format_seat_number(row, number)
        if seat_number in seen:
            raise ValidationError(f"Duplicate seat number '{seat_number}' detected.")
        seen.add(seat_number)

        normalised.append(
            {
                "seat_number": seat_number,
                "row": row,
                "number_in_row": number,
                "seat_type": str(item.get("seat_type") or "Regular").strip(),
                "price_paise": price,
            }
        )
    return normalised


def replace_screen_seats(db: Session, screen_id: str, seats: list[dict]) -> list[Seat]:
    """
    Destructive layout replacement. The screen row lock serialises this
    against showtime writers and booking creation, which holds the same
    lock shared. Bookings still holding seats on a scheduled show of the
    screen block the replacement outright.
    """
    seat_repository = SeatRepository(db)

    screen = seat_repository.lock_screen(screen_id)
    if not screen:
        raise NotFoundError("Screen not found")

    if BookingRepository(db).screen_has_holding_bookings(screen_id):
        raise InvalidStateError(
            "Seat layout cannot be replaced while bookings hold seats on this screen."
        )

    normalised = _normalise_seat_layout(seats)
    created = seat_repository.replace_screen_seats(screen, normalised)
    db.flush()

    logger.info(
        "Seat layout replaced. screen_id=%s total_seats=%s",
        screen_id,
        len(created),
    )
    return created
