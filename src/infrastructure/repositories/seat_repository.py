# src/infrastructure/repositories/seat_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import delete, select

from src.infrastructure.db.models import Screen, Seat


class SeatRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_screen(self, screen_id: str, shared: bool = False) -> Screen | None:
        """
        SELECT ... FOR UPDATE (FOR SHARE when shared)
        Serialises schedule and seat layout writers on one screen.
        Booking creation takes the shared lock so a layout replacement
        waits for it, and it waits for a replacement in flight.
        """

        stmt = (
            select(Screen)
            .where(Screen.id == screen_id)
            .with_for_update(read=shared)
        )

        return self.db.execute(stmt).scalar_one_or_none()

    def get_seats_for_screen(self, screen_id: str) -> list[Seat]:
        stmt = (
            select(Seat)
            .where(Seat.screen_id == screen_id)
            .order_by(Seat.row, Seat.number_in_row)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_seats_by_ids(
        self,
        screen_id: str,
        seat_ids: list[str],
    ) -> list[Seat]:
        stmt = (
            select(Seat)
            .where(Seat.id.in_(seat_ids))
            .where(Seat.screen_id == screen_id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_seat_numbers(self, seat_ids: list[str]) -> dict[str, str]:
        stmt = select(Seat.id, Seat.seat_number).where(Seat.id.in_(seat_ids))
        return {row[0]: row[1] for row in self.db.execute(stmt).all()}

    def replace_screen_seats(
        self,
        screen: Screen,
        seats: list[dict],
    ) -> list[Seat]:
        self.db.execute(delete(Seat).where(Seat.screen_id == screen.id))

        created = [
            Seat(
                screen_id=screen.id,
                seat_number=item["seat_number"],
                row=item["row"],
                number_in_row=item["number_in_row"],
                seat_type=item["seat_type"],
                price_paise=item["price_paise"],
            )
            for item in seats
        ]
        self.db.add_all(created)
        screen.total_seats = len(created)
        return created
