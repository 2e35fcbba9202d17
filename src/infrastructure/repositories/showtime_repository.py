# src/infrastructure/repositories/showtime_repository.py

from datetime import datetime

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select

from src.infrastructure.db.models import Showtime
from src.domain.state_machine import ShowtimeStatus


class ShowtimeRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        showtime_id: str,
        for_update: bool = False,
    ) -> Showtime | None:
        """
        SELECT ... FOR UPDATE when for_update is set.
        Booking creation holds this lock until commit so two writers
        on one showtime run one after the other.
        """

        stmt = select(Showtime).where(Showtime.id == showtime_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_scheduled_on_screen(
        self,
        screen_id: str,
        starts_before: datetime,
        exclude_showtime_id: str | None = None,
    ) -> list[Showtime]:
        # Only the start bound is pushed down; end times need the movie duration.
        stmt = (
            select(Showtime)
            .where(Showtime.screen_id == screen_id)
            .where(Showtime.status == ShowtimeStatus.SCHEDULED)
            .where(Showtime.start_time < starts_before)
            .options(selectinload(Showtime.movie))
            .order_by(Showtime.start_time)
        )
        if exclude_showtime_id:
            stmt = stmt.where(Showtime.id != exclude_showtime_id)
        return list(self.db.execute(stmt).scalars().all())

    def list_started_scheduled(self, now: datetime) -> list[Showtime]:
        stmt = (
            select(Showtime)
            .where(Showtime.status == ShowtimeStatus.SCHEDULED)
            .where(Showtime.start_time <= now)
            .options(selectinload(Showtime.movie))
            .with_for_update(of=Showtime)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, showtime: Showtime) -> Showtime:
        self.db.add(showtime)
        return showtime

    def add_all(self, showtimes: list[Showtime]) -> None:
        self.db.add_all(showtimes)
