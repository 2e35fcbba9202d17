from dataclasses import dataclass
from datetime import date, datetime, time
import logging

from sqlalchemy.orm import Session

from src.application.availability import SeatAvailabilityResolver
from src.domain.exceptions import (
    InvalidStateError,
    NotFoundError,
    ScheduleConflictError,
    ValidationError,
)
from src.domain.scheduling import (
    BUFFER_TIME,
    format_local,
    generate_candidate_starts,
    intervals_overlap,
    local_today,
    occupied_interval,
    to_utc,
    utc_now,
)
from src.domain.state_machine import (
    HOLDING_STATUSES,
    BookingStateMachine,
    BookingStatus,
    ShowtimeStatus,
)
from src.infrastructure.db.models import Movie, Screen, Showtime
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.repositories.showtime_repository import ShowtimeRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledWindow:
    start: datetime
    end: datetime
    title: str


@dataclass(frozen=True)
class ShowtimeDetails:
    showtime: Showtime
    movie: Movie
    screen: Screen
    theater_name: str
    theater_city: str
    total_seats: int
    available_seats: int


@dataclass(frozen=True)
class ShowtimeCancellation:
    showtime: Showtime
    cancelled_booking_ids: list[str]


def _window_label(window: ScheduledWindow) -> str:
    # Shown without the changeover buffer.
    return (
        f"{format_local(window.start, '%I:%M %p')} to "
        f"{format_local(window.end - BUFFER_TIME, '%I:%M %p')}"
    )


def find_conflict(
    start: datetime,
    end: datetime,
    windows: list[ScheduledWindow],
) -> ScheduledWindow | None:
    for window in windows:
        if intervals_overlap(start, end, window.start, window.end):
            return window
    return None


class ShowtimeService:
    """Creates and maintains showtimes; the only writer of scheduled rows."""

    def __init__(self, db: Session):
        self.db = db
        self.showtime_repository = ShowtimeRepository(db)
        self.seat_repository = SeatRepository(db)
        self.catalog_repository = CatalogRepository(db)
        self.booking_repository = BookingRepository(db)
        self.outbox_repository = OutboxRepository(db)

    def create_showtime(
        self,
        movie_id: str,
        screen_id: str,
        start_time: datetime,
        language: str,
        now: datetime | None = None,
    ) -> Showtime:
        now = now or utc_now()
        start = to_utc(start_time)
        if start < now:
            raise ValidationError("Show start time cannot be in the past.")

        movie = self._get_schedulable_movie(movie_id, language)
        screen = self.seat_repository.lock_screen(screen_id)
        if not screen:
            raise NotFoundError("Selected screen not found.")

        candidate_start, candidate_end = occupied_interval(start, movie.duration_minutes)
        windows = self._existing_windows(screen_id, candidate_end)
        conflict = find_conflict(candidate_start, candidate_end, windows)
        if conflict:
            logger.info(
                "Schedule conflict. screen_id=%s start=%s conflicts_with=%s",
                screen_id,
                candidate_start.isoformat(),
                conflict.title,
            )
            raise ScheduleConflictError(
                f"Time conflict: This show overlaps with '{conflict.title}' scheduled "
                f"from {_window_label(conflict)} on this screen.",
                conflicting_title=conflict.title,
                candidate_start=candidate_start,
                conflict_window=(conflict.start, conflict.end),
            )

        showtime = Showtime(
            movie_id=movie.id,
            screen_id=screen.id,
            theater_id=screen.theater_id,
            start_time=start,
            language=language,
            status=ShowtimeStatus.SCHEDULED,
        )
        self.showtime_repository.add(showtime)
        self.db.flush()

        logger.info(
            "Showtime created. showtime_id=%s screen_id=%s start=%s",
            showtime.id,
            screen_id,
            start.isoformat(),
        )
        return showtime

    def create_showtimes_batch(
        self,
        movie_id: str,
        theater_id: str,
        screen_id: str,
        start_date: date,
        end_date: date,
        slots: list[time],
        language: str,
        now: datetime | None = None,
    ) -> list[Showtime]:
        """
        One candidate per (day x slot). Candidates already in the past are
        skipped. The first conflict, with an existing show or with an earlier
        candidate of the same request, rejects the whole batch.
        """
        now = now or utc_now()

        if start_date < local_today(now):
            raise ValidationError("Start date cannot be in the past.")
        candidates = generate_candidate_starts(start_date, end_date, slots)

        movie = self._get_schedulable_movie(movie_id, language)
        screen = self.seat_repository.lock_screen(screen_id)
        if not screen or screen.theater_id != theater_id:
            raise NotFoundError("Screen not found or does not belong to the specified theater.")

        future = [start for start in candidates if start >= now]
        if not future:
            return []

        range_end = occupied_interval(future[-1], movie.duration_minutes)[1]
        existing = self._existing_windows(screen_id, range_end)
        accepted: list[ScheduledWindow] = []

        for index, start in enumerate(future, start=1):
            candidate_start, candidate_end = occupied_interval(start, movie.duration_minutes)

            conflict = find_conflict(candidate_start, candidate_end, existing)
            if conflict:
                raise ScheduleConflictError(
                    f"Conflict: Proposed show for '{movie.title}' at "
                    f"{format_local(candidate_start)} (IST) overlaps with existing show "
                    f"'{conflict.title}' scheduled from {_window_label(conflict)} (IST).",
                    conflicting_title=conflict.title,
                    candidate_start=candidate_start,
                    conflict_window=(conflict.start, conflict.end),
                )

            earlier = find_conflict(candidate_start, candidate_end, accepted)
            if earlier:
                raise ScheduleConflictError(
                    f"Conflict: Proposed show at {format_local(candidate_start)} (IST) "
                    f"overlaps with another show you are trying to add at "
                    f"{format_local(earlier.start)} (IST) in this same request.",
                    conflicting_title=earlier.title,
                    candidate_start=candidate_start,
                    conflict_window=(earlier.start, earlier.end),
                )

            accepted.append(ScheduledWindow(candidate_start, candidate_end, movie.title))
            logger.debug("Batch candidate %s accepted. start=%s", index, candidate_start.isoformat())

        showtimes = [
            Showtime(
                movie_id=movie.id,
                screen_id=screen.id,
                theater_id=screen.theater_id,
                start_time=window.start,
                language=language,
                status=ShowtimeStatus.SCHEDULED,
            )
            for window in accepted
        ]
        self.showtime_repository.add_all(showtimes)
        self.db.flush()

        logger.info(
            "Batch showtimes created. movie_id=%s screen_id=%s count=%s",
            movie.id,
            screen_id,
            len(showtimes),
        )
        return showtimes

    def update_showtime(
        self,
        showtime_id: str,
        movie_id: str | None = None,
        screen_id: str | None = None,
        start_time: datetime | None = None,
        language: str | None = None,
        now: datetime | None = None,
    ) -> Showtime:
        now = now or utc_now()

        if movie_id is None and screen_id is None and start_time is None and language is None:
            raise ValidationError("No valid fields provided for update.")

        showtime = self.showtime_repository.get_by_id(showtime_id, for_update=True)
        if not showtime:
            raise NotFoundError("Showtime not found.")
        if showtime.status != ShowtimeStatus.SCHEDULED:
            raise InvalidStateError(f"Showtime is already {showtime.status.value}.")

        if language is not None and not language.strip():
            raise ValidationError("Language cannot be empty.")

        new_movie_id = movie_id or showtime.movie_id
        new_screen_id = screen_id or showtime.screen_id
        new_start = to_utc(start_time) if start_time is not None else to_utc(showtime.start_time)
        new_language = language.strip() if language is not None else showtime.language

        if start_time is not None and new_start < now:
            raise ValidationError("Show start time cannot be in the past.")

        # Seat ids belong to a screen; held seats cannot follow the show elsewhere.
        if new_screen_id != showtime.screen_id and self.booking_repository.list_for_showtime(
            showtime.id, statuses=HOLDING_STATUSES
        ):
            raise InvalidStateError(
                "Cannot move a showtime to another screen while bookings hold seats on it."
            )

        movie = self._get_schedulable_movie(new_movie_id, new_language)
        screen = self.seat_repository.lock_screen(new_screen_id)
        if not screen:
            raise NotFoundError("Target screen not found.")

        timing_changed = (
            new_movie_id != showtime.movie_id
            or new_screen_id != showtime.screen_id
            or start_time is not None
        )
        if timing_changed:
            candidate_start, candidate_end = occupied_interval(new_start, movie.duration_minutes)
            windows = self._existing_windows(
                new_screen_id,
                candidate_end,
                exclude_showtime_id=showtime.id,
            )
            conflict = find_conflict(candidate_start, candidate_end, windows)
            if conflict:
                raise ScheduleConflictError(
                    f"Time conflict: This show overlaps with '{conflict.title}' scheduled "
                    f"from {_window_label(conflict)} on this screen.",
                    conflicting_title=conflict.title,
                    candidate_start=candidate_start,
                    conflict_window=(conflict.start, conflict.end),
                )

        showtime.movie_id = movie.id
        showtime.screen_id = screen.id
        showtime.theater_id = screen.theater_id
        showtime.start_time = new_start
        showtime.language = new_language
        self.db.flush()

        logger.info("Showtime updated. showtime_id=%s", showtime.id)
        return showtime

    def cancel_showtime(self, showtime_id: str) -> ShowtimeCancellation:
        showtime = self.showtime_repository.get_by_id(showtime_id, for_update=True)
        if not showtime:
            raise NotFoundError("Showtime not found.")
        if showtime.status != ShowtimeStatus.SCHEDULED:
            raise InvalidStateError(f"Showtime is already {showtime.status.value}.")

        showtime.status = ShowtimeStatus.CANCELLED

        bookings = self.booking_repository.list_for_showtime(
            showtime_id,
            statuses=[BookingStatus.PENDING, BookingStatus.ACTIVE],
            for_update=True,
        )
        for booking in bookings:
            BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)
            self.booking_repository.update_status(booking, BookingStatus.CANCELLED)
            self.outbox_repository.add_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="BOOKING_CANCELLED_BY_SHOWTIME",
                payload={
                    "booking_id": booking.id,
                    "user_id": booking.user_id,
                    "showtime_id": showtime_id,
                    "seat_numbers": [seat.seat_number for seat in booking.seats],
                    "payment_status": booking.payment_status.value,
                    "total_paise": booking.total_paise,
                },
                dedupe_key=f"booking:{booking.id}:showtime_cancelled",
            )

        booking_ids = [booking.id for booking in bookings]
        self.booking_repository.release_seat_holds(booking_ids)
        self.db.flush()

        logger.info(
            "Showtime cancelled. showtime_id=%s cancelled_bookings=%s",
            showtime_id,
            len(booking_ids),
        )
        return ShowtimeCancellation(showtime=showtime, cancelled_booking_ids=booking_ids)

    def complete_elapsed_showtimes(self, now: datetime | None = None) -> int:
        """
        Marks scheduled shows completed once their occupied interval,
        buffer included, has fully elapsed.
        """
        now = now or utc_now()

        completed = 0
        for showtime in self.showtime_repository.list_started_scheduled(now):
            _, end = occupied_interval(showtime.start_time, showtime.movie.duration_minutes)
            if end <= now:
                showtime.status = ShowtimeStatus.COMPLETED
                completed += 1
        self.db.flush()

        logger.info("Completion sweep finished. completed=%s", completed)
        return completed

    def get_showtime_details(self, showtime_id: str) -> ShowtimeDetails:
        showtime = self.showtime_repository.get_by_id(showtime_id)
        if not showtime:
            raise NotFoundError("Showtime not found")

        screen = self.catalog_repository.get_screen(showtime.screen_id)
        theater = self.catalog_repository.get_theater(showtime.theater_id)
        if not screen or not theater:
            raise NotFoundError("Showtime data incomplete (missing screen/theater).")

        held = SeatAvailabilityResolver(self.db).resolve_held_seats(showtime_id)
        total = len(self.seat_repository.get_seats_for_screen(screen.id))
        return ShowtimeDetails(
            showtime=showtime,
            movie=showtime.movie,
            screen=screen,
            theater_name=theater.name,
            theater_city=theater.city,
            total_seats=total,
            available_seats=max(0, total - len(held)),
        )

    def _get_schedulable_movie(self, movie_id: str, language: str) -> Movie:
        movie = self.catalog_repository.get_movie(movie_id)
        if not movie:
            raise NotFoundError("Selected movie not found.")
        if movie.duration_minutes <= 0:
            raise ValidationError("Invalid movie duration. Cannot schedule.")
        if language not in (movie.languages or []):
            raise ValidationError(f"Language '{language}' not available for this movie.")
        return movie

    def _existing_windows(
        self,
        screen_id: str,
        starts_before: datetime,
        exclude_showtime_id: str | None = None,
    ) -> list[ScheduledWindow]:
        windows = []
        for show in self.showtime_repository.list_scheduled_on_screen(
            screen_id,
            starts_before=starts_before,
            exclude_showtime_id=exclude_showtime_id,
        ):
            start, end = occupied_interval(show.start_time, show.movie.duration_minutes)
            windows.append(ScheduledWindow(start=start, end=end, title=show.movie.title))
        return windows
