import json
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import func, select

from src.application.availability import replace_screen_seats
from src.application.booking_service import BookingService
from src.application.showtime_service import ShowtimeService
from src.domain.exceptions import (
    InvalidStateError,
    NotFoundError,
    ScheduleConflictError,
    ValidationError,
)
from src.domain.scheduling import (
    TARGET_TIMEZONE,
    local_today,
    parse_local_datetime,
    to_utc,
    utc_now,
)
from src.domain.state_machine import BookingStatus, ShowtimeStatus
from src.infrastructure.db.models import OutboxEvent, SeatHold, Showtime


def _local(days_ahead: int, clock: str) -> datetime:
    day = local_today() + timedelta(days=days_ahead)
    return parse_local_datetime(f"{day.isoformat()}T{clock}")


def _count_showtimes(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(Showtime)).scalar_one()


@pytest.fixture
def service(db_session):
    return ShowtimeService(db_session)


# ---------------------
# SINGLE SHOWTIME
# ---------------------

def test_touching_intervals_do_not_conflict(db_session, service, catalog):
    service.create_showtime(catalog.movie_id, catalog.screen_id, _local(3, "10:00"), "English")
    db_session.commit()

    # 120 min + 15 min buffer ends at 12:15.
    follow_up = service.create_showtime(
        catalog.movie_id, catalog.screen_id, _local(3, "12:15"), "English"
    )
    db_session.commit()

    assert follow_up.status == ShowtimeStatus.SCHEDULED
    assert _count_showtimes(db_session) == 2


def test_one_minute_overlap_conflicts(db_session, service, catalog):
    service.create_showtime(catalog.long_movie_id, catalog.screen_id, _local(3, "10:00"), "English")
    db_session.commit()

    with pytest.raises(ScheduleConflictError) as exc_info:
        service.create_showtime(catalog.movie_id, catalog.screen_id, _local(3, "12:15"), "English")

    assert exc_info.value.conflicting_title == "Extended Cut"
    assert "10:00 AM to 12:01 PM" in str(exc_info.value)


def test_other_screens_are_independent(db_session, service, catalog):
    service.create_showtime(catalog.movie_id, catalog.screen_id, _local(3, "10:00"), "English")
    service.create_showtime(catalog.movie_id, catalog.other_screen_id, _local(3, "10:00"), "English")
    db_session.commit()

    assert _count_showtimes(db_session) == 2


def test_create_showtime_validation(service, catalog):
    with pytest.raises(ValidationError):
        service.create_showtime(
            catalog.movie_id, catalog.screen_id, utc_now() - timedelta(minutes=1), "English"
        )

    with pytest.raises(ValidationError):
        service.create_showtime(catalog.movie_id, catalog.screen_id, _local(3, "10:00"), "Tamil")

    with pytest.raises(NotFoundError):
        service.create_showtime("missing", catalog.screen_id, _local(3, "10:00"), "English")

    with pytest.raises(NotFoundError):
        service.create_showtime(catalog.movie_id, "missing", _local(3, "10:00"), "English")


def test_cancelled_showtime_frees_the_slot(db_session, service, catalog, make_showtime):
    showtime_id = make_showtime(start_time=_local(3, "10:00"))
    service.cancel_showtime(showtime_id)
    db_session.commit()

    replacement = service.create_showtime(
        catalog.movie_id, catalog.screen_id, _local(3, "10:30"), "Hindi"
    )

    assert replacement.language == "Hindi"


# ---------------------
# BATCH
# ---------------------

def test_batch_creates_every_candidate(db_session, service, catalog):
    start_date = local_today() + timedelta(days=2)

    showtimes = service.create_showtimes_batch(
        movie_id=catalog.movie_id,
        theater_id=catalog.theater_id,
        screen_id=catalog.screen_id,
        start_date=start_date,
        end_date=start_date + timedelta(days=4),
        slots=[time(10, 0), time(18, 0)],
        language="English",
    )
    db_session.commit()

    assert len(showtimes) == 10
    assert _count_showtimes(db_session) == 10


def test_batch_is_all_or_nothing(db_session, service, catalog, make_showtime):
    start_date = local_today() + timedelta(days=2)
    # Blocks the 7th candidate: the fourth day at 10:00.
    make_showtime(start_time=_local(5, "11:00"))

    with pytest.raises(ScheduleConflictError) as exc_info:
        service.create_showtimes_batch(
            movie_id=catalog.movie_id,
            theater_id=catalog.theater_id,
            screen_id=catalog.screen_id,
            start_date=start_date,
            end_date=start_date + timedelta(days=4),
            slots=[time(10, 0), time(18, 0)],
            language="English",
        )
    db_session.rollback()

    assert exc_info.value.candidate_start == _local(5, "10:00")
    assert _count_showtimes(db_session) == 1


def test_batch_rejects_candidates_overlapping_each_other(service, catalog):
    start_date = local_today() + timedelta(days=2)

    with pytest.raises(ScheduleConflictError) as exc_info:
        service.create_showtimes_batch(
            movie_id=catalog.movie_id,
            theater_id=catalog.theater_id,
            screen_id=catalog.screen_id,
            start_date=start_date,
            end_date=start_date,
            slots=[time(10, 0), time(11, 0)],
            language="English",
        )

    assert "same request" in str(exc_info.value)
    assert exc_info.value.candidate_start == _local(2, "11:00")


def test_batch_skips_candidates_already_in_the_past(service, catalog):
    today = local_today()
    now = to_utc(datetime.combine(today, time(12, 0), tzinfo=TARGET_TIMEZONE))

    showtimes = service.create_showtimes_batch(
        movie_id=catalog.movie_id,
        theater_id=catalog.theater_id,
        screen_id=catalog.screen_id,
        start_date=today,
        end_date=today,
        slots=[time(9, 0), time(20, 0)],
        language="English",
        now=now,
    )

    assert [to_utc(item.start_time) for item in showtimes] == [
        to_utc(datetime.combine(today, time(20, 0), tzinfo=TARGET_TIMEZONE))
    ]

    nothing_left = service.create_showtimes_batch(
        movie_id=catalog.movie_id,
        theater_id=catalog.theater_id,
        screen_id=catalog.screen_id,
        start_date=today,
        end_date=today,
        slots=[time(9, 0)],
        language="English",
        now=now,
    )
    assert nothing_left == []


def test_batch_validation(service, catalog):
    yesterday = local_today() - timedelta(days=1)

    with pytest.raises(ValidationError):
        service.create_showtimes_batch(
            movie_id=catalog.movie_id,
            theater_id=catalog.theater_id,
            screen_id=catalog.screen_id,
            start_date=yesterday,
            end_date=yesterday,
            slots=[time(10, 0)],
            language="English",
        )

    tomorrow = local_today() + timedelta(days=1)
    with pytest.raises(NotFoundError):
        service.create_showtimes_batch(
            movie_id=catalog.movie_id,
            theater_id=catalog.other_theater_id,
            screen_id=catalog.screen_id,
            start_date=tomorrow,
            end_date=tomorrow,
            slots=[time(10, 0)],
            language="English",
        )


# ---------------------
# UPDATE
# ---------------------

def test_update_rechecks_conflicts_excluding_itself(db_session, service, catalog):
    morning = service.create_showtime(catalog.movie_id, catalog.screen_id, _local(3, "10:00"), "English")
    afternoon = service.create_showtime(catalog.movie_id, catalog.screen_id, _local(3, "13:00"), "English")
    db_session.commit()

    moved = service.update_showtime(morning.id, start_time=_local(3, "10:30"))
    db_session.commit()
    assert to_utc(moved.start_time) == _local(3, "10:30")

    with pytest.raises(ScheduleConflictError):
        service.update_showtime(afternoon.id, start_time=_local(3, "12:00"))


def test_update_language_only(db_session, service, catalog, make_showtime):
    showtime_id = make_showtime()

    updated = service.update_showtime(showtime_id, language="Hindi")
    assert updated.language == "Hindi"

    with pytest.raises(ValidationError):
        service.update_showtime(showtime_id, language="Tamil")

    with pytest.raises(ValidationError):
        service.update_showtime(showtime_id)


def test_screen_move_blocked_while_seats_are_held(db_session, service, catalog, make_showtime):
    showtime_id = make_showtime()
    bookings = BookingService(db_session)
    booking = bookings.create_booking(catalog.user_id, showtime_id, [catalog.seat_ids["A1"]])
    db_session.commit()

    with pytest.raises(InvalidStateError):
        service.update_showtime(showtime_id, screen_id=catalog.other_screen_id)
    db_session.rollback()

    # Other edits that keep the screen are still allowed.
    service.update_showtime(showtime_id, screen_id=catalog.screen_id, language="Hindi")
    db_session.commit()

    bookings.cancel_booking(booking.id, catalog.user_id)
    db_session.commit()

    moved = service.update_showtime(showtime_id, screen_id=catalog.other_screen_id)
    db_session.commit()
    assert moved.screen_id == catalog.other_screen_id


# ---------------------
# CANCEL AND COMPLETE
# ---------------------

def test_cancel_showtime_cascades_to_bookings(db_session, service, catalog, make_showtime, sign_payment):
    showtime_id = make_showtime()
    bookings = BookingService(db_session)
    pending = bookings.create_booking(catalog.user_id, showtime_id, [catalog.seat_ids["A1"]])
    paid = bookings.create_booking(catalog.other_user_id, showtime_id, [catalog.seat_ids["A2"]])
    bookings.confirm_payment(paid.id, "order_9", "pay_9", sign_payment("order_9", "pay_9"))
    db_session.commit()

    result = service.cancel_showtime(showtime_id)
    db_session.commit()

    assert sorted(result.cancelled_booking_ids) == sorted([pending.id, paid.id])
    assert pending.status == BookingStatus.CANCELLED
    assert paid.status == BookingStatus.CANCELLED
    assert db_session.execute(select(func.count()).select_from(SeatHold)).scalar_one() == 0

    events = db_session.execute(
        select(OutboxEvent).where(OutboxEvent.event_type == "BOOKING_CANCELLED_BY_SHOWTIME")
    ).scalars().all()
    assert {event.aggregate_id for event in events} == {pending.id, paid.id}
    payloads = {event.aggregate_id: json.loads(event.payload) for event in events}
    assert payloads[paid.id]["seat_numbers"] == ["A2"]
    assert payloads[paid.id]["payment_status"] == "paid"

    with pytest.raises(InvalidStateError):
        service.cancel_showtime(showtime_id)


def test_completion_sweep(db_session, service, make_showtime):
    finished_id = make_showtime(start_time=utc_now() - timedelta(hours=3))
    running_id = make_showtime(start_time=utc_now() - timedelta(hours=2))
    upcoming_id = make_showtime()

    assert service.complete_elapsed_showtimes() == 1
    db_session.commit()

    assert db_session.get(Showtime, finished_id).status == ShowtimeStatus.COMPLETED
    assert db_session.get(Showtime, running_id).status == ShowtimeStatus.SCHEDULED
    assert db_session.get(Showtime, upcoming_id).status == ShowtimeStatus.SCHEDULED


def test_showtime_details(service, catalog, make_showtime):
    details = service.get_showtime_details(make_showtime())

    assert details.total_seats == 10
    assert details.available_seats == 10
    assert details.theater_name == "Cineplus Central"

    with pytest.raises(NotFoundError):
        service.get_showtime_details("missing")


# ---------------------
# SEAT LAYOUT
# ---------------------

def test_replace_layout_on_idle_screen(db_session, catalog):
    seats = replace_screen_seats(
        db_session,
        catalog.other_screen_id,
        [
            {"row": "d", "number_in_row": 1, "seat_type": "Recliner", "price_paise": 50000},
            {"row": "D", "number_in_row": 2, "price_paise": 50000},
        ],
    )
    db_session.commit()

    assert [seat.seat_number for seat in seats] == ["D1", "D2"]
    assert seats[1].seat_type == "Regular"


def test_replace_layout_validation(db_session, catalog):
    with pytest.raises(ValidationError):
        replace_screen_seats(
            db_session,
            catalog.other_screen_id,
            [
                {"row": "D", "number_in_row": 1, "price_paise": 100},
                {"row": "D", "number_in_row": 1.0, "price_paise": 100},
            ],
        )

    with pytest.raises(ValidationError):
        replace_screen_seats(
            db_session,
            catalog.other_screen_id,
            [{"row": "D", "number_in_row": -1, "price_paise": 100}],
        )

    with pytest.raises(NotFoundError):
        replace_screen_seats(db_session, "missing", [])


def test_replace_layout_blocked_while_seats_are_held(db_session, catalog, make_showtime, client):
    showtime_id = make_showtime()
    booking = BookingService(db_session).create_booking(
        catalog.user_id, showtime_id, [catalog.seat_ids["A1"]]
    )
    db_session.commit()

    new_layout = [{"row": "Z", "number_in_row": 1, "price_paise": 1000}]
    with pytest.raises(InvalidStateError):
        replace_screen_seats(db_session, catalog.screen_id, new_layout)
    db_session.rollback()

    response = client.put(f"/screens/{catalog.screen_id}/seats", json={"seats": new_layout})
    assert response.status_code == 409

    BookingService(db_session).cancel_booking(booking.id, catalog.user_id)
    db_session.commit()

    response = client.put(f"/screens/{catalog.screen_id}/seats", json={"seats": new_layout})
    assert response.status_code == 200
    assert response.json()["total_seats"] == 1


# ---------------------
# HTTP
# ---------------------

def test_schedule_endpoints(client, catalog):
    day = (local_today() + timedelta(days=4)).isoformat()

    created = client.post(
        f"/screens/{catalog.screen_id}/showtimes",
        json={"movie_id": catalog.movie_id, "start_time": f"{day}T10:00", "language": "English"},
    )
    assert created.status_code == 201

    clash = client.post(
        f"/screens/{catalog.screen_id}/showtimes",
        json={"movie_id": catalog.movie_id, "start_time": f"{day}T11:00", "language": "English"},
    )
    assert clash.status_code == 409
    assert "Interstellar" in clash.json()["detail"]

    batch = client.post(
        "/showtimes/batch",
        json={
            "movie_id": catalog.movie_id,
            "theater_id": catalog.theater_id,
            "screen_id": catalog.screen_id,
            "start_date": day,
            "end_date": day,
            "show_times": "14:00, 18:00",
            "language": "English",
        },
    )
    assert batch.status_code == 200
    assert len(batch.json()["showtimes"]) == 2

    bad_slots = client.post(
        "/showtimes/batch",
        json={
            "movie_id": catalog.movie_id,
            "theater_id": catalog.theater_id,
            "screen_id": catalog.screen_id,
            "start_date": day,
            "end_date": day,
            "show_times": "2pm",
            "language": "English",
        },
    )
    assert bad_slots.status_code == 400

    cancelled = client.delete(f"/showtimes/{created.json()['id']}")
    assert cancelled.status_code == 200
    assert cancelled.json()["cancelled_booking_ids"] == []
