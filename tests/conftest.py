# tests/conftest.py

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="cineplus-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'cineplus_test.db')}"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ.pop("SMTP_HOST", None)

from datetime import timedelta
import hashlib
import hmac
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from src.infrastructure.db.session import Base, SessionLocal, engine
from src.infrastructure.db.models import Movie, Screen, Seat, Showtime, Theater, User
from src.domain.scheduling import utc_now
from src.domain.state_machine import ShowtimeStatus
from src.main import app


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client():
    # No context manager: startup would wait for Postgres.
    return TestClient(app)


def _add_screen(db, theater: Theater, screen_number: str, rows: dict[str, int]) -> tuple[Screen, dict]:
    screen = Screen(theater_id=theater.id, screen_number=screen_number, total_seats=0)
    db.add(screen)
    db.flush()

    seats = {}
    for row, price_paise in rows.items():
        for number in range(1, 6):
            seat = Seat(
                screen_id=screen.id,
                seat_number=f"{row}{number}",
                row=row,
                number_in_row=number,
                seat_type="Premium" if price_paise > 20000 else "Regular",
                price_paise=price_paise,
            )
            db.add(seat)
            seats[seat.seat_number] = seat
    screen.total_seats = len(seats)
    db.flush()
    return screen, seats


@pytest.fixture
def catalog(db_session):
    """
    One theater with two screens plus a second theater.
    Screen 1 has seats A1-A5 (Rs. 200) and B1-B5 (Rs. 350).
    """
    db = db_session

    movie = Movie(title="Interstellar", duration_minutes=120, languages=["English", "Hindi"])
    long_movie = Movie(title="Extended Cut", duration_minutes=121, languages=["English"])
    theater = Theater(name="Cineplus Central", city="Pune")
    other_theater = Theater(name="Cineplus East", city="Mumbai")
    db.add_all([movie, long_movie, theater, other_theater])
    db.flush()

    screen, seats = _add_screen(db, theater, "1", {"A": 20000, "B": 35000})
    other_screen, other_seats = _add_screen(db, theater, "2", {"C": 20000})

    user = User(name="Ananya", email="ananya@example.com", role="user")
    other_user = User(name="Rahul", email="rahul@example.com", role="user")
    staff = User(
        name="Front Desk",
        email="staff@cineplus.example.com",
        role="theater_staff",
        theater_id=theater.id,
    )
    outside_staff = User(
        name="East Desk",
        email="east@cineplus.example.com",
        role="theater_staff",
        theater_id=other_theater.id,
    )
    db.add_all([user, other_user, staff, outside_staff])
    db.commit()

    return SimpleNamespace(
        movie_id=movie.id,
        long_movie_id=long_movie.id,
        theater_id=theater.id,
        other_theater_id=other_theater.id,
        screen_id=screen.id,
        other_screen_id=other_screen.id,
        seat_ids={number: seat.id for number, seat in seats.items()},
        other_seat_ids={number: seat.id for number, seat in other_seats.items()},
        user_id=user.id,
        other_user_id=other_user.id,
        staff_id=staff.id,
        outside_staff_id=outside_staff.id,
    )


@pytest.fixture
def make_showtime(db_session, catalog):
    """Inserts a showtime directly, bypassing the conflict checker."""

    def _make(start_time=None, movie_id=None, screen_id=None, status=ShowtimeStatus.SCHEDULED):
        showtime = Showtime(
            movie_id=movie_id or catalog.movie_id,
            screen_id=screen_id or catalog.screen_id,
            theater_id=catalog.theater_id,
            start_time=start_time or utc_now() + timedelta(days=1),
            language="English",
            status=status,
        )
        db_session.add(showtime)
        db_session.commit()
        return showtime.id

    return _make


@pytest.fixture
def sign_payment():
    secret = os.environ["RAZORPAY_KEY_SECRET"].encode("utf-8")

    def _sign(order_id: str, payment_id: str) -> str:
        # Same digest Razorpay checkout returns to the client.
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(secret, message, hashlib.sha256).hexdigest()

    return _sign
