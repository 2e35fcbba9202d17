from datetime import datetime, timedelta

from sqlalchemy import select

from src.application.availability import format_seat_number
from src.domain.offer_engine import DiscountType, OfferScope, OfferType
from src.domain.scheduling import TARGET_TIMEZONE, to_utc
from src.infrastructure.db.models import Movie, Offer, Screen, Seat, Theater, User
from src.infrastructure.db.session import SessionLocal


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now_ist = datetime.now(TARGET_TIMEZONE)
    target = now_ist + timedelta(days=days_from_now)
    return to_utc(target.replace(hour=hour, minute=minute, second=0, microsecond=0))


def _get_or_create(db, model, lookup: dict, **values):
    stmt = select(model)
    for field, value in lookup.items():
        stmt = stmt.where(getattr(model, field) == value)
    existing = db.execute(stmt).scalar_one_or_none()
    if existing:
        for field, value in values.items():
            setattr(existing, field, value)
        return existing

    item = model(**lookup, **values)
    db.add(item)
    db.flush()
    return item


def seed_catalog(db) -> None:
    movie_defs = [
        {"title": "Interstellar", "duration_minutes": 169, "languages": ["English", "Hindi"]},
        {"title": "3 Idiots", "duration_minutes": 170, "languages": ["Hindi"]},
    ]
    for item in movie_defs:
        _get_or_create(
            db,
            Movie,
            {"title": item["title"]},
            duration_minutes=item["duration_minutes"],
            languages=item["languages"],
        )

    theater = _get_or_create(db, Theater, {"name": "Cineplus Central"}, city="Pune")
    screen = _get_or_create(db, Screen, {"theater_id": theater.id, "screen_number": "1"})

    if not db.execute(select(Seat).where(Seat.screen_id == screen.id)).first():
        layout = [("A", "Regular", 20000), ("B", "Regular", 20000), ("C", "Premium", 35000)]
        for row, seat_type, price_paise in layout:
            for number in range(1, 11):
                db.add(
                    Seat(
                        screen_id=screen.id,
                        seat_number=format_seat_number(row, number),
                        row=row,
                        number_in_row=number,
                        seat_type=seat_type,
                        price_paise=price_paise,
                    )
                )
        screen.total_seats = len(layout) * 10

    _get_or_create(db, User, {"email": "ananya@example.com"}, name="Ananya", role="user")
    _get_or_create(
        db,
        User,
        {"email": "staff@cineplus.example.com"},
        name="Front Desk",
        role="theater_staff",
        theater_id=theater.id,
    )


def seed_offers(db) -> None:
    _get_or_create(
        db,
        Offer,
        {"title": "Group of 4: 10% off"},
        type=OfferType.CONDITIONAL,
        scope=OfferScope.ALL,
        discount_type=DiscountType.PERCENTAGE,
        discount_value=10,
        min_tickets=4,
        is_active=True,
        ends_at=_dt(days_from_now=30, hour=23, minute=59),
    )
    _get_or_create(
        db,
        Offer,
        {"title": "First booking: Rs. 100 off"},
        type=OfferType.PROMOCODE,
        scope=OfferScope.FIRST_TIME,
        discount_type=DiscountType.FLAT,
        discount_value=10000,
        code="WELCOME100",
        is_active=True,
    )


def main() -> None:
    db = SessionLocal()
    try:
        seed_catalog(db)
        seed_offers(db)
        db.commit()
        print("Seed complete: 2 movies, Cineplus Central screen 1 with 30 seats, 2 users, 2 offers added.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
