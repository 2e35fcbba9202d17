# src/infrastructure/repositories/catalog_repository.py
"""
Read access to the externally owned catalog: movies, theaters,
screens, users and offers.
"""

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Movie, Offer, Screen, Theater, User


class CatalogRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_movie(self, movie_id: str) -> Movie | None:
        return self.db.get(Movie, movie_id)

    def get_screen(self, screen_id: str) -> Screen | None:
        return self.db.get(Screen, screen_id)

    def get_theater(self, theater_id: str) -> Theater | None:
        return self.db.get(Theater, theater_id)

    def get_user(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def list_active_offers(self) -> list[Offer]:
        stmt = (
            select(Offer)
            .where(Offer.is_active.is_(True))
            .order_by(Offer.title)
        )
        return list(self.db.execute(stmt).scalars().all())
