"""
Periodic sweep: marks scheduled showtimes completed once their occupied
interval has elapsed. Meant to be run from cron, e.g. every 15 minutes.
"""

import logging
import os

from src.application.showtime_service import ShowtimeService
from src.infrastructure.db.session import get_db_session


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    with get_db_session() as db:
        completed = ShowtimeService(db).complete_elapsed_showtimes()
    print(f"Completion sweep done: {completed} showtimes marked completed.")


if __name__ == "__main__":
    main()
