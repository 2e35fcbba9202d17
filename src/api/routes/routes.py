from contextlib import contextmanager
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError

from src.infrastructure.db.session import SessionLocal
from src.application.availability import get_seat_layout, replace_screen_seats
from src.application.booking_service import BookingService, load_offer_rules
from src.application.notification_dispatcher import (
    NotificationDispatcher,
    dispatch_outbox_in_background,
)
from src.application.showtime_service import ShowtimeService
from src.api.schemas.schemas import (
    AppliedOfferResponse,
    ApplyOfferRequest,
    BookedSeatResponse,
    BookingRequest,
    BookingResponse,
    CancelBookingRequest,
    CompleteShowtimesResponse,
    OfferEvaluateRequest,
    OfferEvaluationResponse,
    OutboxDispatchResponse,
    OutboxEventResponse,
    PaymentVerifyRequest,
    ReplaceSeatsRequest,
    ReplaceSeatsResponse,
    SeatLayoutResponse,
    ShowtimeBatchCreate,
    ShowtimeBatchResponse,
    ShowtimeCancelResponse,
    ShowtimeCreate,
    ShowtimeDetailsResponse,
    ShowtimeResponse,
    ShowtimeUpdate,
    UserBookingResponse,
    VerifyTicketRequest,
    VerifyTicketResponse,
)
from src.domain.exceptions import (
    BookingEngineError,
    ConflictError,
    ExternalServiceError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    PaymentVerificationError,
    RetryableStoreError,
    SeatsUnavailableError,
    ValidationError,
)
from src.domain.offer_engine import Cart, OfferEvaluation, evaluate_best_offer
from src.domain.scheduling import parse_date, parse_local_datetime, parse_time_slots, to_utc, utc_now
from src.infrastructure.db.models import Booking, Showtime
from src.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS_CODES: list[tuple[type[BookingEngineError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PaymentVerificationError, status.HTTP_400_BAD_REQUEST),
    (NotAuthorizedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (RetryableStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _iso(value: datetime | None) -> str | None:
    return to_utc(value).isoformat() if value else None


def _is_db_degraded(exc: Exception) -> bool:
    return isinstance(exc, (OperationalError, SQLAlchemyTimeoutError))


def _http_error(exc: BookingEngineError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for exc_type, code in _ERROR_STATUS_CODES:
        if isinstance(exc, exc_type):
            status_code = code
            break

    if isinstance(exc, SeatsUnavailableError):
        return HTTPException(
            status_code=status_code,
            detail={"message": str(exc), "seat_numbers": exc.seat_numbers},
        )
    return HTTPException(status_code=status_code, detail=str(exc))


@contextmanager
def _translate_errors(db: Session):
    try:
        yield
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        if not _is_db_degraded(exc):
            raise
        db.rollback()
        logger.warning("Store unavailable, transaction aborted: %s", exc)
        raise _http_error(
            RetryableStoreError("Database is currently degraded. Please retry.")
        ) from exc


def _commit_and_dispatch(db: Session, background_tasks: BackgroundTasks) -> None:
    # Dispatch reads the outbox from its own session, so commit first.
    with _translate_errors(db):
        db.commit()
    background_tasks.add_task(dispatch_outbox_in_background)


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        status=booking.status.value,
        payment_status=booking.payment_status.value,
        subtotal_paise=booking.subtotal_paise,
        discount_paise=booking.discount_paise,
        total_paise=booking.total_paise,
        applied_offer_id=booking.applied_offer_id,
        seats=[
            BookedSeatResponse(
                seat_id=seat.seat_id,
                seat_number=seat.seat_number,
                price_paise=seat.price_paise,
            )
            for seat in booking.seats
        ],
    )


def _showtime_response(showtime: Showtime) -> ShowtimeResponse:
    return ShowtimeResponse(
        id=showtime.id,
        movie_id=showtime.movie_id,
        screen_id=showtime.screen_id,
        theater_id=showtime.theater_id,
        start_time=_iso(showtime.start_time),
        language=showtime.language,
        status=showtime.status.value,
    )


def _offer_evaluation_response(result: OfferEvaluation) -> OfferEvaluationResponse:
    applied = result.applied_offer
    return OfferEvaluationResponse(
        discount_paise=result.discount_paise,
        final_total_paise=result.final_total_paise,
        applied_offer=AppliedOfferResponse(
            id=applied.id,
            title=applied.title,
            type=applied.type.value,
            discount_type=applied.discount_type.value,
            discount_value=applied.discount_value,
        ) if applied else None,
    )


def _outbox_event_response(item) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        created_at=_iso(item.created_at),
        last_error=item.last_error,
    )


@router.get("/health")
def health():
    return {"message": "Cineplus Booking Engine is running"}


# -----------------------------
# Showtimes and seats
# -----------------------------
@router.get("/showtimes/{showtime_id}", response_model=ShowtimeDetailsResponse)
def get_showtime_details(
    showtime_id: str,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        details = ShowtimeService(db).get_showtime_details(showtime_id)

    showtime = details.showtime
    return ShowtimeDetailsResponse(
        showtime_id=showtime.id,
        start_time=_iso(showtime.start_time),
        show_language=showtime.language,
        showtime_status=showtime.status.value,
        movie_id=details.movie.id,
        movie_title=details.movie.title,
        duration_minutes=details.movie.duration_minutes,
        screen_id=details.screen.id,
        screen_number=details.screen.screen_number,
        theater_id=showtime.theater_id,
        theater_name=details.theater_name,
        theater_city=details.theater_city,
        total_seats=details.total_seats,
        available_seats=details.available_seats,
    )


@router.get("/showtimes/{showtime_id}/seats", response_model=list[SeatLayoutResponse])
def seat_layout(
    showtime_id: str,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        layout = get_seat_layout(db, showtime_id)

    return [
        SeatLayoutResponse(
            seat_id=entry.seat_id,
            seat_number=entry.seat_number,
            row=entry.row,
            number_in_row=entry.number_in_row,
            seat_type=entry.seat_type,
            price_paise=entry.price_paise,
            is_available=entry.is_available,
        )
        for entry in layout
    ]


@router.put("/screens/{screen_id}/seats", response_model=ReplaceSeatsResponse)
def update_screen_seats(
    screen_id: str,
    request: ReplaceSeatsRequest,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        seats = replace_screen_seats(
            db,
            screen_id,
            [seat.model_dump() for seat in request.seats],
        )

    return ReplaceSeatsResponse(
        screen_id=screen_id,
        total_seats=len(seats),
        seats=[
            SeatLayoutResponse(
                seat_id=seat.id,
                seat_number=seat.seat_number,
                row=seat.row,
                number_in_row=seat.number_in_row,
                seat_type=seat.seat_type,
                price_paise=seat.price_paise,
                is_available=True,
            )
            for seat in seats
        ],
    )


@router.post(
    "/screens/{screen_id}/showtimes",
    response_model=ShowtimeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_showtime(
    screen_id: str,
    request: ShowtimeCreate,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        showtime = ShowtimeService(db).create_showtime(
            movie_id=request.movie_id,
            screen_id=screen_id,
            start_time=parse_local_datetime(request.start_time),
            language=request.language,
        )
    return _showtime_response(showtime)


@router.post("/showtimes/batch", response_model=ShowtimeBatchResponse)
def create_showtimes_batch(
    request: ShowtimeBatchCreate,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        showtimes = ShowtimeService(db).create_showtimes_batch(
            movie_id=request.movie_id,
            theater_id=request.theater_id,
            screen_id=request.screen_id,
            start_date=parse_date(request.start_date),
            end_date=parse_date(request.end_date),
            slots=parse_time_slots(request.show_times),
            language=request.language,
        )

    if not showtimes:
        message = "No valid future showtimes could be added. They might be in the past."
    else:
        message = (
            f"Successfully added {len(showtimes)} showtimes between "
            f"{request.start_date} and {request.end_date} (IST)."
        )
    return ShowtimeBatchResponse(
        message=message,
        showtimes=[_showtime_response(item) for item in showtimes],
    )


@router.patch("/showtimes/{showtime_id}", response_model=ShowtimeResponse)
def update_showtime(
    showtime_id: str,
    request: ShowtimeUpdate,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        showtime = ShowtimeService(db).update_showtime(
            showtime_id=showtime_id,
            movie_id=request.movie_id,
            screen_id=request.screen_id,
            start_time=parse_local_datetime(request.start_time) if request.start_time else None,
            language=request.language,
        )
    return _showtime_response(showtime)


@router.delete("/showtimes/{showtime_id}", response_model=ShowtimeCancelResponse)
def cancel_showtime(
    showtime_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        result = ShowtimeService(db).cancel_showtime(showtime_id)

    response = ShowtimeCancelResponse(
        message="Showtime cancelled successfully",
        cancelled_showtime_id=showtime_id,
        cancelled_booking_ids=result.cancelled_booking_ids,
    )
    _commit_and_dispatch(db, background_tasks)
    return response


@router.post("/showtimes/complete-elapsed", response_model=CompleteShowtimesResponse)
def complete_elapsed_showtimes(db: Session = Depends(get_db)):
    with _translate_errors(db):
        completed = ShowtimeService(db).complete_elapsed_showtimes()
    return CompleteShowtimesResponse(completed=completed)


# -----------------------------
# Bookings
# -----------------------------
@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    request: BookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        booking = BookingService(db).create_booking(
            user_id=request.user_id,
            showtime_id=request.showtime_id,
            seat_ids=request.seat_ids,
        )

    response = _booking_response(booking)
    _commit_and_dispatch(db, background_tasks)
    return response


@router.get("/users/{user_id}/bookings", response_model=list[UserBookingResponse])
def list_user_bookings(
    user_id: str,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        views = BookingService(db).list_user_bookings(user_id)

    return [
        UserBookingResponse(
            booking_id=view.booking_id,
            booking_date=_iso(view.created_at),
            status=view.status.value,
            payment_status=view.payment_status.value,
            subtotal_paise=view.subtotal_paise,
            discount_paise=view.discount_paise,
            total_paise=view.total_paise,
            start_time=_iso(view.start_time),
            movie_title=view.movie_title,
            theater_name=view.theater_name,
            theater_city=view.theater_city,
            screen_number=view.screen_number,
            seat_numbers=view.seat_numbers,
            number_of_seats=len(view.seat_numbers),
        )
        for view in views
    ]


@router.post("/bookings/verify-ticket", response_model=VerifyTicketResponse)
def verify_ticket(
    request: VerifyTicketRequest,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        booking = BookingService(db).verify_ticket(
            booking_id=request.booking_id,
            showtime_id=request.showtime_id,
            verifier_id=request.verifier_id,
        )

    return VerifyTicketResponse(
        booking_id=booking.id,
        status=booking.status.value,
        verified_at=_iso(booking.verified_at),
        verified_by=booking.verified_by,
        message="Ticket verified successfully!",
    )


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        booking = BookingService(db).cancel_booking(
            booking_id=booking_id,
            user_id=request.user_id,
        )

    response = _booking_response(booking)
    _commit_and_dispatch(db, background_tasks)
    return response


@router.post("/bookings/{booking_id}/payment/verify", response_model=BookingResponse)
def verify_booking_payment(
    booking_id: str,
    request: PaymentVerifyRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        booking = BookingService(db).confirm_payment(
            booking_id=booking_id,
            order_id=request.razorpay_order_id,
            payment_id=request.razorpay_payment_id,
            signature=request.razorpay_signature,
        )

    response = _booking_response(booking)
    _commit_and_dispatch(db, background_tasks)
    return response


@router.post("/bookings/{booking_id}/apply-offer", response_model=BookingResponse)
def apply_offer(
    booking_id: str,
    request: ApplyOfferRequest,
    db: Session = Depends(get_db),
):
    with _translate_errors(db):
        booking, _ = BookingService(db).apply_offer(
            booking_id=booking_id,
            user_id=request.user_id,
            promo_code=request.promo_code,
        )
    return _booking_response(booking)


@router.post("/offers/evaluate", response_model=OfferEvaluationResponse)
def evaluate_offers(
    request: OfferEvaluateRequest,
    db: Session = Depends(get_db),
):
    cart = Cart(
        num_tickets=request.num_tickets,
        subtotal_paise=request.subtotal_paise,
        movie_id=request.movie_id,
        is_first_booking=request.is_first_booking,
    )
    with _translate_errors(db):
        result = evaluate_best_offer(cart, request.promo_code, load_offer_rules(db), utc_now())
    return _offer_evaluation_response(result)


# -----------------------------
# Outbox
# -----------------------------
@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_event_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    item = OutboxRepository(db).get_by_id(event_id, for_update=True)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )

    item.status = "PUBLISHED"
    item.published_at = datetime.now(timezone.utc)
    item.attempts += 1
    return _outbox_event_response(item)


@router.post("/outbox/dispatch", response_model=OutboxDispatchResponse)
def dispatch_outbox(
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    with _translate_errors(db):
        result = NotificationDispatcher(db).dispatch_pending(limit=safe_limit)
    return OutboxDispatchResponse(
        published=result.published,
        retried=result.retried,
        failed=result.failed,
    )
