from pydantic import BaseModel, Field


class BookingRequest(BaseModel):
    user_id: str
    showtime_id: str
    seat_ids: list[str]


class BookedSeatResponse(BaseModel):
    seat_id: str
    seat_number: str
    price_paise: int


class BookingResponse(BaseModel):
    booking_id: str
    status: str
    payment_status: str
    subtotal_paise: int
    discount_paise: int
    total_paise: int
    applied_offer_id: str | None = None
    seats: list[BookedSeatResponse]


class CancelBookingRequest(BaseModel):
    user_id: str


class PaymentVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class VerifyTicketRequest(BaseModel):
    booking_id: str
    showtime_id: str
    verifier_id: str


class VerifyTicketResponse(BaseModel):
    booking_id: str
    status: str
    verified_at: str
    verified_by: str
    message: str


class ApplyOfferRequest(BaseModel):
    user_id: str
    promo_code: str | None = None


class AppliedOfferResponse(BaseModel):
    id: str
    title: str
    type: str
    discount_type: str
    discount_value: int


class OfferEvaluateRequest(BaseModel):
    num_tickets: int = Field(ge=0)
    subtotal_paise: int = Field(ge=0)
    movie_id: str | None = None
    is_first_booking: bool = False
    promo_code: str | None = None


class OfferEvaluationResponse(BaseModel):
    discount_paise: int
    final_total_paise: int
    applied_offer: AppliedOfferResponse | None = None


class UserBookingResponse(BaseModel):
    booking_id: str
    booking_date: str
    status: str
    payment_status: str
    subtotal_paise: int
    discount_paise: int
    total_paise: int
    start_time: str
    movie_title: str
    theater_name: str
    theater_city: str
    screen_number: str
    seat_numbers: list[str]
    number_of_seats: int


class SeatLayoutResponse(BaseModel):
    seat_id: str
    seat_number: str
    row: str
    number_in_row: float
    seat_type: str
    price_paise: int
    is_available: bool


class SeatInput(BaseModel):
    row: str
    number_in_row: float = Field(ge=0)
    seat_type: str = "Regular"
    price_paise: int = Field(ge=0)


class ReplaceSeatsRequest(BaseModel):
    seats: list[SeatInput]


class ReplaceSeatsResponse(BaseModel):
    screen_id: str
    total_seats: int
    seats: list[SeatLayoutResponse]


class ShowtimeCreate(BaseModel):
    movie_id: str
    start_time: str
    language: str


class ShowtimeBatchCreate(BaseModel):
    movie_id: str
    theater_id: str
    screen_id: str
    start_date: str
    end_date: str
    show_times: str | list[str]
    language: str


class ShowtimeUpdate(BaseModel):
    movie_id: str | None = None
    screen_id: str | None = None
    start_time: str | None = None
    language: str | None = None


class ShowtimeResponse(BaseModel):
    id: str
    movie_id: str
    screen_id: str
    theater_id: str
    start_time: str
    language: str
    status: str


class ShowtimeBatchResponse(BaseModel):
    message: str
    showtimes: list[ShowtimeResponse]


class ShowtimeDetailsResponse(BaseModel):
    showtime_id: str
    start_time: str
    show_language: str
    showtime_status: str
    movie_id: str
    movie_title: str
    duration_minutes: int
    screen_id: str
    screen_number: str
    theater_id: str
    theater_name: str
    theater_city: str
    total_seats: int
    available_seats: int


class ShowtimeCancelResponse(BaseModel):
    message: str
    cancelled_showtime_id: str
    cancelled_booking_ids: list[str]


class CompleteShowtimesResponse(BaseModel):
    completed: int


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str
    last_error: str | None = None


class OutboxDispatchResponse(BaseModel):
    published: int
    retried: int
    failed: int
