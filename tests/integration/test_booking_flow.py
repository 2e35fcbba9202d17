from src.domain.state_machine import BookingStatus


def _create_booking(client, catalog, showtime_id, seats, user_id=None):
    return client.post(
        "/bookings",
        json={
            "user_id": user_id or catalog.user_id,
            "showtime_id": showtime_id,
            "seat_ids": [catalog.seat_ids[number] for number in seats],
        },
    )


def test_booking_flow(client, catalog, make_showtime, sign_payment):
    showtime_id = make_showtime()

    response = _create_booking(client, catalog, showtime_id, ["A1", "B2"])

    assert response.status_code == 201
    body = response.json()
    booking_id = body["booking_id"]
    assert body["status"] == BookingStatus.PENDING.value
    assert body["payment_status"] == "pending"
    assert body["subtotal_paise"] == 55000
    assert body["total_paise"] == 55000
    assert sorted(seat["seat_number"] for seat in body["seats"]) == ["A1", "B2"]

    layout = client.get(f"/showtimes/{showtime_id}/seats").json()
    unavailable = sorted(seat["seat_number"] for seat in layout if not seat["is_available"])
    assert unavailable == ["A1", "B2"]

    pay_response = client.post(
        f"/bookings/{booking_id}/payment/verify",
        json={
            "razorpay_order_id": "order_1",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign_payment("order_1", "pay_1"),
        },
    )
    assert pay_response.status_code == 200
    assert pay_response.json()["status"] == "active"
    assert pay_response.json()["payment_status"] == "paid"

    verify_response = client.post(
        "/bookings/verify-ticket",
        json={
            "booking_id": booking_id,
            "showtime_id": showtime_id,
            "verifier_id": catalog.staff_id,
        },
    )
    assert verify_response.status_code == 200
    assert verify_response.json()["status"] == "accepted"
    assert verify_response.json()["verified_by"] == catalog.staff_id

    again = client.post(
        "/bookings/verify-ticket",
        json={
            "booking_id": booking_id,
            "showtime_id": showtime_id,
            "verifier_id": catalog.staff_id,
        },
    )
    assert again.status_code == 409


def test_seat_conflict_names_the_taken_seats(client, catalog, make_showtime):
    showtime_id = make_showtime()
    assert _create_booking(client, catalog, showtime_id, ["A1", "A2"]).status_code == 201

    response = _create_booking(
        client, catalog, showtime_id, ["A2", "A3"], user_id=catalog.other_user_id
    )

    assert response.status_code == 409
    assert response.json()["detail"]["seat_numbers"] == ["A2"]


def test_invalid_signature_leaves_booking_pending(client, catalog, make_showtime):
    showtime_id = make_showtime()
    booking_id = _create_booking(client, catalog, showtime_id, ["A1"]).json()["booking_id"]

    response = client.post(
        f"/bookings/{booking_id}/payment/verify",
        json={
            "razorpay_order_id": "order_1",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "forged",
        },
    )
    assert response.status_code == 400

    bookings = client.get(f"/users/{catalog.user_id}/bookings").json()
    assert len(bookings) == 1
    assert bookings[0]["status"] == "pending"
    assert bookings[0]["payment_status"] == "pending"


def test_user_bookings_listing(client, catalog, make_showtime):
    showtime_id = make_showtime()
    first = _create_booking(client, catalog, showtime_id, ["A1", "A2"]).json()["booking_id"]
    second = _create_booking(client, catalog, showtime_id, ["B1"]).json()["booking_id"]

    bookings = client.get(f"/users/{catalog.user_id}/bookings").json()

    assert {item["booking_id"] for item in bookings} == {first, second}
    by_id = {item["booking_id"]: item for item in bookings}
    assert by_id[first]["seat_numbers"] == ["A1", "A2"]
    assert by_id[first]["number_of_seats"] == 2
    assert by_id[first]["movie_title"] == "Interstellar"
    assert by_id[first]["theater_name"] == "Cineplus Central"
    assert by_id[second]["total_paise"] == 35000


def test_validation_and_missing_resources(client, catalog, make_showtime):
    showtime_id = make_showtime()

    empty = client.post(
        "/bookings",
        json={"user_id": catalog.user_id, "showtime_id": showtime_id, "seat_ids": []},
    )
    assert empty.status_code == 400

    missing = client.post(
        "/bookings",
        json={
            "user_id": catalog.user_id,
            "showtime_id": "00000000-0000-0000-0000-000000000000",
            "seat_ids": [catalog.seat_ids["A1"]],
        },
    )
    assert missing.status_code == 404

    assert client.get("/showtimes/does-not-exist/seats").status_code == 404


def test_showtime_details_counts_available_seats(client, catalog, make_showtime):
    showtime_id = make_showtime()
    _create_booking(client, catalog, showtime_id, ["A1", "A2", "A3"])

    details = client.get(f"/showtimes/{showtime_id}").json()

    assert details["total_seats"] == 10
    assert details["available_seats"] == 7
    assert details["movie_title"] == "Interstellar"
    assert details["theater_city"] == "Pune"


def test_booking_events_are_dispatched_after_commit(client, catalog, make_showtime):
    showtime_id = make_showtime()
    booking_id = _create_booking(client, catalog, showtime_id, ["A1"]).json()["booking_id"]

    published = client.get("/outbox/events", params={"status_filter": "PUBLISHED"}).json()

    assert [(item["aggregate_id"], item["event_type"]) for item in published] == [
        (booking_id, "BOOKING_CREATED")
    ]
    assert client.get("/outbox/events").json() == []
