from decimal import Decimal


def _create_booking(client, seeded, booker, seats=2):
    response = client.post(
        "/bookings",
        json={
            "trip_id": seeded.trip_id,
            "booker_user_id": booker.id,
            "seats_count": seats,
            "segment_ids": seeded.segment_ids,
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_booking_flow(client, gateway, make_trip, make_user):
    seeded = make_trip(available_seats=4)
    booker = make_user("mona")

    booking = _create_booking(client, seeded, booker)
    assert booking["booking_status"] == "Pending"
    assert booking["payment_status"] == "Pending"
    assert Decimal(booking["total_amount"]) == Decimal("360.00")
    assert booking["trip"]["available_seats"] == 2
    assert [p["passenger_user_name"] for p in booking["passengers"]] == ["mona"]

    intent_response = client.post("/payments/intent", json={"booking_id": booking["booking_id"]})
    assert intent_response.status_code == 200, intent_response.text
    intent = intent_response.json()
    assert Decimal(intent["amount"]) == Decimal("18.00")
    assert intent["status"] == "Pending"
    assert intent["client_secret"] == "order_test_1_secret"
    assert intent["key_id"] == "rzp_test_key"

    gateway.statuses[intent["provider_intent_id"]] = "paid"
    status_response = client.get(f"/payments/{intent['payment_id']}/status")
    assert status_response.status_code == 200
    assert status_response.json()["status"] == "Succeeded"
    assert status_response.json()["paid_at"] is not None

    confirmed = client.get(f"/bookings/{booking['booking_id']}").json()
    assert confirmed["booking_status"] == "Confirmed"
    assert confirmed["payment_status"] == "Paid"
    assert all(p["check_in_status"] for p in confirmed["passengers"])

    payments = client.get(f"/payments/user/{booker.id}").json()
    assert [p["payment_id"] for p in payments] == [intent["payment_id"]]


def test_intent_with_payment_method_confirms_immediately(client, gateway, make_trip, make_user):
    seeded = make_trip()
    booking = _create_booking(client, seeded, make_user())

    response = client.post(
        "/payments/intent",
        json={"booking_id": booking["booking_id"], "payment_method_id": "pay_29QQoUBi66xm2f"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "Succeeded"
    assert gateway.confirm_calls == [("order_test_1", "pay_29QQoUBi66xm2f")]


def test_overbooking_is_a_conflict(client, make_trip, make_user):
    seeded = make_trip(available_seats=1)
    booker = make_user()

    response = client.post(
        "/bookings",
        json={"trip_id": seeded.trip_id, "booker_user_id": booker.id, "seats_count": 2},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "CAPACITY_ERROR"
    assert client.get(f"/trips/{seeded.trip_id}/availability").json()["available_seats"] == 1


def test_cancel_returns_seats(client, make_trip, make_user):
    seeded = make_trip(available_seats=4)
    booking = _create_booking(client, seeded, make_user(), seats=3)

    response = client.post(f"/bookings/{booking['booking_id']}/cancel")

    assert response.status_code == 200
    assert response.json()["booking_status"] == "Cancelled"
    assert client.get(f"/trips/{seeded.trip_id}/availability").json()["available_seats"] == 4


def test_update_and_delete(client, make_trip, make_user):
    seeded = make_trip(available_seats=5)
    booking = _create_booking(client, seeded, make_user(), seats=2)

    patched = client.patch(f"/bookings/{booking['booking_id']}", json={"seats_count": 4})
    assert patched.status_code == 200
    assert patched.json()["seats_count"] == 4
    assert client.get(f"/trips/{seeded.trip_id}/availability").json()["available_seats"] == 1

    deleted = client.delete(f"/bookings/{booking['booking_id']}")
    assert deleted.json() == {"booking_id": booking["booking_id"], "deleted": True}
    assert client.get(f"/trips/{seeded.trip_id}/availability").json()["available_seats"] == 5
    assert client.get(f"/bookings/{booking['booking_id']}").status_code == 404


def test_zero_fare_booking_cannot_be_paid(client, gateway, make_trip, make_user):
    seeded = make_trip()
    booker = make_user()
    booking = client.post(
        "/bookings",
        json={"trip_id": seeded.trip_id, "booker_user_id": booker.id, "seats_count": 1},
    ).json()

    response = client.post("/payments/intent", json={"booking_id": booking["booking_id"]})

    assert response.status_code == 400
    assert gateway.created == []


def test_status_refresh_gateway_failure(client, gateway, make_trip, make_user):
    seeded = make_trip()
    booking = _create_booking(client, seeded, make_user())
    intent = client.post("/payments/intent", json={"booking_id": booking["booking_id"]}).json()
    gateway.failing.add(intent["provider_intent_id"])

    response = client.get(f"/payments/{intent['payment_id']}/status")

    assert response.status_code == 502
    stored = client.get(f"/payments/{intent['payment_id']}").json()
    assert stored["status"] == "Pending"
    assert "Read timed out" in stored["last_error"]


def test_missing_resources(client):
    assert client.get("/bookings/missing").status_code == 404
    assert client.get("/payments/missing").status_code == 404
    assert client.post("/payments/intent", json={"booking_id": "missing"}).status_code == 404
    assert client.get("/trips/missing/availability").status_code == 404


def test_patch_cannot_mark_booking_paid(client, gateway, make_trip, make_user):
    seeded = make_trip()
    booking = _create_booking(client, seeded, make_user())

    response = client.patch(
        f"/bookings/{booking['booking_id']}",
        json={"payment_status": "Paid", "booking_status": "Confirmed"},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "VALIDATION_ERROR"
    unchanged = client.get(f"/bookings/{booking['booking_id']}").json()
    assert unchanged["booking_status"] == "Pending"
    assert unchanged["payment_status"] == "Pending"

    intent = client.post("/payments/intent", json={"booking_id": booking["booking_id"]})
    assert intent.status_code == 200
    assert Decimal(intent.json()["amount"]) == Decimal("18.00")
