from datetime import date, timedelta

from models import db
from models.booking import Booking


def _days(n):
    return (date.today() + timedelta(days=n)).isoformat()


def _payload(car, start=5, end=8, **extra):
    body = {
        "carId": car.id,
        "startDate": _days(start),
        "endDate": _days(end),
        "pickupLocation": "Airport",
        "dropoffLocation": "City Centre",
    }
    body.update(extra)
    return body


def test_create_booking(client, make_user, make_car, login):
    user = make_user()
    car = make_car(price=100)
    headers = login(user)

    resp = client.post("/bookings", json=_payload(car, specialRequests="Child seat"), headers=headers)

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["totalDays"] == 3
    assert data["totalAmount"] == 300
    assert data["status"] == "Pending"
    assert data["paymentStatus"] == "Pending"
    assert data["specialRequests"] == "Child seat"
    assert data["car"]["registrationNumber"] == car.registration_number
    assert data["user"]["id"] == user.id
    assert data["nextStatuses"] == ["Confirmed", "Cancelled"]


def test_create_requires_auth(client, make_car):
    resp = client.post("/bookings", json=_payload(make_car()))
    assert resp.status_code == 401


def test_create_errors(client, make_user, make_car, login):
    headers = login(make_user())
    car = make_car()

    missing = dict(_payload(car))
    del missing["pickupLocation"]
    assert client.post("/bookings", json=missing, headers=headers).status_code == 400

    assert client.post("/bookings", json=_payload(car, start=-2, end=2), headers=headers).status_code == 400

    resp = client.post("/bookings", json=dict(_payload(car), carId=999), headers=headers)
    assert resp.status_code == 404

    resp = client.post("/bookings", json=_payload(make_car(available=False)), headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Car is not available"


def test_overlap_is_conflict(client, make_user, make_car, login):
    car = make_car()
    assert client.post("/bookings", json=_payload(car, 5, 8), headers=login(make_user())).status_code == 201

    resp = client.post("/bookings", json=_payload(car, 7, 9), headers=login(make_user()))
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Car is already booked for the selected dates"
    assert Booking.query.count() == 1


def test_retry_of_same_request_does_not_duplicate(client, make_user, make_car, login):
    headers = login(make_user())
    car = make_car()
    assert client.post("/bookings", json=_payload(car), headers=headers).status_code == 201
    assert client.post("/bookings", json=_payload(car), headers=headers).status_code == 409


def test_my_bookings_are_scoped(client, make_user, make_car, login):
    alice, bob = make_user(), make_user()
    car = make_car()
    client.post("/bookings", json=_payload(car, 2, 3), headers=login(alice))
    client.post("/bookings", json=_payload(car, 10, 12), headers=login(alice))
    client.post("/bookings", json=_payload(car, 20, 21), headers=login(bob))

    mine = client.get("/bookings/my", headers=login(alice)).get_json()
    assert len(mine) == 2
    assert {b["userId"] for b in mine} == {alice.id}
    # newest first
    assert mine[0]["startDate"] == _days(10)


def test_cancel_flow(client, make_user, make_car, login):
    owner, stranger = make_user(), make_user()
    car = make_car()
    booking_id = client.post("/bookings", json=_payload(car), headers=login(owner)).get_json()["id"]

    resp = client.put(f"/bookings/{booking_id}/cancel", headers=login(stranger))
    assert resp.status_code == 403

    resp = client.put(f"/bookings/{booking_id}/cancel", headers=login(owner))
    assert resp.status_code == 200
    assert resp.get_json()["booking"]["status"] == "Cancelled"

    again = client.put(f"/bookings/{booking_id}/cancel", headers=login(owner))
    assert again.status_code == 400
    assert again.get_json()["error"] == "Booking is already cancelled"

    assert client.put("/bookings/999/cancel", headers=login(owner)).status_code == 404

    # dates are free again
    assert client.post("/bookings", json=_payload(car), headers=login(stranger)).status_code == 201


def test_admin_cancels_any_booking(client, make_user, make_car, login):
    owner = make_user()
    admin = make_user(admin=True)
    booking_id = client.post("/bookings", json=_payload(make_car()), headers=login(owner)).get_json()["id"]

    resp = client.put(f"/bookings/{booking_id}/cancel", headers=login(admin))
    assert resp.status_code == 200
    assert db.session.get(Booking, booking_id).status == "Cancelled"


def test_non_object_json_body_is_rejected(client, make_user, login):
    headers = login(make_user())

    for path in ("/bookings", "/payment/confirm"):
        resp = client.post(path, json=[1, 2], headers=headers)
        assert resp.status_code == 400, path
        assert resp.get_json() == {"error": "JSON object body required"}

    assert client.post("/auth/login", json="alice@example.com").status_code == 400
    assert client.post("/auth/register", json=[{"email": "x@example.com"}]).status_code == 400


def test_out_of_range_ids(client, make_user, make_car, login):
    headers = login(make_user())
    car = make_car()

    for car_id in (10 ** 30, 0, -3, "12abc"):
        resp = client.post("/bookings", json=_payload(car, carId=car_id), headers=headers)
        assert resp.status_code == 400, car_id
        assert resp.get_json()["error"] == "Invalid carId"

    huge = 10 ** 30
    assert client.put(f"/bookings/{huge}/cancel", headers=headers).status_code == 404
    assert client.get(f"/cars/{huge}").status_code == 404
    assert client.post("/payment/confirm", json={"bookingId": huge}, headers=headers).status_code == 400
