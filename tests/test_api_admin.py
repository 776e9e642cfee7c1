import io
import os
from datetime import date, timedelta

from models import db
from models.booking import Booking
from models.car import Car


def _days(n):
    return (date.today() + timedelta(days=n)).isoformat()


def _book(client, headers, car, start=3, end=6):
    resp = client.post("/bookings", json={
        "carId": car.id,
        "startDate": _days(start),
        "endDate": _days(end),
        "pickupLocation": "Airport",
        "dropoffLocation": "Airport",
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["id"]


CAR_FORM = {
    "name": "Model 3 Long Range",
    "brand": "Tesla",
    "model": "Model 3",
    "year": "2023",
    "color": "Red",
    "fuelType": "Electric",
    "transmission": "Automatic",
    "seats": "5",
    "pricePerDay": "120",
    "location": "Downtown",
    "registrationNumber": "ev-1001",
    "features": "GPS, Autopilot , Bluetooth",
}


def test_admin_routes_require_admin(client, make_user, login):
    headers = login(make_user())
    assert client.get("/admin/stats").status_code == 401
    resp = client.get("/admin/stats", headers=headers)
    assert resp.status_code == 403
    assert client.get("/admin/bookings", headers=headers).status_code == 403
    assert client.post("/admin/cars", json=CAR_FORM, headers=headers).status_code == 403


def test_create_car_with_images(app, client, make_user, login):
    headers = login(make_user(admin=True))
    form = dict(CAR_FORM)
    form["images"] = [
        (io.BytesIO(b"\x89PNG fake"), "front.png", "image/png"),
        (io.BytesIO(b"\xff\xd8 fake"), "side.jpg", "image/jpeg"),
    ]

    resp = client.post("/admin/cars", data=form, headers=headers, content_type="multipart/form-data")

    assert resp.status_code == 201, resp.get_json()
    car = resp.get_json()
    assert car["pricePerDay"] == 120
    assert car["registrationNumber"] == "EV-1001"
    assert car["features"] == ["GPS", "Autopilot", "Bluetooth"]
    assert len(car["images"]) == 2
    stored = os.path.join(app.config["UPLOAD_FOLDER"], car["images"][0].split("/", 1)[1])
    assert os.path.exists(stored)

    served = client.get("/" + car["images"][0])
    assert served.status_code == 200


def test_create_car_rejects_non_images_and_too_many(client, make_user, login):
    headers = login(make_user(admin=True))

    form = dict(CAR_FORM, images=[(io.BytesIO(b"hello"), "notes.txt", "text/plain")])
    resp = client.post("/admin/cars", data=form, headers=headers, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Only image files are allowed"

    form = dict(CAR_FORM, images=[(io.BytesIO(b"x"), f"{i}.png", "image/png") for i in range(6)])
    resp = client.post("/admin/cars", data=form, headers=headers, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert Car.query.count() == 0


def test_create_car_validation_and_duplicates(client, make_user, login):
    headers = login(make_user(admin=True))

    resp = client.post("/admin/cars", json={"name": "Incomplete"}, headers=headers)
    assert resp.status_code == 400
    assert "brand" in resp.get_json()["details"]["missing"]

    assert client.post("/admin/cars", json=dict(CAR_FORM, fuelType="Steam"), headers=headers).status_code == 400
    assert client.post("/admin/cars", json=dict(CAR_FORM, seats=12), headers=headers).status_code == 400

    assert client.post("/admin/cars", json=CAR_FORM, headers=headers).status_code == 201
    dup = client.post("/admin/cars", json=dict(CAR_FORM, registrationNumber="EV-1001"), headers=headers)
    assert dup.status_code == 409


def test_update_car_keeps_booking_amounts(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    car = make_car(price=50)
    booking_id = _book(client, login(make_user()), car)

    resp = client.put(f"/admin/cars/{car.id}", json={"pricePerDay": 90, "isAvailable": False}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()["pricePerDay"] == 90
    assert resp.get_json()["isAvailable"] is False

    assert db.session.get(Booking, booking_id).total_amount == 150
    assert client.put("/admin/cars/999", json={"color": "Blue"}, headers=admin_headers).status_code == 404


def test_catalog_filters(client, make_car):
    make_car(price=40, brand="Toyota", fuel_type="Hybrid")
    make_car(price=90, brand="BMW", transmission="Manual")
    make_car(price=150, brand="bmw", available=False)

    def ids(query):
        return [c["pricePerDay"] for c in client.get("/cars" + query).get_json()]

    assert sorted(ids("")) == [40, 90, 150]
    assert sorted(ids("?brand=BM")) == [90, 150]
    assert ids("?fuelType=Hybrid") == [40]
    assert ids("?transmission=Manual") == [90]
    assert sorted(ids("?minPrice=50&maxPrice=150")) == [90, 150]
    assert sorted(ids("?available=true")) == [40, 90]
    assert client.get("/cars?minPrice=cheap").status_code == 400


def test_car_detail(client, make_car):
    car = make_car()
    assert client.get(f"/cars/{car.id}").get_json()["id"] == car.id
    assert client.get("/cars/999").status_code == 404


def test_delete_car_blocked_by_pending_booking(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    car = make_car()
    _book(client, login(make_user()), car)

    resp = client.delete(f"/admin/cars/{car.id}", headers=admin_headers)
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot delete car with active bookings"


def test_delete_car_with_only_finished_bookings(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    customer = login(make_user())
    car = make_car()
    cancelled = _book(client, customer, car, 2, 4)
    client.put(f"/bookings/{cancelled}/cancel", headers=customer)
    completed = _book(client, customer, car, 5, 6)
    db.session.get(Booking, completed).status = "Completed"
    db.session.commit()

    resp = client.delete(f"/admin/cars/{car.id}", headers=admin_headers)
    assert resp.status_code == 200
    assert client.get(f"/cars/{car.id}").status_code == 404
    # history stays readable
    assert db.session.get(Booking, completed).car.registration_number == car.registration_number


def test_delete_car_without_bookings_removes_row(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    car_id = make_car().id
    assert client.delete(f"/admin/cars/{car_id}", headers=admin_headers).status_code == 200
    assert db.session.get(Car, car_id) is None


def test_admin_booking_updates(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    booking_id = _book(client, login(make_user()), make_car())

    def put(body):
        return client.put(f"/admin/bookings/{booking_id}", json=body, headers=admin_headers)

    assert put({"status": "Confirmed"}).get_json()["nextStatuses"] == ["Cancelled"]

    blocked = put({"status": "Active"})
    assert blocked.status_code == 400
    assert blocked.get_json()["error"] == "Booking must be paid before it can become Active"

    assert put({"paymentStatus": "Paid"}).get_json()["nextStatuses"] == ["Active", "Cancelled"]
    assert put({"status": "Active"}).get_json()["status"] == "Active"

    assert put({"status": "Pending"}).status_code == 400
    assert put({"status": "Bogus"}).status_code == 400
    assert put({"totalAmount": 1}).status_code == 400
    assert client.put("/admin/bookings/999", json={"status": "Confirmed"}, headers=admin_headers).status_code == 404


def test_admin_lists_all_bookings(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    car = make_car()
    _book(client, login(make_user()), car, 2, 3)
    second = _book(client, login(make_user()), car, 5, 6)
    client.put(f"/admin/bookings/{second}", json={"status": "Confirmed"}, headers=admin_headers)

    rows = client.get("/admin/bookings", headers=admin_headers).get_json()
    assert len(rows) == 2
    assert all(r["user"]["email"] for r in rows)

    confirmed = client.get("/admin/bookings?status=Confirmed", headers=admin_headers).get_json()
    assert [r["id"] for r in confirmed] == [second]
    assert client.get("/admin/bookings?status=nope", headers=admin_headers).status_code == 400


def test_stats(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    customer = login(make_user())
    make_user()
    car = make_car(price=100)
    make_car(available=False)

    paid = _book(client, customer, car, 2, 5)
    _book(client, customer, car, 10, 11)
    client.put(f"/admin/bookings/{paid}", json={"status": "Confirmed", "paymentStatus": "Paid"}, headers=admin_headers)
    client.put(f"/admin/bookings/{paid}", json={"status": "Active"}, headers=admin_headers)

    stats = client.get("/admin/stats", headers=admin_headers).get_json()
    assert stats == {
        "totalCars": 2,
        "availableCars": 1,
        "totalUsers": 2,
        "totalBookings": 2,
        "activeBookings": 1,
        "totalRevenue": 300,
    }


def test_admin_update_rejects_list_body_and_huge_id(client, make_user, make_car, login):
    admin_headers = login(make_user(admin=True))
    booking_id = _book(client, login(make_user()), make_car())

    resp = client.put(f"/admin/bookings/{booking_id}", json=["Confirmed"], headers=admin_headers)
    assert resp.status_code == 400
    assert db.session.get(Booking, booking_id).status == "Pending"

    huge = 10 ** 30
    resp = client.put(f"/admin/bookings/{huge}", json={"status": "Confirmed"}, headers=admin_headers)
    assert resp.status_code == 404
    assert client.delete(f"/admin/cars/{huge}", headers=admin_headers).status_code == 404
