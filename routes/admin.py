from flask import Blueprint, jsonify, g, request

from security.rbac import require_roles
from services.bookings import (
    BookingUpdate,
    list_all_bookings,
    serialize_booking,
    update_booking_status,
)
from services.cars import create_car, update_car, delete_car
from services.stats import admin_stats
from utils.audit import log_event
from utils.request_data import json_body

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _car_payload():
    # multipart form (with images) or plain JSON
    if request.files or request.form:
        return request.form, request.files.getlist("images")
    return json_body(), []


# ---------- ADMIN: dashboard stats ----------
@admin_bp.get("/stats")
@require_roles("ADMIN")
def stats():
    return jsonify(admin_stats()), 200


# ---------- ADMIN: bookings ----------
@admin_bp.get("/bookings")
@require_roles("ADMIN")
def list_bookings():
    rows = list_all_bookings(status=request.args.get("status"))
    return jsonify([serialize_booking(b) for b in rows]), 200


@admin_bp.put("/bookings/<int:booking_id>")
@require_roles("ADMIN")
def update_booking(booking_id: int):
    data = json_body()
    changes = BookingUpdate.from_payload(data)
    booking = update_booking_status(booking_id, changes)

    log_event(
        "ADMIN_BOOKING_UPDATE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking.id,
        metadata={"status": booking.status, "payment_status": booking.payment_status},
    )
    return jsonify(serialize_booking(booking)), 200


# ---------- ADMIN: cars ----------
@admin_bp.post("/cars")
@require_roles("ADMIN")
def add_car():
    data, files = _car_payload()
    car = create_car(data, files)
    log_event("CAR_CREATE", user_id=g.user.id, entity="car", entity_id=car.id)
    return jsonify(car.to_dict()), 201


@admin_bp.put("/cars/<int:car_id>")
@require_roles("ADMIN")
def edit_car(car_id: int):
    data, files = _car_payload()
    car = update_car(car_id, data, files)
    log_event("CAR_UPDATE", user_id=g.user.id, entity="car", entity_id=car.id)
    return jsonify(car.to_dict()), 200


@admin_bp.delete("/cars/<int:car_id>")
@require_roles("ADMIN")
def remove_car(car_id: int):
    removed = delete_car(car_id)
    log_event(
        "CAR_DELETE",
        user_id=g.user.id,
        entity="car",
        entity_id=car_id,
        metadata={"retired": not removed},
    )
    return jsonify(message="Car deleted successfully"), 200
