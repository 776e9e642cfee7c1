from flask import Blueprint, jsonify, g

from services.bookings import (
    create_booking,
    cancel_booking,
    list_user_bookings,
    serialize_booking,
)
from services.errors import ConflictError
from utils.auth_context import login_required, current_requester
from utils.audit import log_event
from utils.request_data import json_body

booking_bp = Blueprint("booking", __name__)


# ---------- CUSTOMERS: book a car (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
@login_required
def create():
    data = json_body()
    car_id = data.get("carId")

    try:
        booking = create_booking(
            current_requester(),
            car_id=car_id,
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            pickup_location=data.get("pickupLocation"),
            dropoff_location=data.get("dropoffLocation"),
            special_requests=data.get("specialRequests"),
        )
    except ConflictError:
        log_event(
            "BOOKING_FAIL_DATES_TAKEN",
            user_id=g.user.id,
            entity="car",
            entity_id=car_id,
            metadata={"start": data.get("startDate"), "end": data.get("endDate")},
        )
        raise

    log_event(
        "BOOKING_CREATE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking.id,
        metadata={"car_id": booking.car_id, "total_amount": booking.total_amount},
    )
    return jsonify(serialize_booking(booking)), 201


# ---------- CUSTOMERS: view my bookings ----------
@booking_bp.get("/bookings/my")
@login_required
def my_bookings():
    rows = list_user_bookings(g.user.id)
    return jsonify([serialize_booking(b) for b in rows]), 200


# ---------- CUSTOMERS / ADMIN: cancel booking ----------
@booking_bp.put("/bookings/<int:booking_id>/cancel")
@login_required
def cancel(booking_id: int):
    booking = cancel_booking(booking_id, current_requester())
    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id)
    return jsonify(message="Booking cancelled successfully", booking=serialize_booking(booking)), 200
