"""
Booking lifecycle: creation with conflict detection, cancellation, admin
status updates and payment confirmation.

All transitions go through ``check_transition`` so the rules hold no matter
which route (user, admin or payment callback) drives the change.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update

from models import db
from models.booking import Booking, BookingStatus, PaymentStatus, ACTIVE_STATUSES
from models.car import Car
from services.errors import (
    BookingAppError,
    ConflictError,
    ForbiddenError,
    InvalidDateRangeError,
    InvalidStateError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from utils.dates import parse_date, rental_days, utc_today
from utils.request_data import id_in_range, parse_id

logger = logging.getLogger(__name__)

_NEXT_STATUS = {
    BookingStatus.PENDING: BookingStatus.CONFIRMED,
    BookingStatus.CONFIRMED: BookingStatus.ACTIVE,
    BookingStatus.ACTIVE: BookingStatus.COMPLETED,
}
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)
PAYMENT_GATED_STATUSES = (BookingStatus.ACTIVE, BookingStatus.COMPLETED)


@dataclass(frozen=True)
class Requester:
    """Credential of the caller, passed explicitly into every operation."""
    user_id: int
    is_admin: bool = False

    @classmethod
    def from_user(cls, user):
        return cls(user_id=user.id, is_admin=user.is_admin)


@dataclass(frozen=True)
class BookingUpdate:
    """The only booking fields an administrator may change."""
    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None

    FIELDS = ("status", "paymentStatus")

    @classmethod
    def from_payload(cls, data: dict) -> "BookingUpdate":
        unknown = sorted(set(data) - set(cls.FIELDS))
        if unknown:
            raise ValidationError("Unsupported booking fields", details={"fields": unknown})

        status = _parse_enum(BookingStatus, data.get("status"), "status")
        payment_status = _parse_enum(PaymentStatus, data.get("paymentStatus"), "paymentStatus")
        if status is None and payment_status is None:
            raise ValidationError("status or paymentStatus is required")
        return cls(status=status, payment_status=payment_status)


def _parse_enum(enum_cls, value, field):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [m.value for m in enum_cls]
        raise ValidationError(f"Invalid {field}", details={"allowed": allowed})


# ---------- transition rules ----------

def check_transition(current, target, payment_status) -> None:
    """Raise InvalidStateError unless ``current -> target`` is a legal move."""
    current = BookingStatus(current)
    target = BookingStatus(target)
    payment_status = PaymentStatus(payment_status)

    if current == target:
        return
    if current in TERMINAL_STATUSES:
        raise InvalidStateError(f"Booking is {current.value.lower()}; no further changes allowed")
    if target == BookingStatus.CANCELLED:
        return
    if _NEXT_STATUS.get(current) != target:
        raise InvalidStateError(f"Cannot move booking from {current.value} to {target.value}")
    if target in PAYMENT_GATED_STATUSES and payment_status != PaymentStatus.PAID:
        raise InvalidStateError(f"Booking must be paid before it can become {target.value}")


def allowed_next_statuses(booking) -> list:
    out = []
    for candidate in BookingStatus:
        if candidate.value == booking.status:
            continue
        try:
            check_transition(booking.status, candidate, booking.payment_status)
        except InvalidStateError:
            continue
        out.append(candidate.value)
    return out


def _check_payment_change(status, payment_status) -> None:
    # an Active/Completed booking has been paid; the payment may only be refunded
    if BookingStatus(status) in PAYMENT_GATED_STATUSES and payment_status not in (
        PaymentStatus.PAID,
        PaymentStatus.REFUNDED,
    ):
        raise InvalidStateError(
            f"Payment of a {status.lower()} booking can only be Paid or Refunded"
        )


# ---------- queries ----------

def get_booking(booking_id: int) -> Booking:
    if not id_in_range(booking_id):
        raise NotFoundError("Booking not found")
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def overlapping_bookings(car_id: int, start_date, end_date):
    """Bookings that hold ``car_id`` for any day in the closed range [start_date, end_date]."""
    return Booking.query.filter(
        Booking.car_id == car_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_date <= end_date,
        Booking.end_date >= start_date,
    )


def list_user_bookings(user_id: int):
    return (
        Booking.query
        .filter_by(user_id=user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .all()
    )


def list_all_bookings(status: str = None):
    q = Booking.query
    if status:
        q = q.filter_by(status=_parse_enum(BookingStatus, status, "status").value)
    return q.order_by(Booking.created_at.desc(), Booking.id.desc()).all()


# ---------- mutations ----------

def _required_text(value, field: str, max_len: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} is too long (max {max_len})")
    return value


def create_booking(
    requester: Requester,
    car_id,
    start_date,
    end_date,
    pickup_location,
    dropoff_location,
    special_requests=None,
    today=None,
) -> Booking:
    required = {
        "carId": car_id,
        "startDate": start_date,
        "endDate": end_date,
        "pickupLocation": pickup_location,
        "dropoffLocation": dropoff_location,
    }
    missing = [
        name for name, value in required.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError("All required fields must be filled", details={"missing": missing})

    car_id = parse_id(car_id, "carId")
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")
    pickup = _required_text(pickup_location, "pickupLocation", 160)
    dropoff = _required_text(dropoff_location, "dropoffLocation", 160)
    if special_requests is not None and not isinstance(special_requests, str):
        raise ValidationError("specialRequests must be text")
    special = (special_requests or "").strip() or None

    car = db.session.get(Car, car_id)
    if car is None or car.is_deleted:
        raise NotFoundError("Car not found")
    if not car.is_available:
        raise UnavailableError("Car is not available")

    today = today or utc_today()
    if start < today:
        raise InvalidDateRangeError("Start date cannot be in the past")
    if end <= start:
        raise InvalidDateRangeError("End date must be after start date")

    try:
        # Take the car's write lock before looking for conflicts; a concurrent
        # creator for the same car waits here until this transaction ends.
        locked = db.session.execute(
            update(Car)
            .where(Car.id == car_id, Car.is_deleted.is_(False))
            .values(booking_revision=Car.booking_revision + 1)
            .execution_options(synchronize_session=False)
        )
        if locked.rowcount == 0:
            raise NotFoundError("Car not found")

        db.session.refresh(car)
        if not car.is_available:
            raise UnavailableError("Car is not available")

        clash = overlapping_bookings(car_id, start, end).first()
        if clash is not None:
            raise ConflictError("Car is already booked for the selected dates")

        total_days = rental_days(start, end)
        booking = Booking(
            user_id=requester.user_id,
            car_id=car_id,
            start_date=start,
            end_date=end,
            total_days=total_days,
            total_amount=total_days * car.price_per_day,
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            pickup_location=pickup,
            dropoff_location=dropoff,
            special_requests=special,
        )
        db.session.add(booking)
        db.session.commit()
    except BookingAppError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Booking insert failed for car %s", car_id)
        raise

    logger.info(
        "Booking %s created for car %s by user %s (%s..%s)",
        booking.id, car_id, requester.user_id, start, end,
    )
    return booking


def _compare_and_set(booking: Booking, **values) -> Booking:
    """
    Write ``values`` only if the booking still has the status and payment
    status we validated against; otherwise another request got there first.
    """
    values["updated_at"] = datetime.utcnow()
    result = db.session.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status == booking.status,
            Booking.payment_status == booking.payment_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise InvalidStateError("Booking was modified concurrently; reload and retry")
    db.session.commit()
    db.session.refresh(booking)
    return booking


def _ensure_owner_or_admin(booking: Booking, requester: Requester) -> None:
    if booking.user_id != requester.user_id and not requester.is_admin:
        raise ForbiddenError("Access denied")


def cancel_booking(booking_id: int, requester: Requester) -> Booking:
    booking = get_booking(booking_id)
    _ensure_owner_or_admin(booking, requester)

    if booking.status == BookingStatus.CANCELLED.value:
        raise InvalidStateError("Booking is already cancelled")
    if booking.status == BookingStatus.COMPLETED.value:
        raise InvalidStateError("Cannot cancel completed booking")
    check_transition(booking.status, BookingStatus.CANCELLED, booking.payment_status)

    _compare_and_set(
        booking,
        status=BookingStatus.CANCELLED.value,
        cancelled_at=datetime.utcnow(),
    )
    logger.info("Booking %s cancelled by user %s", booking.id, requester.user_id)
    return booking


def update_booking_status(booking_id: int, changes: BookingUpdate) -> Booking:
    booking = get_booking(booking_id)

    payment_status = changes.payment_status or PaymentStatus(booking.payment_status)
    target = changes.status or BookingStatus(booking.status)
    check_transition(booking.status, target, payment_status)
    _check_payment_change(target.value, payment_status)

    values = {}
    if payment_status.value != booking.payment_status:
        values["payment_status"] = payment_status.value
    if target.value != booking.status:
        values["status"] = target.value
        if target == BookingStatus.CANCELLED:
            values["cancelled_at"] = datetime.utcnow()

    if not values:
        return booking

    _compare_and_set(booking, **values)
    logger.info("Booking %s updated: %s", booking.id, values)
    return booking


def confirm_payment(booking_id: int, requester: Requester = None) -> Booking:
    """Mark a booking Paid. Status is left for an administrator to advance."""
    booking = get_booking(booking_id)
    if requester is not None:
        _ensure_owner_or_admin(booking, requester)

    if booking.status == BookingStatus.CANCELLED.value:
        raise InvalidStateError("Cannot pay for a cancelled booking")
    if booking.payment_status == PaymentStatus.PAID.value:
        return booking
    if booking.payment_status == PaymentStatus.REFUNDED.value:
        raise InvalidStateError("Booking payment was refunded")

    _compare_and_set(booking, payment_status=PaymentStatus.PAID.value)
    logger.info("Payment confirmed for booking %s", booking.id)
    return booking


def record_payment_failure(booking_id: int, requester: Requester = None) -> Booking:
    booking = get_booking(booking_id)
    if requester is not None:
        _ensure_owner_or_admin(booking, requester)

    # a late failure report never overrides a settled payment
    if booking.payment_status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value):
        return booking
    if booking.payment_status == PaymentStatus.FAILED.value:
        return booking

    _compare_and_set(booking, payment_status=PaymentStatus.FAILED.value)
    logger.info("Payment failed for booking %s", booking.id)
    return booking


# ---------- serialization ----------

def serialize_booking(booking: Booking) -> dict:
    car = booking.car
    user = booking.user
    return {
        "id": booking.id,
        "carId": booking.car_id,
        "userId": booking.user_id,
        "startDate": booking.start_date.isoformat(),
        "endDate": booking.end_date.isoformat(),
        "totalDays": booking.total_days,
        "totalAmount": booking.total_amount,
        "status": booking.status,
        "paymentStatus": booking.payment_status,
        "pickupLocation": booking.pickup_location,
        "dropoffLocation": booking.dropoff_location,
        "specialRequests": booking.special_requests,
        "createdAt": booking.created_at.isoformat() if booking.created_at else None,
        "cancelledAt": booking.cancelled_at.isoformat() if booking.cancelled_at else None,
        "nextStatuses": allowed_next_statuses(booking),
        "car": car.summary() if car else None,
        "user": {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "phone": user.phone,
        } if user else None,
    }
