import enum
from datetime import datetime
from models.db import db


class BookingStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


# statuses that hold the car for their date range
ACTIVE_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ACTIVE.value,
)


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    car_id = db.Column(db.Integer, db.ForeignKey("cars.id"), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    total_days = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)  # captured at creation, never recomputed

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value)

    pickup_location = db.Column(db.String(160), nullable=False)
    dropoff_location = db.Column(db.String(160), nullable=False)
    special_requests = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    car = db.relationship("Car")
    user = db.relationship("User")

    __table_args__ = (
        db.CheckConstraint("end_date > start_date", name="ck_booking_date_order"),
        db.Index("ix_bookings_car_dates", "car_id", "start_date", "end_date"),
    )
