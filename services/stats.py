from sqlalchemy import func, select

from models import db
from models.booking import Booking, BookingStatus, PaymentStatus
from models.car import Car
from models.user import User, Role, user_roles


def admin_stats() -> dict:
    cars = Car.query.filter(Car.is_deleted.is_(False))
    admin_ids = (
        select(user_roles.c.user_id)
        .join(Role, Role.id == user_roles.c.role_id)
        .where(Role.name == "ADMIN")
    )
    revenue = (
        db.session.query(func.coalesce(func.sum(Booking.total_amount), 0))
        .filter(Booking.payment_status == PaymentStatus.PAID.value)
        .scalar()
    )

    return {
        "totalCars": cars.count(),
        "availableCars": cars.filter(Car.is_available.is_(True)).count(),
        "totalUsers": User.query.filter(User.id.notin_(admin_ids)).count(),
        "totalBookings": Booking.query.count(),
        "activeBookings": Booking.query.filter_by(status=BookingStatus.ACTIVE.value).count(),
        "totalRevenue": int(revenue or 0),
    }
