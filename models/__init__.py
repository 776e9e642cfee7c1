from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .car import Car
from .booking import Booking, BookingStatus, PaymentStatus, ACTIVE_STATUSES
from .payment import Payment
