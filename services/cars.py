import logging
import os
import secrets
import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from werkzeug.utils import secure_filename

from models import db
from models.booking import Booking, ACTIVE_STATUSES
from models.car import Car, FUEL_TYPES, TRANSMISSIONS
from services.errors import ConflictError, NotFoundError, ValidationError
from utils.request_data import id_in_range

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "name", "brand", "model", "year", "color", "fuelType", "transmission",
    "seats", "pricePerDay", "location", "registrationNumber",
)


def _text(value, field, max_len=160):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} is too long (max {max_len})")
    return value


def _int(value, field, low=None, high=None):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number")
    if low is not None and number < low:
        raise ValidationError(f"{field} must be at least {low}")
    if high is not None and number > high:
        raise ValidationError(f"{field} must be at most {high}")
    return number


def _choice(value, field, choices):
    if value not in choices:
        raise ValidationError(f"Invalid {field}", details={"allowed": list(choices)})
    return value


def _bool(value, field):
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off"):
        return False
    raise ValidationError(f"{field} must be true or false")


def _optional_text(value, field):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text")
    return value.strip() or None


def _features(value):
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ValidationError("features must be a list or comma-separated text")
    return [str(f).strip() for f in items if str(f).strip()]


# request key -> (model attribute, parser)
_FIELD_PARSERS = {
    "name": ("name", lambda v: _text(v, "name", 120)),
    "brand": ("brand", lambda v: _text(v, "brand", 80)),
    "model": ("model", lambda v: _text(v, "model", 80)),
    "year": ("year", lambda v: _int(v, "year", 1900, 2100)),
    "color": ("color", lambda v: _text(v, "color", 40)),
    "fuelType": ("fuel_type", lambda v: _choice(v, "fuelType", FUEL_TYPES)),
    "transmission": ("transmission", lambda v: _choice(v, "transmission", TRANSMISSIONS)),
    "seats": ("seats", lambda v: _int(v, "seats", 2, 8)),
    "pricePerDay": ("price_per_day", lambda v: _int(v, "pricePerDay", 0)),
    "description": ("description", lambda v: _optional_text(v, "description")),
    "features": ("features", _features),
    "location": ("location", lambda v: _text(v, "location", 160)),
    "registrationNumber": ("registration_number", lambda v: _text(v, "registrationNumber", 40).upper()),
    "isAvailable": ("is_available", lambda v: _bool(v, "isAvailable")),
}


def _parse_fields(data, partial: bool) -> dict:
    if not partial:
        missing = [
            f for f in REQUIRED_FIELDS
            if data.get(f) is None or (isinstance(data.get(f), str) and not data.get(f).strip())
        ]
        if missing:
            raise ValidationError("All required fields must be filled", details={"missing": missing})

    values = {}
    for key, (attr, parser) in _FIELD_PARSERS.items():
        if key in data:
            raw = data.get(key) if key != "features" else _raw_features(data)
            values[attr] = parser(raw)
    return values


def _raw_features(data):
    # multipart forms may repeat the key instead of sending one comma list
    getlist = getattr(data, "getlist", None)
    if getlist is not None:
        items = getlist("features")
        if len(items) > 1:
            return items
    return data.get("features")


def _registration_taken(registration_number: str, exclude_id=None) -> bool:
    q = Car.query.filter(Car.registration_number == registration_number)
    if exclude_id is not None:
        q = q.filter(Car.id != exclude_id)
    return q.first() is not None


# ---------- images ----------

def store_images(files) -> list:
    """Save uploaded image files under UPLOAD_FOLDER and return their references."""
    files = [f for f in (files or []) if f and f.filename]
    if not files:
        return []

    max_count = current_app.config.get("MAX_IMAGES_PER_UPLOAD", 5)
    max_bytes = current_app.config.get("MAX_IMAGE_BYTES", 5 * 1024 * 1024)
    if len(files) > max_count:
        raise ValidationError(f"At most {max_count} images per upload")

    payloads = []
    for f in files:
        if not (f.mimetype or "").startswith("image/"):
            raise ValidationError("Only image files are allowed")
        data = f.read()
        if len(data) > max_bytes:
            raise ValidationError(f"Image {f.filename} exceeds {max_bytes} bytes")
        payloads.append((f.filename, data))

    folder = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)

    refs = []
    for original_name, data in payloads:
        ext = os.path.splitext(secure_filename(original_name))[1].lower()
        stored_name = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"
        with open(os.path.join(folder, stored_name), "wb") as out:
            out.write(data)
        refs.append(f"uploads/{stored_name}")
    return refs


# ---------- catalog ----------

def list_cars(args):
    q = Car.query.filter(Car.is_deleted.is_(False))

    brand = (args.get("brand") or "").strip()
    if brand:
        q = q.filter(Car.brand.ilike(f"%{brand}%"))

    fuel_type = args.get("fuelType")
    if fuel_type:
        q = q.filter(Car.fuel_type == fuel_type)

    transmission = args.get("transmission")
    if transmission:
        q = q.filter(Car.transmission == transmission)

    min_price = args.get("minPrice")
    if min_price not in (None, ""):
        q = q.filter(Car.price_per_day >= _int(min_price, "minPrice"))

    max_price = args.get("maxPrice")
    if max_price not in (None, ""):
        q = q.filter(Car.price_per_day <= _int(max_price, "maxPrice"))

    if (args.get("available") or "").lower() == "true":
        q = q.filter(Car.is_available.is_(True))

    return q.order_by(Car.created_at.desc(), Car.id.desc()).all()


def get_car(car_id: int) -> Car:
    if not id_in_range(car_id):
        raise NotFoundError("Car not found")
    car = db.session.get(Car, car_id)
    if car is None or car.is_deleted:
        raise NotFoundError("Car not found")
    return car


# ---------- admin ----------

def create_car(data, files=None) -> Car:
    values = _parse_fields(data, partial=False)
    if _registration_taken(values["registration_number"]):
        raise ConflictError("Car with this registration number already exists")

    values["images"] = store_images(files)
    values.setdefault("features", [])
    car = Car(**values)
    db.session.add(car)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Car with this registration number already exists")

    logger.info("Car %s created (%s)", car.id, car.registration_number)
    return car


def update_car(car_id: int, data, files=None) -> Car:
    car = get_car(car_id)
    values = _parse_fields(data, partial=True)

    reg = values.get("registration_number")
    if reg and _registration_taken(reg, exclude_id=car.id):
        raise ConflictError("Car with this registration number already exists")

    new_images = store_images(files)
    for attr, value in values.items():
        setattr(car, attr, value)
    if new_images:
        car.images = list(car.images or []) + new_images

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Car with this registration number already exists")

    logger.info("Car %s updated: %s", car.id, sorted(values))
    return car


def delete_car(car_id: int) -> bool:
    """
    Remove a car from the catalog. Returns True if the row was deleted and
    False if it was retired because past bookings still reference it.
    """
    car = get_car(car_id)

    # take the car lock create_booking uses before checking for active bookings
    db.session.execute(
        update(Car)
        .where(Car.id == car.id)
        .values(booking_revision=Car.booking_revision + 1)
        .execution_options(synchronize_session=False)
    )

    active = Booking.query.filter(
        Booking.car_id == car.id,
        Booking.status.in_(ACTIVE_STATUSES),
    ).count()
    if active:
        db.session.rollback()
        raise ConflictError("Cannot delete car with active bookings")

    has_history = Booking.query.filter(Booking.car_id == car.id).first() is not None
    if has_history:
        car.is_deleted = True
        car.is_available = False
        db.session.commit()
        logger.info("Car %s retired (has booking history)", car.id)
        return False

    db.session.delete(car)
    db.session.commit()
    logger.info("Car %s deleted", car_id)
    return True
