from datetime import datetime
from models.db import db

FUEL_TYPES = ("Petrol", "Diesel", "Electric", "Hybrid")
TRANSMISSIONS = ("Manual", "Automatic")

class Car(db.Model):
    __tablename__ = "cars"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    brand = db.Column(db.String(80), nullable=False, index=True)
    model = db.Column(db.String(80), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    color = db.Column(db.String(40), nullable=False)
    fuel_type = db.Column(db.String(20), nullable=False)
    transmission = db.Column(db.String(20), nullable=False)
    seats = db.Column(db.Integer, nullable=False)

    price_per_day = db.Column(db.Integer, nullable=False)  # whole currency units
    description = db.Column(db.Text, nullable=True)
    features = db.Column(db.JSON, nullable=False, default=list)
    images = db.Column(db.JSON, nullable=False, default=list)  # stored file references

    is_available = db.Column(db.Boolean, default=True, nullable=False)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    location = db.Column(db.String(160), nullable=False)
    registration_number = db.Column(db.String(40), nullable=False)

    # bumped at the start of every booking insert to serialise creators per car
    booking_revision = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("registration_number", name="uq_cars_registration_number"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "model": self.model,
            "year": self.year,
            "color": self.color,
            "fuelType": self.fuel_type,
            "transmission": self.transmission,
            "seats": self.seats,
            "pricePerDay": self.price_per_day,
            "description": self.description,
            "features": list(self.features or []),
            "images": list(self.images or []),
            "isAvailable": self.is_available,
            "location": self.location,
            "registrationNumber": self.registration_number,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def summary(self):
        # trimmed view embedded in booking responses
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "model": self.model,
            "images": list(self.images or []),
            "pricePerDay": self.price_per_day,
            "location": self.location,
            "registrationNumber": self.registration_number,
        }
