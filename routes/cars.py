from flask import Blueprint, request, jsonify, current_app, send_from_directory

from services.cars import list_cars, get_car

cars_bp = Blueprint("cars", __name__)


# ---------- PUBLIC: catalog ----------
@cars_bp.get("/cars")
def catalog():
    # optional filters: brand, fuelType, transmission, minPrice, maxPrice, available
    cars = list_cars(request.args)
    return jsonify([c.to_dict() for c in cars]), 200


@cars_bp.get("/cars/<int:car_id>")
def car_detail(car_id: int):
    return jsonify(get_car(car_id).to_dict()), 200


@cars_bp.get("/uploads/<path:filename>")
def uploaded_image(filename: str):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)
