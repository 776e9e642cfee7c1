from flask import Blueprint, jsonify, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.user import User, Role
from security.password import hash_password, verify_password
from security.password_policy import validate_password
from security.session import create_session, revoke_session, bearer_token_from_request
from services.errors import DuplicateEmailError, InvalidCredentialsError, ValidationError
from utils.audit import log_event
from utils.request_data import json_body
from utils.auth_context import login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _optional(data: dict, key: str, max_len: int):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or len(value.strip()) > max_len:
        raise ValidationError(f"Invalid {key}")
    return value.strip() or None


def _auth_response(user: User, status: int, message: str):
    token = create_session(user.id)
    return jsonify(message=message, token=token, user=user.to_dict()), status


@auth_bp.post("/register")
def register():
    data = json_body()
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    phone = (data.get("phone") or "").strip()

    if not name or not email or not password or not phone:
        raise ValidationError("All required fields must be filled")
    if not _is_valid_email(email):
        raise ValidationError("Invalid email")
    if len(name) > 120 or len(phone) > 30:
        raise ValidationError("name or phone is too long")

    valid, errors = validate_password(password)
    if not valid:
        raise ValidationError("Password does not meet policy", details=errors)

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        raise DuplicateEmailError("User already exists with this email")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        phone=phone,
        address=_optional(data, "address", 255),
        driving_license=_optional(data, "drivingLicense", 60),
    )
    db.session.add(user)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateEmailError("User already exists with this email")

    customer_role = Role.query.filter_by(name="CUSTOMER").first()
    if customer_role:
        user.roles.append(customer_role)

    db.session.commit()
    log_event("REGISTER_SUCCESS", user_id=user.id)

    return _auth_response(user, 201, "User registered successfully")


@auth_bp.post("/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event(
            "LOGIN_FAIL",
            user_id=user.id if user else None,
            metadata={"email": email},
        )
        raise InvalidCredentialsError("Invalid credentials")

    log_event("LOGIN_SUCCESS", user_id=user.id)
    return _auth_response(user, 200, "Login successful")


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(g.user.to_dict()), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_session(bearer_token_from_request())
    log_event("LOGOUT", user_id=g.user.id)
    return jsonify(message="Logged out"), 200
