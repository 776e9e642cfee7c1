import logging
from datetime import datetime
from urllib.parse import urlencode, urlparse, parse_qsl, urlunparse

import stripe
from flask import Blueprint, jsonify, current_app, g

from models import db
from models.booking import BookingStatus, PaymentStatus
from models.payment import Payment
from services.bookings import (
    confirm_payment,
    get_booking,
    record_payment_failure,
)
from services.errors import (
    ForbiddenError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from utils.auth_context import login_required, current_requester
from utils.audit import log_event
from utils.request_data import json_body, parse_id

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payment")

def _append_query(url: str, params: dict) -> str:
    if not url:
        return url
    parts = urlparse(url)
    query = dict(parse_qsl(parts.query))
    query.update({k: v for k, v in params.items() if v is not None})
    new_query = urlencode(query)
    return urlunparse(parts._replace(query=new_query))


def stripe_field(obj, key):
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def settle_payment(payment: Payment, paid: bool, requester=None):
    """Apply a gateway outcome to the payment row and its booking."""
    if paid:
        booking = confirm_payment(payment.booking_id, requester)
        if payment.status != "PAID":
            payment.status = "PAID"
            payment.paid_at = datetime.utcnow()
    else:
        booking = record_payment_failure(payment.booking_id, requester)
        if payment.status != "PAID":
            payment.status = "FAILED"
    db.session.commit()

    log_event(
        "PAYMENT_PAID" if paid else "PAYMENT_FAILED",
        user_id=requester.user_id if requester else None,
        entity="payment",
        entity_id=payment.id,
        metadata={"booking_id": payment.booking_id, "provider": payment.provider},
    )
    return booking


@payments_bp.post("/checkout")
@login_required
def start_checkout():
    stripe.api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe.api_key:
        raise InternalError("Stripe secret key missing (STRIPE_SECRET_KEY)")

    success_url = current_app.config.get("STRIPE_SUCCESS_URL")
    cancel_url = current_app.config.get("STRIPE_CANCEL_URL")
    if not success_url or not cancel_url:
        raise InternalError("Stripe success/cancel URLs not configured")

    data = json_body()
    booking_id = data.get("bookingId")
    if not booking_id:
        raise ValidationError("bookingId required")

    booking = get_booking(parse_id(booking_id, "bookingId"))
    if booking.user_id != g.user.id:
        raise ForbiddenError("Access denied")
    if booking.status == BookingStatus.CANCELLED.value:
        raise InvalidStateError("Cannot pay for a cancelled booking")
    if booking.payment_status == PaymentStatus.PAID.value:
        raise InvalidStateError("Booking already paid")

    currency = current_app.config.get("PAYMENT_CURRENCY", "usd").lower()
    payment = Payment(
        booking_id=booking.id,
        provider="STRIPE",
        amount=booking.total_amount,
        currency=currency.upper(),
        status="INIT",
    )
    db.session.add(payment)
    db.session.commit()

    car = booking.car
    session = stripe.checkout.Session.create(
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": currency,
                "product_data": {
                    "name": f"{car.brand} {car.model} rental ({booking.total_days} days)",
                },
                # Stripe expects the smallest currency unit
                "unit_amount": booking.total_amount * 100,
            },
            "quantity": 1,
        }],
        success_url=success_url,
        cancel_url=_append_query(cancel_url, {"booking_id": str(booking.id), "payment_id": str(payment.id)}),
        metadata={
            "booking_id": str(booking.id),
            "payment_id": str(payment.id),
            "user_id": str(g.user.id),
        },
    )

    payment.stripe_session_id = session["id"]
    db.session.commit()

    log_event("PAYMENT_SESSION_CREATED", user_id=g.user.id, entity="payment", entity_id=payment.id, metadata={"stripe_session_id": session["id"]})
    return jsonify(checkoutUrl=session["url"], sessionId=session["id"]), 200


@payments_bp.post("/confirm")
@login_required
def confirm():
    data = json_body()
    booking_id = data.get("bookingId")
    session_id = data.get("sessionId")
    requester = current_requester()

    if session_id:
        return _confirm_stripe_session(str(session_id), requester)
    if not booking_id:
        raise ValidationError("bookingId or sessionId required")

    # mock gateway: the caller reports the outcome directly
    outcome = (data.get("outcome") or "paid").lower()
    if outcome not in ("paid", "failed"):
        raise ValidationError("outcome must be paid or failed")

    booking = get_booking(parse_id(booking_id, "bookingId"))

    payment = Payment(
        booking_id=booking.id,
        provider="MOCK",
        amount=booking.total_amount,
        currency=current_app.config.get("PAYMENT_CURRENCY", "usd").upper(),
        status="INIT",
    )
    db.session.add(payment)
    db.session.flush()

    # a rejected outcome rolls the pending payment row back with it
    settle_payment(payment, outcome == "paid", requester)

    if outcome == "paid":
        return jsonify(success=True, message="Payment confirmed"), 200
    return jsonify(success=False, message="Payment failed"), 200


def _confirm_stripe_session(session_id: str, requester):
    payment = Payment.query.filter_by(stripe_session_id=session_id).first()
    if not payment:
        raise NotFoundError("Payment session not found")

    stripe.api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe.api_key:
        raise InternalError("Stripe secret key missing (STRIPE_SECRET_KEY)")

    session = stripe.checkout.Session.retrieve(session_id)
    payment_state = stripe_field(session, "payment_status")
    session_state = stripe_field(session, "status")

    if payment_state == "paid":
        settle_payment(payment, True, requester)
        return jsonify(success=True, message="Payment confirmed"), 200
    if session_state == "expired":
        settle_payment(payment, False, requester)
        return jsonify(success=False, message="Payment failed"), 200

    logger.info("Stripe session %s not settled yet (%s/%s)", session_id, session_state, payment_state)
    return jsonify(success=False, message="Payment not completed yet"), 200
