import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from models import db
from models.payment import Payment
from routes.payments import settle_payment, stripe_field
from services.errors import BookingAppError, InternalError, ValidationError
from utils.request_data import parse_id

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

PAID_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")
FAILED_EVENTS = ("checkout.session.expired", "checkout.session.async_payment_failed")


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        raise InternalError("Webhook secret not configured")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        raise ValidationError("Invalid webhook signature")

    event_type = stripe_field(event, "type")
    if event_type not in PAID_EVENTS + FAILED_EVENTS:
        return jsonify(received=True), 200

    session = event["data"]["object"]
    session_id = stripe_field(session, "id")
    meta = stripe_field(session, "metadata") or {}

    payment = None
    payment_id = stripe_field(meta, "payment_id")
    if payment_id:
        try:
            payment = db.session.get(Payment, parse_id(payment_id, "payment_id"))
        except ValidationError:
            logger.warning("Stripe event %s carries bad payment_id %r", event_type, payment_id)
    if not payment and session_id:
        payment = Payment.query.filter_by(stripe_session_id=session_id).first()
    if not payment:
        logger.warning("Stripe event %s for unknown session %s", event_type, session_id)
        return jsonify(received=True), 200

    if event_type == "checkout.session.completed":
        # delayed methods complete the session before the money arrives
        paid = stripe_field(session, "payment_status") == "paid"
        if not paid:
            return jsonify(received=True), 200
    else:
        paid = event_type in PAID_EVENTS

    try:
        settle_payment(payment, paid)
    except BookingAppError as exc:
        db.session.rollback()
        # acknowledge so Stripe stops retrying; the booking cannot take this outcome
        logger.warning("Stripe event %s not applied to booking %s: %s", event_type, payment.booking_id, exc.message)

    return jsonify(received=True), 200
