from flask import Blueprint, jsonify, request
from marshmallow import ValidationError as SchemaError

from routes.auth_routes import current_user
from schemas import booking_request_schema, cancel_request_schema
from ticketing import workflow
from ticketing.exceptions import ValidationError

booking_bp = Blueprint("booking_api", __name__)


def load_payload(schema, message="Invalid input"):
    try:
        return schema.load(request.get_json(silent=True) or {})
    except SchemaError as exc:
        raise ValidationError(message, errors=exc.messages) from exc


@booking_bp.route("/api/bookings", methods=["GET"])
def list_bookings():
    # The caller's own booking history, newest first
    user = current_user()
    bookings = workflow.list_bookings_for(user)
    return jsonify([booking.to_dict() for booking in bookings])


@booking_bp.route("/api/bookings/<booking_ref>", methods=["GET"])
def get_booking(booking_ref):
    user = current_user()
    booking = workflow.get_booking_for(booking_ref, user)
    return jsonify(booking.to_dict())


@booking_bp.route("/api/bookings", methods=["POST"])
def post_booking():
    user = current_user(optional=True)
    payload = load_payload(booking_request_schema, "Invalid booking payload")

    booking = workflow.create_booking(
        show_id=payload["showId"],
        show_time_id=payload["showTimeId"],
        seats=payload["seats"],
        payment_method=payload["paymentMethod"],
        user=user,
        guest=payload.get("guest"),
    )
    return jsonify(booking.to_dict()), 201


@booking_bp.route("/api/bookings/<booking_ref>/cancel", methods=["PUT"])
def cancel_booking(booking_ref):
    user = current_user(optional=True)
    payload = load_payload(cancel_request_schema)

    result = workflow.cancel_booking(booking_ref, user=user, guest_email=payload.get("email"))
    return jsonify(
        {
            "message": "Booking cancelled successfully",
            "bookingId": result.booking.booking_id,
            "refundAmount": result.refund_amount,
            "cancellationCharge": result.cancellation_charge,
        }
    )


@booking_bp.route("/api/bookings/ticket/<booking_id>", methods=["GET"])
def get_ticket(booking_id):
    # Public: venue staff validate tickets without logging in
    return jsonify(workflow.get_ticket(booking_id))
