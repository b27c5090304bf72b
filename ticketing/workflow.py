"""Booking create/cancel flows on top of the seat inventory.

Creating a booking is a two-phase write: the seats are first held under a
fresh reservation token, the ledger row is written carrying that token and
only then is the hold committed. If anything fails before the ledger row
exists the hold is released again; if the release fails too, the hold
simply expires and ``sweep_expired_holds`` frees it.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import (
    PAYMENT_METHODS,
    Booking,
    BookingHistory,
    BookingStatus,
    PaymentStatus,
    Show,
    db,
)
from ticketing import identifiers, inventory
from ticketing.exceptions import (
    BookingError,
    CancellationWindowClosed,
    NotFound,
    PersistenceError,
    ValidationError,
)
from ticketing.pricing import calculate_cancellation, calculate_pricing

CANCELLATION_CUTOFF = timedelta(hours=2)
DEFAULT_HOLD_SECONDS = 600
DEFAULT_BOOKING_ID_ATTEMPTS = 5


@dataclass
class CancellationResult:
    booking: Booking
    refund_amount: int
    cancellation_charge: int


def _load_show_time(show_id, show_time_id):
    show = db.session.get(Show, show_id)
    if show is None:
        raise NotFound("Show not found")
    show_time = show.find_show_time(show_time_id)
    if show_time is None:
        raise NotFound("Show time not found")
    return show, show_time


def price_seats(show_time, screen, requested):
    """Derive each seat's type and price from the layout and the show-time price table.

    Client supplied ``seatType``/``price`` values are only checked against
    the derived ones, never used.
    """
    prices = screen.layout_prices() if screen else {}
    prices.update(show_time.prices or {})

    seat_numbers = inventory.normalize_seat_numbers([seat.get("seatNumber") for seat in requested])
    errors = {}
    priced = []
    for seat_number, claimed in zip(seat_numbers, requested):
        row, column = inventory.split_seat_number(seat_number)
        if screen is not None:
            if not screen.has_seat(row, column):
                errors[seat_number] = ["Seat does not exist on this screen"]
                continue
            seat_type = screen.seat_type_for_row(row)
        else:
            seat_type = claimed.get("seatType")

        price = prices.get(seat_type)
        if price is None:
            errors[seat_number] = [f"No price for seat type {seat_type!r}"]
            continue
        if claimed.get("seatType") not in (None, seat_type):
            errors[seat_number] = [f"Seat type is {seat_type}, not {claimed['seatType']}"]
            continue
        if claimed.get("price") not in (None, price):
            errors[seat_number] = [f"Seat price is {price}, not {claimed['price']}"]
            continue
        priced.append({"seatNumber": seat_number, "seatType": seat_type, "price": price})

    if errors:
        raise ValidationError("Some seats could not be priced", errors=errors)
    return priced


def _new_booking_id(now):
    attempts = current_app.config.get("BOOKING_ID_MAX_ATTEMPTS", DEFAULT_BOOKING_ID_ATTEMPTS)
    for _ in range(attempts):
        booking_id = identifiers.generate_booking_id(now)
        if not Booking.query.filter_by(booking_id=booking_id).first():
            return booking_id
    raise PersistenceError()


def _persist_booking(booking, now):
    attempts = current_app.config.get("BOOKING_ID_MAX_ATTEMPTS", DEFAULT_BOOKING_ID_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        booking.booking_id = _new_booking_id(now)
        booking.qr_code = identifiers.generate_qr_code(booking.booking_id, now)
        db.session.add(booking)
        try:
            db.session.commit()
            return booking
        except IntegrityError:
            # another request took the same id between the check and the insert
            db.session.rollback()
            logger.warning("Booking id {} collided (attempt {}/{})", booking.booking_id, attempt, attempts)
    raise PersistenceError()


def _record_history(user, booking):
    try:
        db.session.add(BookingHistory(user_id=user.id, booking_id=booking.booking_id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not add booking {} to history of user {}", booking.booking_id, user.id)


def _compensate(show_id, show_time_id, seat_numbers, token):
    try:
        inventory.release_seats(show_id, show_time_id, seat_numbers, token=token)
    except BookingError:
        logger.bind(reconcile=True).error(
            "Could not release held seats {} on show time {} (token {}); they stay held until the hold expires",
            seat_numbers, show_time_id, token,
        )


def create_booking(show_id, show_time_id, seats, payment_method, user=None, guest=None, now=None):
    now = now or datetime.now()
    if user is None and not guest:
        raise ValidationError("Guest contact details are required when not logged in",
                              errors={"guest": ["Missing data for required field."]})
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Unsupported payment method", errors={"paymentMethod": [f"Must be one of {', '.join(PAYMENT_METHODS)}"]})

    show, show_time = _load_show_time(show_id, show_time_id)
    priced = price_seats(show_time, show.screen, seats)
    pricing = calculate_pricing(priced)
    seat_numbers = [seat["seatNumber"] for seat in priced]
    starts_at = show_time.starts_at()
    hold_seconds = current_app.config.get("SEAT_HOLD_SECONDS", DEFAULT_HOLD_SECONDS)

    # snapshot before the inventory write expires the session
    booking = Booking(
        user_id=user.id if user is not None else None,
        guest_name=(guest or {}).get("name") if user is None else None,
        guest_email=(guest or {}).get("email") if user is None else None,
        guest_phone=(guest or {}).get("phone") if user is None else None,
        show_id=show.id,
        show_time_id=show_time.id,
        movie_tmdb_id=show.movie_tmdb_id,
        movie_title=show.movie_title,
        movie_poster_path=show.movie_poster_path,
        theater_id=show.theater.id,
        theater_name=show.theater.name,
        theater_address=show.theater.address,
        screen_id=show.screen_id,
        screen_name=show.screen_name,
        show_date=show_time.show_date,
        show_time=show_time.time,
        seats=priced,
        total_amount=pricing.subtotal,
        convenience_fee=pricing.convenience_fee,
        taxes=pricing.taxes,
        final_amount=pricing.final_amount,
        payment_method=payment_method,
        transaction_id=identifiers.generate_transaction_id(now),
        payment_status=PaymentStatus.SUCCESS,
        paid_at=now,
        status=BookingStatus.CONFIRMED,
        can_cancel=True,
        cancel_before=starts_at - CANCELLATION_CUTOFF,
        reservation_token=identifiers.new_reservation_token(),
    )
    token = booking.reservation_token

    inventory.reserve_seats(
        show_id, show_time_id, seat_numbers,
        holder=user.username if user is not None else None,
        hold_seconds=hold_seconds, token=token, now=now,
    )

    try:
        _persist_booking(booking, now)
    except Exception as exc:
        db.session.rollback()
        _compensate(show_id, show_time_id, seat_numbers, token)
        if isinstance(exc, BookingError):
            raise
        logger.exception("Booking for show time {} failed after seats were held", show_time_id)
        raise PersistenceError() from exc

    try:
        inventory.confirm_seats(show_id, show_time_id, seat_numbers, token, now=now)
    except BookingError:
        logger.warning("Booking {} stored but its seat hold is unconfirmed; sweep will commit it",
                       booking.booking_id)

    if user is not None:
        _record_history(user, booking)

    logger.info("Booking {} confirmed: {} seats on show time {}, amount {}",
                booking.booking_id, len(seat_numbers), show_time_id, booking.final_amount)
    return booking


def find_booking(booking_ref):
    """Look a booking up by its public bookingId or its numeric id."""
    query = Booking.query
    if isinstance(booking_ref, int) or str(booking_ref).isdigit():
        return query.filter(or_(Booking.id == int(booking_ref), Booking.booking_id == str(booking_ref))).first()
    return query.filter_by(booking_id=str(booking_ref)).first()


def _owns(booking, user, guest_email):
    if user is not None:
        return booking.user_id == user.id
    if guest_email and booking.user_id is None and booking.guest_email:
        return booking.guest_email.lower() == guest_email.strip().lower()
    return False


def cancel_booking(booking_ref, user=None, guest_email=None, now=None):
    now = now or datetime.now()
    booking = find_booking(booking_ref)
    if booking is None or not _owns(booking, user, guest_email) or booking.status != BookingStatus.CONFIRMED:
        raise NotFound("Booking not found or already cancelled")

    if not booking.can_cancel:
        raise CancellationWindowClosed("This booking cannot be cancelled")
    if booking.show_starts_at() - now < CANCELLATION_CUTOFF:
        raise CancellationWindowClosed("Cannot cancel booking within 2 hours of show time")

    quote = calculate_cancellation(booking.final_amount)
    try:
        result = db.session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.CONFIRMED)
            .values(
                status=BookingStatus.CANCELLED,
                payment_status=PaymentStatus.REFUNDED,
                refund_amount=quote.refund_amount,
                cancelled_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise NotFound("Booking not found or already cancelled")
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Could not cancel booking {}", booking.booking_id)
        raise PersistenceError() from exc

    try:
        inventory.release_seats(booking.show_id, booking.show_time_id, booking.seat_numbers, now=now)
    except NotFound:
        logger.warning("Show time {} of cancelled booking {} no longer exists; no seats released",
                       booking.show_time_id, booking.booking_id)
    except BookingError:
        logger.bind(reconcile=True).error(
            "Booking {} cancelled but seats {} on show time {} were not released; sweep-holds will free them",
            booking.booking_id, booking.seat_numbers, booking.show_time_id,
        )

    logger.info("Booking {} cancelled, refund {}", booking.booking_id, quote.refund_amount)
    db.session.refresh(booking)
    return CancellationResult(
        booking=booking,
        refund_amount=quote.refund_amount,
        cancellation_charge=quote.cancellation_charge,
    )


def get_ticket(booking_id):
    booking = Booking.query.filter_by(booking_id=booking_id, status=BookingStatus.CONFIRMED).first()
    if booking is None:
        raise NotFound("Invalid ticket")
    return booking.to_dict(include_user=False)


def list_bookings_for(user):
    return (
        Booking.query.filter_by(user_id=user.id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .all()
    )


def get_booking_for(booking_ref, user):
    booking = find_booking(booking_ref)
    if booking is None or booking.user_id != user.id:
        raise NotFound("Booking not found")
    return booking
