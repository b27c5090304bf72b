"""Seat inventory of a single show-time.

Every write goes through ``_apply``: it takes the in-process lock for the
show-time, re-reads the row, lets a mutation work on a copy of the seat
state and then issues one ``UPDATE ... WHERE version = :seen``. A zero
row count means another process wrote first, so the whole read/check/write
is retried a bounded number of times.

Held seats sit in ``booked_seats`` like booked ones and additionally carry
an entry in ``seat_holds``; expired holds are reclaimed lazily before any
check runs.
"""
import re
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from models import Booking, BookingStatus, Show, ShowStatus, ShowTime, ShowTimeStatus, db
from ticketing.exceptions import (
    BookingError,
    NotFound,
    PersistenceError,
    SeatConflict,
    ShowInactive,
    ValidationError,
)

SEAT_NUMBER_PATTERN = re.compile(r"^([A-Z]+)([1-9][0-9]*)$")
DEFAULT_MAX_RETRIES = 5

_registry_lock = threading.Lock()
_show_time_locks = weakref.WeakValueDictionary()


@contextmanager
def show_time_lock(show_time_id):
    # an entry lives only while some caller holds a reference to its lock
    with _registry_lock:
        lock = _show_time_locks.get(show_time_id)
        if lock is None:
            lock = threading.Lock()
            _show_time_locks[show_time_id] = lock
    with lock:
        yield


def split_seat_number(seat_number):
    match = SEAT_NUMBER_PATTERN.match(seat_number)
    if not match:
        raise ValidationError(f"Invalid seat number {seat_number!r}")
    return match.group(1), int(match.group(2))


def normalize_seat_numbers(seat_numbers):
    if not seat_numbers:
        raise ValidationError("At least one seat is required")

    normalized = []
    for seat_number in seat_numbers:
        if not isinstance(seat_number, str):
            raise ValidationError(f"Invalid seat number {seat_number!r}")
        value = seat_number.strip().upper()
        split_seat_number(value)
        normalized.append(value)

    duplicates = sorted({seat for seat in normalized if normalized.count(seat) > 1})
    if duplicates:
        raise ValidationError(
            "Duplicate seats in request",
            errors={"seats": [f"{seat} is requested more than once" for seat in duplicates]},
        )
    return normalized


def _is_expired(hold, now):
    return datetime.fromisoformat(hold["expiresAt"]) <= now


def _committed_tokens(tokens):
    tokens = {token for token in tokens if token}
    if not tokens:
        return set()
    rows = (
        db.session.query(Booking.reservation_token)
        .filter(Booking.reservation_token.in_(tokens), Booking.status == BookingStatus.CONFIRMED)
        .all()
    )
    return {row[0] for row in rows}


@dataclass
class SeatState:
    """Working copy of a show-time's inventory."""

    capacity: int
    available: int
    booked: list
    holds: dict
    status: str
    freed: list = field(default_factory=list)
    _original: tuple = field(default=None, repr=False)

    @classmethod
    def from_show_time(cls, show_time):
        state = cls(
            capacity=show_time.capacity,
            available=show_time.available_seats,
            booked=list(show_time.booked_seats or []),
            holds={seat: dict(hold) for seat, hold in (show_time.seat_holds or {}).items()},
            status=show_time.status,
        )
        state._original = state._snapshot()
        return state

    def _snapshot(self):
        return (self.available, list(self.booked), dict(self.holds), self.status)

    @property
    def changed(self):
        return self._snapshot() != self._original

    def refresh_status(self):
        if self.status == ShowTimeStatus.CANCELLED:
            return
        self.status = ShowTimeStatus.FULL if self.available == 0 else ShowTimeStatus.ACTIVE

    def expire_holds(self, now):
        expired = {seat: hold for seat, hold in self.holds.items() if _is_expired(hold, now)}
        if not expired:
            return
        committed = _committed_tokens(hold.get("token") for hold in expired.values())
        for seat, hold in expired.items():
            del self.holds[seat]
            if hold.get("token") in committed:
                # the booking was written but its hold never got confirmed
                continue
            if seat in self.booked:
                self.booked.remove(seat)
                self.freed.append(seat)
        self.available += len(self.freed)
        self.refresh_status()


def _load(show_id, show_time_id):
    show = db.session.get(Show, show_id)
    if show is None:
        raise NotFound("Show not found")
    show_time = db.session.get(ShowTime, show_time_id, populate_existing=True)
    if show_time is None or show_time.show_id != show.id:
        raise NotFound("Show time not found")
    return show, show_time


def _write(show_time_id, seen_version, state):
    result = db.session.execute(
        update(ShowTime)
        .where(ShowTime.id == show_time_id, ShowTime.version == seen_version)
        .values(
            available_seats=state.available,
            booked_seats=state.booked,
            seat_holds=state.holds,
            status=state.status,
            version=seen_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        return False
    db.session.commit()
    return True


def _apply(show_id, show_time_id, mutate, now):
    retries = current_app.config.get("RESERVATION_MAX_RETRIES", DEFAULT_MAX_RETRIES)
    with show_time_lock(show_time_id):
        for attempt in range(1, retries + 1):
            try:
                show, show_time = _load(show_id, show_time_id)
                seen_version = show_time.version
                state = SeatState.from_show_time(show_time)
                state.expire_holds(now)
                outcome = mutate(show, state)
                if not state.changed:
                    db.session.rollback()
                    return outcome, state
                if _write(show_time_id, seen_version, state):
                    return outcome, state
            except BookingError:
                db.session.rollback()
                raise
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.exception("Inventory write failed for show time {}", show_time_id)
                raise PersistenceError() from exc
            logger.debug(
                "Show time {} changed concurrently (attempt {}/{}), retrying", show_time_id, attempt, retries
            )

    logger.error("Gave up updating show time {} after {} attempts", show_time_id, retries)
    raise PersistenceError()


def reserve_seats(show_id, show_time_id, seat_numbers, holder=None, hold_seconds=None, token=None, now=None):
    """Reserve all of ``seat_numbers`` or none of them.

    With ``hold_seconds`` the seats are held until ``now + hold_seconds``
    (tagged with ``holder`` and ``token``); without it they are booked
    outright. Seats the same holder already holds, outside of any booking,
    are carried over rather than reported as conflicts.

    Returns the list of reserved seat numbers.
    """
    seats = normalize_seat_numbers(seat_numbers)
    now = now or datetime.now()

    def mutate(show, state):
        if show.status != ShowStatus.ACTIVE:
            raise ShowInactive("This show is not accepting bookings")
        if state.status == ShowTimeStatus.CANCELLED:
            raise ShowInactive("This show time has been cancelled")

        screen = show.screen
        if screen is not None:
            missing = [seat for seat in seats if not screen.has_seat(*split_seat_number(seat))]
            if missing:
                raise ValidationError(
                    "Some seats do not exist on this screen",
                    errors={seat: ["Seat does not exist on this screen"] for seat in missing},
                )

        own = {
            seat for seat in seats
            if holder and seat in state.holds
            and state.holds[seat].get("holder") == holder and not state.holds[seat].get("token")
        }
        fresh = [seat for seat in seats if seat not in own]
        if fresh and state.status == ShowTimeStatus.FULL:
            raise ShowInactive("This show time is sold out")

        taken = [seat for seat in fresh if seat in state.booked]
        if taken:
            raise SeatConflict(taken)
        if len(fresh) > state.available:
            raise ValidationError(f"Only {state.available} seats are left for this show time")

        state.booked.extend(fresh)
        state.available -= len(fresh)
        if hold_seconds:
            expires_at = (now + timedelta(seconds=hold_seconds)).isoformat()
            for seat in seats:
                state.holds[seat] = {"expiresAt": expires_at, "holder": holder, "token": token}
        else:
            for seat in seats:
                state.holds.pop(seat, None)
        state.refresh_status()
        return seats

    reserved, _ = _apply(show_id, show_time_id, mutate, now)
    logger.debug("Reserved {} on show time {}", reserved, show_time_id)
    return reserved


def release_seats(show_id, show_time_id, seat_numbers, token=None, holder=None, now=None):
    """Free the given seats; absent seats are skipped so retries are harmless.

    With ``token`` or ``holder`` only seats currently held under that
    token/holder are released. Returns the seat numbers actually freed.
    """
    seats = normalize_seat_numbers(seat_numbers)
    now = now or datetime.now()
    scoped = token is not None or holder is not None

    def mutate(show, state):
        released = []
        for seat in seats:
            if seat not in state.booked:
                continue
            if scoped:
                hold = state.holds.get(seat)
                if hold is None:
                    continue
                if token is not None and hold.get("token") != token:
                    continue
                if holder is not None and hold.get("holder") != holder:
                    continue
                if token is None and hold.get("token"):
                    # belongs to a booking in flight, not to a plain hold
                    continue
            state.booked.remove(seat)
            state.holds.pop(seat, None)
            released.append(seat)
        state.available += len(released)
        state.refresh_status()
        return released

    released, _ = _apply(show_id, show_time_id, mutate, now)
    if released:
        logger.debug("Released {} on show time {}", released, show_time_id)
    return released


def confirm_seats(show_id, show_time_id, seat_numbers, token, now=None):
    """Turn seats held under ``token`` into booked seats."""
    seats = normalize_seat_numbers(seat_numbers)
    now = now or datetime.now()

    def mutate(show, state):
        confirmed = []
        for seat in seats:
            hold = state.holds.get(seat)
            if hold is not None and hold.get("token") == token:
                del state.holds[seat]
                confirmed.append(seat)
        return confirmed

    confirmed, _ = _apply(show_id, show_time_id, mutate, now)
    return confirmed


def sweep_expired_holds(now=None):
    """Reclaim expired holds on every show-time. Returns the number of seats freed."""
    now = now or datetime.now()
    candidates = [
        (show_time.show_id, show_time.id)
        for show_time in ShowTime.query.all()
        if show_time.seat_holds
    ]
    db.session.rollback()

    freed = 0
    for show_id, show_time_id in candidates:
        try:
            _, state = _apply(show_id, show_time_id, lambda show, state: None, now)
        except NotFound:
            continue
        if state.freed:
            logger.info("Freed expired holds {} on show time {}", state.freed, show_time_id)
        freed += len(state.freed)
    return freed


def _confirmed_seats(show_time_id):
    rows = (
        db.session.query(Booking.seats)
        .filter(Booking.show_time_id == show_time_id, Booking.status == BookingStatus.CONFIRMED)
        .all()
    )
    return {seat["seatNumber"] for (seats,) in rows for seat in seats or []}


def release_cancelled_seats(now=None):
    """Free seats of upcoming cancelled bookings that are still marked taken.

    A seat is left alone while it is held or belongs to a confirmed booking.
    Returns the number of seats freed.
    """
    now = now or datetime.now()
    cancelled = {}
    for booking in Booking.query.filter(
        Booking.status == BookingStatus.CANCELLED, Booking.show_date >= now.date()
    ).all():
        show_id, seats = cancelled.setdefault(booking.show_time_id, (booking.show_id, set()))
        seats.update(booking.seat_numbers)
    db.session.rollback()

    freed = 0
    for show_time_id, (show_id, seats) in cancelled.items():
        def mutate(show, state, seats=seats, show_time_id=show_time_id):
            taken = _confirmed_seats(show_time_id)
            stale = [seat for seat in state.booked if seat in seats and seat not in taken and seat not in state.holds]
            for seat in stale:
                state.booked.remove(seat)
            state.available += len(stale)
            state.refresh_status()
            return stale

        try:
            stale, _ = _apply(show_id, show_time_id, mutate, now)
        except NotFound:
            continue
        if stale:
            logger.info("Freed seats {} of cancelled bookings on show time {}", stale, show_time_id)
        freed += len(stale)
    return freed


def build_seat_map(show, show_time, screen, now=None):
    now = now or datetime.now()
    holds = show_time.seat_holds or {}
    expired = {seat: hold for seat, hold in holds.items() if _is_expired(hold, now)}
    committed = _committed_tokens(hold.get("token") for hold in expired.values())
    unavailable = {
        seat for seat in (show_time.booked_seats or [])
        if seat not in expired or expired[seat].get("token") in committed
    }
    held = {seat for seat in holds if seat not in expired}

    prices = screen.layout_prices() if screen else {}
    prices.update(show_time.prices or {})

    rows = []
    if screen is not None:
        for row in screen.row_letters:
            seat_type = screen.seat_type_for_row(row)
            rows.append({
                "row": row,
                "seatType": seat_type,
                "seats": [
                    {
                        "seatNumber": f"{row}{column}",
                        "seatType": seat_type,
                        "price": prices.get(seat_type),
                        "booked": f"{row}{column}" in unavailable,
                        "held": f"{row}{column}" in held,
                    }
                    for column in range(1, screen.seats_per_row + 1)
                ],
            })

    return {
        "showId": show.id,
        "showTimeId": show_time.id,
        "date": show_time.show_date.isoformat(),
        "time": show_time.time,
        "status": show_time.status,
        "capacity": show_time.capacity,
        "availableSeats": show_time.capacity - len(unavailable),
        "price": prices,
        "rows": rows,
    }
