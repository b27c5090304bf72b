import string
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

SEAT_TYPES = ("Premium", "Gold", "Silver", "Regular")
SHOW_FORMATS = ("2D", "3D", "IMAX", "4DX")
PAYMENT_METHODS = ("Credit Card", "Debit Card", "UPI", "Net Banking", "Wallet")
ROW_LETTERS = string.ascii_uppercase
THEATER_STATUSES = ("Active", "Inactive", "Maintenance")


class ShowStatus:
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    COMING_SOON = "Coming Soon"
    ALL = (ACTIVE, INACTIVE, COMING_SOON)


class ShowTimeStatus:
    ACTIVE = "Active"
    CANCELLED = "Cancelled"
    FULL = "Full"
    ALL = (ACTIVE, CANCELLED, FULL)


class BookingStatus:
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


class PaymentStatus:
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    REFUNDED = "Refunded"


def parse_time_of_day(value):
    """Parse "14:30" or "2:30 PM" into a time."""
    for fmt in ("%H:%M", "%I:%M %p"):
        try:
            return datetime.strptime(value.strip().upper(), fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised show time {value!r}")


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.LargeBinary, nullable=False)
    salt = db.Column(db.LargeBinary, nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')

    booking_history = db.relationship(
        "BookingHistory", order_by="BookingHistory.id", lazy=True, cascade="all, delete-orphan"
    )


class BookingHistory(db.Model):
    __tablename__ = 'user_booking_history'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    booking_id = db.Column(db.String(20), nullable=False)
    added_at = db.Column(db.DateTime, default=datetime.now)


class Theater(db.Model):
    __tablename__ = 'theaters'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.String(300), nullable=False)
    city = db.Column(db.String(100), nullable=False, index=True)
    state = db.Column(db.String(100), nullable=False)
    pincode = db.Column(db.String(20), nullable=False)
    amenities = db.Column(db.JSON, nullable=False, default=list)
    phone = db.Column(db.String(30))
    email = db.Column(db.String(120))
    status = db.Column(db.String(20), nullable=False, default='Active')
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.now)

    screens = db.relationship("Screen", backref="theater", order_by="Screen.id", cascade="all, delete-orphan")
    shows = db.relationship("Show", backref="theater", lazy=True, cascade="all, delete-orphan")

    def to_dict(self, include_screens=True):
        payload = {
            "id": self.id,
            "name": self.name,
            "location": {
                "address": self.address,
                "city": self.city,
                "state": self.state,
                "pincode": self.pincode,
            },
            "amenities": self.amenities or [],
            "contact": {"phone": self.phone, "email": self.email},
            "status": self.status,
        }
        if include_screens:
            payload["screens"] = [screen.to_dict() for screen in self.screens]
        return payload


class Screen(db.Model):
    __tablename__ = 'screens'
    __table_args__ = (db.UniqueConstraint('theater_id', 'screen_id', name='uq_theater_screen'),)
    id = db.Column(db.Integer, primary_key=True)
    theater_id = db.Column(db.Integer, db.ForeignKey('theaters.id'), nullable=False)
    screen_id = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    # {"rows": 10, "seatsPerRow": 20, "seatTypes": [{"type": "Gold", "price": 250, "rows": ["C", "D"]}]}
    seat_layout = db.Column(db.JSON, nullable=False, default=dict)

    @property
    def row_letters(self):
        return ROW_LETTERS[: (self.seat_layout or {}).get("rows", 0)]

    @property
    def seats_per_row(self):
        return (self.seat_layout or {}).get("seatsPerRow", 0)

    def seat_type_for_row(self, row):
        for seat_type in (self.seat_layout or {}).get("seatTypes", []):
            if row in seat_type.get("rows", []):
                return seat_type["type"]
        return "Regular"

    def layout_prices(self):
        return {
            seat_type["type"]: seat_type["price"]
            for seat_type in (self.seat_layout or {}).get("seatTypes", [])
        }

    def has_seat(self, row, column):
        return row in self.row_letters and 1 <= column <= self.seats_per_row

    def to_dict(self):
        return {
            "screenId": self.screen_id,
            "name": self.name,
            "capacity": self.capacity,
            "seatLayout": self.seat_layout or {},
        }


class Show(db.Model):
    __tablename__ = 'shows'
    id = db.Column(db.Integer, primary_key=True)
    theater_id = db.Column(db.Integer, db.ForeignKey('theaters.id'), nullable=False, index=True)
    movie_tmdb_id = db.Column(db.Integer, nullable=False, index=True)
    movie_title = db.Column(db.String(255), nullable=False)
    movie_poster_path = db.Column(db.String(300))
    movie_duration = db.Column(db.Integer)
    movie_genre = db.Column(db.JSON, nullable=False, default=list)
    movie_rating = db.Column(db.String(10))
    movie_language = db.Column(db.String(50))
    screen_id = db.Column(db.String(50), nullable=False)
    screen_name = db.Column(db.String(100), nullable=False)
    format = db.Column(db.String(10), nullable=False, default='2D')
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ShowStatus.ACTIVE)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    show_times = db.relationship("ShowTime", backref="show", order_by="ShowTime.id", cascade="all, delete-orphan")

    @property
    def screen(self):
        return Screen.query.filter_by(theater_id=self.theater_id, screen_id=self.screen_id).first()

    def find_show_time(self, show_time_id):
        for show_time in self.show_times:
            if show_time.id == show_time_id:
                return show_time
        return None

    def to_dict(self, include_show_times=True):
        payload = {
            "id": self.id,
            "movie": {
                "tmdbId": self.movie_tmdb_id,
                "title": self.movie_title,
                "posterPath": self.movie_poster_path,
                "duration": self.movie_duration,
                "genre": self.movie_genre or [],
                "rating": self.movie_rating,
                "language": self.movie_language,
            },
            "theater": {"id": self.theater.id, "name": self.theater.name, "city": self.theater.city}
            if self.theater else self.theater_id,
            "screen": {"screenId": self.screen_id, "name": self.screen_name},
            "format": self.format,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "status": self.status,
        }
        if include_show_times:
            payload["showTimes"] = [show_time.to_dict() for show_time in self.show_times]
        return payload


class ShowTime(db.Model):
    __tablename__ = 'show_times'
    id = db.Column(db.Integer, primary_key=True)
    show_id = db.Column(db.Integer, db.ForeignKey('shows.id'), nullable=False, index=True)
    show_date = db.Column(db.Date, nullable=False)
    time = db.Column(db.String(10), nullable=False)
    prices = db.Column(db.JSON, nullable=False, default=dict)
    capacity = db.Column(db.Integer, nullable=False)
    available_seats = db.Column(db.Integer, nullable=False)
    booked_seats = db.Column(db.JSON, nullable=False, default=list)
    # seat number -> {"expiresAt": iso, "holder": username or None, "token": reservation token or None}
    seat_holds = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default=ShowTimeStatus.ACTIVE)
    # Bumped by every inventory write; guards the conditional update.
    version = db.Column(db.Integer, nullable=False, default=1)

    def starts_at(self):
        return datetime.combine(self.show_date, parse_time_of_day(self.time))

    def to_dict(self):
        return {
            "id": self.id,
            "date": _iso(self.show_date),
            "time": self.time,
            "price": self.prices or {},
            "capacity": self.capacity,
            "availableSeats": self.available_seats,
            "bookedSeats": list(self.booked_seats or []),
            "status": self.status,
        }


class Booking(db.Model):
    __tablename__ = 'bookings'
    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(20), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    guest_name = db.Column(db.String(100))
    guest_email = db.Column(db.String(120))
    guest_phone = db.Column(db.String(30))
    # Snapshot references, deliberately not foreign keys.
    show_id = db.Column(db.Integer, nullable=False)
    show_time_id = db.Column(db.Integer, nullable=False)
    movie_tmdb_id = db.Column(db.Integer)
    movie_title = db.Column(db.String(255), nullable=False)
    movie_poster_path = db.Column(db.String(300))
    theater_id = db.Column(db.Integer, nullable=False)
    theater_name = db.Column(db.String(200))
    theater_address = db.Column(db.String(300))
    screen_id = db.Column(db.String(50))
    screen_name = db.Column(db.String(100))
    show_date = db.Column(db.Date, nullable=False)
    show_time = db.Column(db.String(10), nullable=False)
    seats = db.Column(db.JSON, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)
    convenience_fee = db.Column(db.Integer, nullable=False, default=0)
    taxes = db.Column(db.Integer, nullable=False, default=0)
    final_amount = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)
    transaction_id = db.Column(db.String(40))
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING)
    paid_at = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default=BookingStatus.CONFIRMED)
    qr_code = db.Column(db.String(100))
    can_cancel = db.Column(db.Boolean, nullable=False, default=True)
    cancel_before = db.Column(db.DateTime)
    refund_amount = db.Column(db.Integer)
    reservation_token = db.Column(db.String(32), index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    cancelled_at = db.Column(db.DateTime)

    @property
    def seat_numbers(self):
        return [seat["seatNumber"] for seat in self.seats or []]

    def show_starts_at(self):
        return datetime.combine(self.show_date, parse_time_of_day(self.show_time))

    def to_dict(self, include_user=True):
        payload = {
            "id": self.id,
            "bookingId": self.booking_id,
            "show": self.show_id,
            "showTimeId": self.show_time_id,
            "movie": {
                "tmdbId": self.movie_tmdb_id,
                "title": self.movie_title,
                "posterPath": self.movie_poster_path,
            },
            "theater": {"id": self.theater_id, "name": self.theater_name, "address": self.theater_address},
            "screen": {"screenId": self.screen_id, "name": self.screen_name},
            "showTime": {"date": _iso(self.show_date), "time": self.show_time},
            "seats": list(self.seats or []),
            "totalAmount": self.total_amount,
            "convenienceFee": self.convenience_fee,
            "taxes": self.taxes,
            "finalAmount": self.final_amount,
            "payment": {
                "method": self.payment_method,
                "transactionId": self.transaction_id,
                "status": self.payment_status,
                "paidAt": _iso(self.paid_at),
            },
            "status": self.status,
            "qrCode": self.qr_code,
            "cancellationPolicy": {
                "canCancel": self.can_cancel,
                "cancelBefore": _iso(self.cancel_before),
                "refundAmount": self.refund_amount,
            },
            "createdAt": _iso(self.created_at),
            "cancelledAt": _iso(self.cancelled_at),
        }
        if include_user:
            payload["user"] = self.user_id
            if self.user_id is None:
                payload["guest"] = {"name": self.guest_name, "email": self.guest_email, "phone": self.guest_phone}
        return payload
