import re
from typing import Any, Dict

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    pre_load,
    validate,
    validates,
    validates_schema,
)

from models import PAYMENT_METHODS, SEAT_TYPES, SHOW_FORMATS, THEATER_STATUSES, ShowStatus, parse_time_of_day

SEAT_NUMBER_RE = r"^[A-Za-z]+[1-9][0-9]*$"


class RegisterSchema(Schema):
    username = fields.Str(required=True)
    password = fields.Str(required=True)
    role = fields.Str(load_default="user", validate=validate.OneOf(["admin", "user", "theater_owner"]))

    @pre_load
    def strip_username(self, data: Dict[str, Any], **kwargs):
        username = data.get("username")
        if isinstance(username, str):
            data["username"] = username.strip()
        return data

    @validates("username")
    def validate_username(self, value: str, **kwargs):
        if len(value) < 4:
            raise ValidationError("Username must have at least 4 characters")
        if not re.fullmatch(r"[A-Za-z0-9_]+", value):
            raise ValidationError("Username may only contain letters, numbers, and underscores")

    @validates("password")
    def validate_password(self, value: str, **kwargs):
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters")
        if not re.search(r"\d", value):
            raise ValidationError("Password must have a number")
        if not re.search(r"[^A-Za-z0-9]", value):
            raise ValidationError("Password must have at least 1 special character")


class SeatRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    seatNumber = fields.Str(required=True, validate=validate.Regexp(SEAT_NUMBER_RE, error="Invalid seat number"))
    # Display hints from the client; checked against the server's own prices.
    seatType = fields.Str(load_default=None, validate=validate.OneOf(SEAT_TYPES))
    price = fields.Int(load_default=None, strict=True, validate=validate.Range(min=0))


class GuestSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    email = fields.Email(required=True)
    phone = fields.Str(load_default=None, validate=validate.Length(max=30))


class BookingRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    showId = fields.Int(required=True)
    showTimeId = fields.Int(required=True)
    seats = fields.List(fields.Nested(SeatRequestSchema), required=True, validate=validate.Length(min=1))
    paymentMethod = fields.Str(required=True, validate=validate.OneOf(PAYMENT_METHODS))
    guest = fields.Nested(GuestSchema, load_default=None)

    @validates("seats")
    def validate_unique_seats(self, value, **kwargs):
        numbers = [seat["seatNumber"].upper() for seat in value]
        duplicates = sorted({number for number in numbers if numbers.count(number) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate seats: {', '.join(duplicates)}")


class CancelRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(load_default=None)


class SeatHoldSchema(Schema):
    showTimeId = fields.Int(required=True)
    seats = fields.List(
        fields.Str(validate=validate.Regexp(SEAT_NUMBER_RE, error="Invalid seat number")),
        required=True,
        validate=validate.Length(min=1),
    )


class SeatTypeSchema(Schema):
    type = fields.Str(required=True, validate=validate.OneOf(SEAT_TYPES))
    price = fields.Int(required=True, validate=validate.Range(min=0))
    rows = fields.List(fields.Str(validate=validate.Regexp(r"^[A-Z]$")), load_default=list)


class SeatLayoutSchema(Schema):
    rows = fields.Int(required=True, validate=validate.Range(min=1, max=26))
    seatsPerRow = fields.Int(required=True, validate=validate.Range(min=1))
    seatTypes = fields.List(fields.Nested(SeatTypeSchema), load_default=list)


class ScreenSchema(Schema):
    screenId = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    name = fields.Str(required=True)
    capacity = fields.Int(required=True, validate=validate.Range(min=1))
    seatLayout = fields.Nested(SeatLayoutSchema, required=True)

    @validates_schema
    def validate_capacity(self, data, **kwargs):
        layout = data["seatLayout"]
        seats = layout["rows"] * layout["seatsPerRow"]
        if data["capacity"] != seats:
            raise ValidationError(f"Capacity must equal the {seats} seats of the layout", "capacity")


class LocationSchema(Schema):
    address = fields.Str(required=True)
    city = fields.Str(required=True)
    state = fields.Str(required=True)
    pincode = fields.Str(required=True)


class ContactSchema(Schema):
    phone = fields.Str(load_default=None)
    email = fields.Email(load_default=None)


class TheaterSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    location = fields.Nested(LocationSchema, required=True)
    screens = fields.List(fields.Nested(ScreenSchema), load_default=list)
    amenities = fields.List(fields.Str(), load_default=list)
    contact = fields.Nested(ContactSchema, load_default=dict)

    @pre_load
    def strip_name(self, data: Dict[str, Any], **kwargs):
        name = data.get("name")
        if isinstance(name, str):
            data["name"] = name.strip()
        return data


class TheaterUpdateSchema(TheaterSchema):
    """Theater details only; screens are fixed once shows are scheduled on them."""

    class Meta:
        unknown = EXCLUDE
        exclude = ("screens",)

    name = fields.Str(validate=validate.Length(min=1, max=200))
    location = fields.Nested(LocationSchema(partial=True))
    amenities = fields.List(fields.Str())
    # replaces the whole contact block
    contact = fields.Nested(ContactSchema)
    status = fields.Str(validate=validate.OneOf(THEATER_STATUSES))


class MovieSnapshotSchema(Schema):
    tmdbId = fields.Int(required=True)
    title = fields.Str(required=True)
    posterPath = fields.Str(load_default=None)
    duration = fields.Int(load_default=None)
    genre = fields.List(fields.Str(), load_default=list)
    rating = fields.Str(load_default=None)
    language = fields.Str(load_default=None)


class MovieUpdateSchema(Schema):
    """Only the keys sent are changed."""

    tmdbId = fields.Int()
    title = fields.Str(validate=validate.Length(min=1))
    posterPath = fields.Str(allow_none=True)
    duration = fields.Int(allow_none=True)
    genre = fields.List(fields.Str())
    rating = fields.Str(allow_none=True)
    language = fields.Str(allow_none=True)


class ShowScreenSchema(Schema):
    screenId = fields.Str(required=True)
    name = fields.Str(load_default=None)


class ShowTimeSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    date = fields.Date(required=True)
    time = fields.Str(required=True)
    price = fields.Dict(
        keys=fields.Str(validate=validate.OneOf(SEAT_TYPES)),
        values=fields.Int(validate=validate.Range(min=0)),
        load_default=dict,
    )

    @validates("time")
    def validate_time(self, value: str, **kwargs):
        try:
            parse_time_of_day(value)
        except ValueError:
            raise ValidationError("Time must look like 14:30 or 2:30 PM")


class ShowSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    movie = fields.Nested(MovieSnapshotSchema, required=True)
    theater = fields.Int(required=True)
    screen = fields.Nested(ShowScreenSchema, required=True)
    showTimes = fields.List(fields.Nested(ShowTimeSchema), required=True, validate=validate.Length(min=1))
    format = fields.Str(load_default="2D", validate=validate.OneOf(SHOW_FORMATS))
    startDate = fields.Date(required=True)
    endDate = fields.Date(required=True)
    status = fields.Str(load_default=ShowStatus.ACTIVE, validate=validate.OneOf(ShowStatus.ALL))

    @validates_schema
    def validate_window(self, data, **kwargs):
        if data["endDate"] < data["startDate"]:
            raise ValidationError("endDate must not be before startDate", "endDate")


class ShowUpdateSchema(Schema):
    """Show-level fields only; seat inventory is never writable through updates."""

    class Meta:
        unknown = EXCLUDE

    movie = fields.Nested(MovieUpdateSchema)
    format = fields.Str(validate=validate.OneOf(SHOW_FORMATS))
    startDate = fields.Date()
    endDate = fields.Date()
    status = fields.Str(validate=validate.OneOf(ShowStatus.ALL))


register_schema = RegisterSchema()
booking_request_schema = BookingRequestSchema()
cancel_request_schema = CancelRequestSchema()
seat_hold_schema = SeatHoldSchema()
theater_schema = TheaterSchema()
theater_update_schema = TheaterUpdateSchema()
show_schema = ShowSchema()
show_update_schema = ShowUpdateSchema()
