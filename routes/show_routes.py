from datetime import date, datetime, timedelta

from flask import Blueprint, current_app, jsonify, request
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from models import Screen, Show, ShowStatus, ShowTime, Theater, db
from routes.auth_routes import current_user, roles_required
from routes.booking_routes import load_payload
from schemas import seat_hold_schema, show_schema, show_update_schema
from ticketing import inventory
from ticketing.exceptions import NotFound, PersistenceError, ValidationError
from ticketing.workflow import DEFAULT_HOLD_SECONDS

show_bp = Blueprint("show_api", __name__)


def _get_show(show_id):
    show = db.session.get(Show, show_id)
    if show is None:
        raise NotFound("Show not found")
    return show


def _commit(action):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to {}", action)
        raise PersistenceError() from exc


@show_bp.route("/api/shows", methods=["GET"])
def list_shows():
    movie_id = request.args.get("movieId", type=int)
    theater_id = request.args.get("theaterId", type=int)
    day = request.args.get("date")
    city = request.args.get("city")

    query = Show.query.filter_by(status=ShowStatus.ACTIVE)
    if movie_id is not None:
        query = query.filter_by(movie_tmdb_id=movie_id)
    if theater_id is not None:
        query = query.filter_by(theater_id=theater_id)

    if day:
        try:
            search_date = datetime.strptime(day, "%Y-%m-%d").date()
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")
        time_filter = ShowTime.show_date == search_date
    else:
        # Default to today and future shows
        time_filter = ShowTime.show_date >= date.today()
    query = query.filter(Show.show_times.any(time_filter))

    if city:
        query = query.join(Theater).filter(Theater.city.ilike(f"%{city}%"))

    shows = query.order_by(Show.id).all()
    return jsonify([show.to_dict() for show in shows])


@show_bp.route("/api/shows/<int:show_id>", methods=["GET"])
def get_show(show_id):
    show = _get_show(show_id)
    payload = show.to_dict()

    show_time_id = request.args.get("showTimeId", type=int)
    if show_time_id is not None:
        show_time = show.find_show_time(show_time_id)
        if show_time is None:
            raise NotFound("Show time not found")
        selected = show_time.to_dict()
        screen = show.screen
        if screen is not None:
            selected["seatLayout"] = screen.seat_layout
        payload["selectedShowTime"] = selected

    return jsonify(payload)


@show_bp.route("/api/shows/<int:show_id>/showtimes/<int:show_time_id>/seats", methods=["GET"])
def get_seat_map(show_id, show_time_id):
    show = _get_show(show_id)
    show_time = show.find_show_time(show_time_id)
    if show_time is None:
        raise NotFound("Show time not found")
    return jsonify(inventory.build_seat_map(show, show_time, show.screen))


@show_bp.route("/api/shows", methods=["POST"])
@roles_required("admin", "theater_owner")
def create_show():
    payload = load_payload(show_schema)

    theater = db.session.get(Theater, payload["theater"])
    if theater is None:
        raise NotFound("Theater not found")
    screen = Screen.query.filter_by(theater_id=theater.id, screen_id=payload["screen"]["screenId"]).first()
    if screen is None:
        raise NotFound("Screen not found in theater")

    movie = payload["movie"]
    show = Show(
        theater_id=theater.id,
        movie_tmdb_id=movie["tmdbId"],
        movie_title=movie["title"],
        movie_poster_path=movie.get("posterPath"),
        movie_duration=movie.get("duration"),
        movie_genre=movie.get("genre") or [],
        movie_rating=movie.get("rating"),
        movie_language=movie.get("language"),
        screen_id=screen.screen_id,
        screen_name=payload["screen"].get("name") or screen.name,
        format=payload["format"],
        start_date=payload["startDate"],
        end_date=payload["endDate"],
        status=payload["status"],
    )
    for entry in payload["showTimes"]:
        prices = screen.layout_prices()
        prices.update(entry["price"])
        show.show_times.append(
            ShowTime(
                show_date=entry["date"],
                time=entry["time"],
                prices=prices,
                capacity=screen.capacity,
                available_seats=screen.capacity,
                booked_seats=[],
                seat_holds={},
            )
        )

    db.session.add(show)
    _commit("create show")
    logger.info("Created show {} ({}) with {} show times", show.id, show.movie_title, len(show.show_times))
    return jsonify(show.to_dict()), 201


@show_bp.route("/api/shows/<int:show_id>", methods=["PUT"])
@roles_required("admin", "theater_owner")
def update_show(show_id):
    show = _get_show(show_id)
    payload = load_payload(show_update_schema)
    if not payload:
        raise ValidationError("No valid fields provided for update")

    movie = payload.pop("movie", {})
    for key, column in (
        ("tmdbId", "movie_tmdb_id"),
        ("title", "movie_title"),
        ("posterPath", "movie_poster_path"),
        ("duration", "movie_duration"),
        ("genre", "movie_genre"),
        ("rating", "movie_rating"),
        ("language", "movie_language"),
    ):
        if key in movie:
            setattr(show, column, movie[key])

    for key, column in (("format", "format"), ("startDate", "start_date"), ("endDate", "end_date"), ("status", "status")):
        if key in payload:
            setattr(show, column, payload[key])
    if show.end_date < show.start_date:
        db.session.rollback()
        raise ValidationError("endDate must not be before startDate")

    _commit("update show")
    return jsonify(show.to_dict())


@show_bp.route("/api/shows/<int:show_id>", methods=["DELETE"])
@roles_required("admin")
def delete_show(show_id):
    show = _get_show(show_id)
    db.session.delete(show)
    _commit("delete show")
    return jsonify({"message": "Show deleted successfully"})


@show_bp.route("/api/shows/<int:show_id>/book-seats", methods=["PUT"])
def hold_seats(show_id):
    # Temporary hold for the logged in user; create a booking before it expires
    user = current_user()
    payload = load_payload(seat_hold_schema)
    hold_seconds = current_app.config.get("SEAT_HOLD_SECONDS", DEFAULT_HOLD_SECONDS)
    now = datetime.now()

    reserved = inventory.reserve_seats(
        show_id, payload["showTimeId"], payload["seats"],
        holder=user.username, hold_seconds=hold_seconds, now=now,
    )
    return jsonify(
        {
            "message": "Seats temporarily reserved",
            "reservedSeats": reserved,
            "expiresAt": (now + timedelta(seconds=hold_seconds)).isoformat(),
            "expiresIn": f"{hold_seconds // 60} minutes",
        }
    )


@show_bp.route("/api/shows/<int:show_id>/book-seats", methods=["DELETE"])
def release_held_seats(show_id):
    user = current_user()
    payload = load_payload(seat_hold_schema)
    released = inventory.release_seats(show_id, payload["showTimeId"], payload["seats"], holder=user.username)
    return jsonify({"message": "Seats released", "releasedSeats": released})
