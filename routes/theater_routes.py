from datetime import date

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import Screen, Show, ShowStatus, ShowTime, Theater, User, db
from routes.auth_routes import current_user, roles_required
from routes.booking_routes import load_payload
from schemas import theater_schema, theater_update_schema
from ticketing.exceptions import Forbidden, NotFound, PersistenceError, ValidationError

theater_bp = Blueprint("theater_api", __name__)


@theater_bp.route("/api/theaters", methods=["GET"])
def list_theaters():
    city = request.args.get("city")
    movie_id = request.args.get("movieId", type=int)

    query = Theater.query
    if city:
        query = query.filter(Theater.city.ilike(f"%{city}%"))
    theaters = query.order_by(Theater.id).all()

    if movie_id is None:
        return jsonify([theater.to_dict() for theater in theaters])

    # Only theaters currently screening the movie, with their show timings
    payload = []
    for theater in theaters:
        shows = (
            Show.query.filter_by(theater_id=theater.id, movie_tmdb_id=movie_id, status=ShowStatus.ACTIVE)
            .filter(Show.show_times.any(ShowTime.show_date >= date.today()))
            .all()
        )
        if shows:
            entry = theater.to_dict()
            entry["shows"] = [show.to_dict() for show in shows]
            payload.append(entry)
    return jsonify(payload)


@theater_bp.route("/api/theaters/<int:theater_id>", methods=["GET"])
def get_theater(theater_id):
    theater = db.session.get(Theater, theater_id)
    if theater is None:
        raise NotFound("Theater not found")
    return jsonify(theater.to_dict())


@theater_bp.route("/api/theaters", methods=["POST"])
@roles_required("admin", "theater_owner")
def create_theater():
    payload = load_payload(theater_schema)

    screen_ids = [screen["screenId"] for screen in payload["screens"]]
    if len(screen_ids) != len(set(screen_ids)):
        raise ValidationError("Screen ids must be unique within a theater")

    location = payload["location"]
    contact = payload.get("contact") or {}
    theater = Theater(
        name=payload["name"],
        address=location["address"],
        city=location["city"],
        state=location["state"],
        pincode=location["pincode"],
        amenities=payload["amenities"],
        phone=contact.get("phone"),
        email=contact.get("email"),
    )
    if get_jwt().get("role") == "theater_owner":
        owner = User.query.filter_by(username=get_jwt_identity()).first()
        theater.owner_id = owner.id if owner else None

    for screen in payload["screens"]:
        theater.screens.append(
            Screen(
                screen_id=screen["screenId"],
                name=screen["name"],
                capacity=screen["capacity"],
                seat_layout=screen["seatLayout"],
            )
        )

    try:
        db.session.add(theater)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValidationError("Theater could not be saved") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to create theater {}", payload["name"])
        raise PersistenceError() from exc

    return jsonify(theater.to_dict()), 201


@theater_bp.route("/api/theaters/<int:theater_id>", methods=["DELETE"])
@roles_required("admin")
def delete_theater(theater_id):
    theater = db.session.get(Theater, theater_id)
    if theater is None:
        raise NotFound("Theater not found")

    try:
        db.session.delete(theater)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to delete theater {}", theater_id)
        raise PersistenceError() from exc

    return jsonify({"message": "Theater deleted successfully"})


@theater_bp.route("/api/theaters/my-theaters", methods=["GET"])
@roles_required("theater_owner")
def my_theaters():
    owner = current_user()
    theaters = Theater.query.filter_by(owner_id=owner.id).order_by(Theater.id).all()
    return jsonify([theater.to_dict() for theater in theaters])


@theater_bp.route("/api/theaters/<int:theater_id>", methods=["PUT"])
@roles_required("admin", "theater_owner")
def update_theater(theater_id):
    theater = db.session.get(Theater, theater_id)
    if theater is None:
        raise NotFound("Theater not found")
    if get_jwt().get("role") != "admin" and theater.owner_id != current_user().id:
        raise Forbidden("You can only update your own theaters")

    payload = load_payload(theater_update_schema)
    if not payload:
        raise ValidationError("No valid fields provided for update")

    for key in ("name", "amenities", "status"):
        if key in payload:
            setattr(theater, key, payload[key])
    # location keys match the column names
    for key, value in payload.get("location", {}).items():
        setattr(theater, key, value)
    if "contact" in payload:
        theater.phone = payload["contact"].get("phone")
        theater.email = payload["contact"].get("email")

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to update theater {}", theater_id)
        raise PersistenceError() from exc

    logger.info("Updated theater {}", theater_id)
    return jsonify(theater.to_dict())
