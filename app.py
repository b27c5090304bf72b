import os
from datetime import datetime

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_jwt_extended import JWTManager
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from models import db
from routes.auth_routes import auth_bp
from routes.booking_routes import booking_bp
from routes.show_routes import show_bp
from routes.theater_routes import theater_bp
from routes.user_routes import user_bp
from seed import seed_demo_data
from ticketing.exceptions import BookingError
from ticketing.inventory import release_cancelled_seats, sweep_expired_holds
from ticketing.log_config import setup_logging

load_dotenv()

setup_logging(os.getenv("LOG_LEVEL", "INFO"))

app = Flask(__name__)
app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL", "sqlite:///flickbook.db")
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config['SECRET_KEY'] = os.getenv("SECRET_KEY")
app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY")
app.config["JWT_TOKEN_LOCATION"] = ["cookies", "headers"]
app.config["JWT_COOKIE_SECURE"] = False
app.config["JWT_COOKIE_CSRF_PROTECT"] = False
app.config["SEAT_HOLD_SECONDS"] = int(os.getenv("SEAT_HOLD_SECONDS", "600"))
app.config["RESERVATION_MAX_RETRIES"] = int(os.getenv("RESERVATION_MAX_RETRIES", "5"))
app.config["BOOKING_ID_MAX_ATTEMPTS"] = int(os.getenv("BOOKING_ID_MAX_ATTEMPTS", "5"))

db.init_app(app)

jwt = JWTManager(app)
app.register_blueprint(auth_bp)
app.register_blueprint(booking_bp)
app.register_blueprint(show_bp)
app.register_blueprint(theater_bp)
app.register_blueprint(user_bp)

with app.app_context():
    db.create_all()


@app.errorhandler(BookingError)
def handle_booking_error(error):
    if error.status_code >= 500:
        db.session.rollback()
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(SQLAlchemyError)
def handle_storage_error(error):
    db.session.rollback()
    logger.exception("Unhandled storage error")
    return jsonify({"message": "Something went wrong, please try again"}), 500


# -----------------------
# Routes
# -----------------------
@app.route("/")
def index():
    return jsonify({
        "message": "FlickBook booking API is running",
        "timestamp": datetime.now().isoformat(),
    })


@app.route("/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "Connected"
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Health check could not reach the database")
        database = "Disconnected"
    status = "OK" if database == "Connected" else "DEGRADED"
    return jsonify({"status": status, "database": database, "timestamp": datetime.now().isoformat()}), (
        200 if status == "OK" else 503
    )


# -----------------------
# CLI
# -----------------------
@app.cli.command("sweep-holds")
def sweep_holds_command():
    """Release expired seat holds and seats still taken by cancelled bookings."""
    freed = sweep_expired_holds()
    click.echo(f"Released {freed} expired seat holds")
    stale = release_cancelled_seats()
    click.echo(f"Released {stale} seats of cancelled bookings")


@app.cli.command("seed")
@click.option("--days", default=3, show_default=True, help="Days of show times to create.")
def seed_command(days):
    """Load a demo admin account, theater and shows."""
    created = seed_demo_data(days=days)
    click.echo(f"Seeded {created}")


if __name__ == '__main__':
    app.run(debug=True)
