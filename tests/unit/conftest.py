import os
import sys
import tempfile
from datetime import date, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("SECRET_KEY", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-long-enough-for-hs256")
os.environ.setdefault("PEPPER", "test-pepper")
# A file database so that worker threads get their own connections
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'unit.db'}?check_same_thread=false"
)
os.environ.setdefault("LOG_LEVEL", "WARNING")

from flask_jwt_extended import create_access_token

from app import app, db
from models import Screen, Show, ShowTime, Theater, User
from routes.auth_routes import hash_password

SHOW_DAY = date.today() + timedelta(days=3)

# Rows A-C, 4 seats each: A Premium, B Gold, C Regular
SEAT_LAYOUT = {
    "rows": 3,
    "seatsPerRow": 4,
    "seatTypes": [
        {"type": "Premium", "price": 300, "rows": ["A"]},
        {"type": "Gold", "price": 200, "rows": ["B"]},
        {"type": "Regular", "price": 100, "rows": ["C"]},
    ],
}
SEAT_PRICES = {"Premium": 300, "Gold": 200, "Regular": 100}


@pytest.fixture()
def client():
    app.config.update(TESTING=True, SEAT_HOLD_SECONDS=600, RESERVATION_MAX_RETRIES=5, BOOKING_ID_MAX_ATTEMPTS=5)
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield app.test_client()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def make_user(client):
    def _make(username="alice", role="user"):
        user = User.query.filter_by(username=username).first()
        if user is None:
            password_hash, salt = hash_password("Valid123!")
            user = User(username=username, password_hash=password_hash, salt=salt, role=role)
            db.session.add(user)
            db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers(make_user):
    def _headers(username="alice", role="user"):
        make_user(username, role)
        token = create_access_token(identity=username, additional_claims={"role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def show(client):
    theater = Theater(name="Galaxy Multiplex", address="1 MG Road", city="Pune", state="Maharashtra", pincode="411001")
    theater.screens.append(Screen(screen_id="S1", name="Screen 1", capacity=12, seat_layout=SEAT_LAYOUT))
    db.session.add(theater)
    db.session.flush()

    record = Show(
        theater_id=theater.id,
        movie_tmdb_id=329865,
        movie_title="Arrival",
        movie_genre=["Sci-Fi"],
        screen_id="S1",
        screen_name="Screen 1",
        start_date=SHOW_DAY,
        end_date=SHOW_DAY + timedelta(days=1),
    )
    for timing in ("19:00", "22:00"):
        record.show_times.append(
            ShowTime(
                show_date=SHOW_DAY,
                time=timing,
                prices=dict(SEAT_PRICES),
                capacity=12,
                available_seats=12,
                booked_seats=[],
                seat_holds={},
            )
        )
    db.session.add(record)
    db.session.commit()

    return SimpleNamespace(
        show_id=record.id,
        show_time_id=record.show_times[0].id,
        other_show_time_id=record.show_times[1].id,
        theater_id=theater.id,
        starts_at=record.show_times[0].starts_at(),
    )


@pytest.fixture()
def load_show_time():
    def _load(show_time_id):
        db.session.rollback()
        show_time = db.session.get(ShowTime, show_time_id, populate_existing=True)
        # the seat counter and the seat list must always agree
        assert show_time.available_seats + len(show_time.booked_seats) == show_time.capacity
        return show_time

    return _load
