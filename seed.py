import os
from datetime import date, timedelta

from loguru import logger

from models import Screen, Show, ShowTime, Theater, User, db
from routes.auth_routes import hash_password

sample_theaters = [
    {
        "name": "PVR Cinemas Phoenix Mills",
        "address": "Phoenix Mills, Lower Parel",
        "city": "Mumbai",
        "state": "Maharashtra",
        "pincode": "400013",
        "amenities": ["Parking", "Food Court", "AC", "3D", "Wheelchair Accessible"],
        "phone": "+91-22-1234-5678",
        "email": "phoenix@pvr.com",
        "screens": [
            {
                "screen_id": "PVR1",
                "name": "Screen 1",
                "capacity": 200,
                "seat_layout": {
                    "rows": 10,
                    "seatsPerRow": 20,
                    "seatTypes": [
                        {"type": "Premium", "price": 350, "rows": ["A", "B"]},
                        {"type": "Gold", "price": 250, "rows": ["C", "D", "E"]},
                        {"type": "Silver", "price": 200, "rows": ["F", "G", "H"]},
                        {"type": "Regular", "price": 150, "rows": ["I", "J"]},
                    ],
                },
            },
            {
                "screen_id": "PVR2",
                "name": "Screen 2",
                "capacity": 144,
                "seat_layout": {
                    "rows": 8,
                    "seatsPerRow": 18,
                    "seatTypes": [
                        {"type": "Gold", "price": 280, "rows": ["A", "B", "C"]},
                        {"type": "Silver", "price": 220, "rows": ["D", "E", "F"]},
                        {"type": "Regular", "price": 180, "rows": ["G", "H"]},
                    ],
                },
            },
        ],
    },
]

sample_movies = [
    {"tmdb_id": 1022789, "title": "Inside Out 2", "duration": 96, "genre": ["Animation", "Family"], "rating": "U"},
    {"tmdb_id": 533535, "title": "Deadpool & Wolverine", "duration": 128, "genre": ["Action", "Comedy"], "rating": "A"},
]

show_timings = ["10:00", "14:30", "19:00", "22:15"]


def seed_demo_data(days=3):
    """Create an admin account plus a theater with shows for the next ``days`` days. Safe to re-run."""
    created = {"users": 0, "theaters": 0, "shows": 0}

    admin_username = os.getenv("ADMIN_USERNAME", "admin")
    admin_password = os.getenv("ADMIN_PASSWORD", "Admin123!")
    if not User.query.filter_by(username=admin_username).first():
        password_hash, salt = hash_password(admin_password)
        db.session.add(User(username=admin_username, password_hash=password_hash, salt=salt, role="admin"))
        created["users"] += 1
        logger.info("Admin user created")
    else:
        logger.info("Admin user already exists")

    today = date.today()
    for data in sample_theaters:
        if Theater.query.filter_by(name=data["name"]).first():
            logger.info("Skipping {} (already in DB)", data["name"])
            continue

        theater = Theater(**{key: value for key, value in data.items() if key != "screens"})
        for screen_data in data["screens"]:
            theater.screens.append(Screen(**screen_data))
        db.session.add(theater)
        db.session.flush()
        created["theaters"] += 1

        for screen, movie in zip(theater.screens, sample_movies):
            show = Show(
                theater_id=theater.id,
                movie_tmdb_id=movie["tmdb_id"],
                movie_title=movie["title"],
                movie_duration=movie["duration"],
                movie_genre=movie["genre"],
                movie_rating=movie["rating"],
                movie_language="English",
                screen_id=screen.screen_id,
                screen_name=screen.name,
                format="2D",
                start_date=today,
                end_date=today + timedelta(days=days - 1),
            )
            for offset in range(days):
                for timing in show_timings:
                    show.show_times.append(
                        ShowTime(
                            show_date=today + timedelta(days=offset),
                            time=timing,
                            prices=screen.layout_prices(),
                            capacity=screen.capacity,
                            available_seats=screen.capacity,
                            booked_seats=[],
                            seat_holds={},
                        )
                    )
            db.session.add(show)
            created["shows"] += 1
            logger.info("Added show: {} on {}", movie["title"], screen.name)

    db.session.commit()
    logger.info("Seeding complete: {}", created)
    return created
