import json
from datetime import date, timedelta

from app import app, db
from models import Booking, Show, ShowTime, Theater, User


def test_home_page_reports_status(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.get_json()["message"] == "FlickBook booking API is running"


def test_health_reports_database(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["database"] == "Connected"
# valid registration test
def test_register_creates_valid_user(client):
    payload = {"username": "unit_user", "password": "secret123!"}
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 201
    with app.app_context():
        assert User.query.filter_by(username="unit_user").count() == 1

#duplicate registration test
def test_duplicate_register_returns_conflict(client):
    payload = {"username": "dup_user", "password": "secret123!"}
    client.post("/register", data=json.dumps(payload), content_type="application/json")
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 409

#invalid username registration tests
def test_register_invalid_username_valid_password(client):
    payload = {"username": "inv@lid", "password": "Valid123!"}
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Invalid input"
    username_errors = [error["msg"] for error in body["errors"] if error["field"] == "username"]
    assert "Username may only contain letters, numbers, and underscores" in username_errors

#test entering in a short username
def test_register_short_username(client):
    payload = {"username": "abc", "password": "Valid123!"}
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Invalid input"
    username_errors = [error["msg"] for error in body["errors"] if error["field"] == "username"]
    assert "Username must have at least 4 characters" in username_errors

#invalid password registration tests
def test_register_validation_errors(client):
    payload = {"username": "ab", "password": "123"}
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Invalid input"
    username_errors = [error["msg"] for error in body["errors"] if error["field"] == "username"]
    password_errors = [error["msg"] for error in body["errors"] if error["field"] == "password"]
    assert "Username must have at least 4 characters" in username_errors
    assert "Password must be at least 8 characters" in password_errors

#test that you enter in a password with no number
def test_register_no_number_in_password(client):
    payload = {"username": "validuser", "password": "NoNumber!"}
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Invalid input"
    password_errors = [error["msg"] for error in body["errors"] if error["field"] == "password"]
    assert "Password must have a number" in password_errors

#Test entering in a valid username and invalid password(missing special character)
def test_register_valid_username_no_special_character_in_password(client):
    payload = {"username": "validuser", "password": "shorttt1"}
    response = client.post("/register", data=json.dumps(payload), content_type="application/json")
    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Invalid input"
    password_errors = [error["msg"] for error in body["errors"] if error["field"] == "password"]
    assert "Password must have at least 1 special character" in password_errors

# VALID LOGIN
def test_login_with_valid_credentials(client):
    register_payload = {"username": "login_user", "password": "Valid123!"}

    # First register the user
    client.post("/register", data=json.dumps(register_payload), content_type="application/json")

    # Now login
    login_payload = {"username": "login_user", "password": "Valid123!"}
    response = client.post("/login", data=json.dumps(login_payload), content_type="application/json")

    assert response.status_code == 200
    body = response.get_json()
    assert "token" in body

# INVALID PASSWORD
def test_login_with_invalid_password(client):
    register_payload = {"username": "user2", "password": "Valid123!"}
    client.post("/register", data=json.dumps(register_payload), content_type="application/json")

    login_payload = {"username": "user2", "password": "WrongPass1!"}
    response = client.post("/login", data=json.dumps(login_payload), content_type="application/json")

    assert response.status_code == 401
    body = response.get_json()
    assert body["message"] == "Invalid password"


# USER DOES NOT EXIST
def test_login_user_not_found(client):
    login_payload = {"username": "ghost", "password": "Valid123!"}
    response = client.post("/login", data=json.dumps(login_payload), content_type="application/json")

    assert response.status_code == 404
    body = response.get_json()
    assert body["message"] == "User not found"



def booking_payload(show, *seats, **extra):
    payload = {
        "showId": show.show_id,
        "showTimeId": show.show_time_id,
        "seats": [{"seatNumber": seat} for seat in seats],
        "paymentMethod": "UPI",
    }
    payload.update(extra)
    return payload


# SHOWS
def test_list_shows_filters(client, show):
    assert len(client.get("/api/shows").get_json()) == 1
    assert len(client.get("/api/shows?city=pune").get_json()) == 1
    assert client.get("/api/shows?city=Delhi").get_json() == []
    assert client.get("/api/shows?movieId=1").get_json() == []

    response = client.get("/api/shows?date=not-a-date")
    assert response.status_code == 400


def test_get_show_with_selected_show_time(client, show):
    response = client.get(f"/api/shows/{show.show_id}?showTimeId={show.show_time_id}")
    assert response.status_code == 200
    body = response.get_json()
    assert body["movie"]["title"] == "Arrival"
    assert body["selectedShowTime"]["id"] == show.show_time_id
    assert body["selectedShowTime"]["seatLayout"]["seatsPerRow"] == 4

    assert client.get(f"/api/shows/{show.show_id}?showTimeId=9999").status_code == 404
    assert client.get("/api/shows/9999").status_code == 404


def test_seat_map_route(client, show):
    response = client.get(f"/api/shows/{show.show_id}/showtimes/{show.show_time_id}/seats")
    assert response.status_code == 200
    body = response.get_json()
    assert body["availableSeats"] == 12
    assert [row["seatType"] for row in body["rows"]] == ["Premium", "Gold", "Regular"]


# BOOKINGS
def test_post_booking_success(client, show, auth_headers):
    headers = auth_headers("alice")
    response = client.post(
        "/api/bookings", data=json.dumps(booking_payload(show, "A1", "B2")),
        content_type="application/json", headers=headers,
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["bookingId"].startswith("BMS")
    assert body["finalAmount"] == 602
    assert body["status"] == "Confirmed"
    assert body["payment"]["status"] == "Success"

    me = client.get("/api/users/me", headers=headers).get_json()
    assert me["bookingHistory"] == [body["bookingId"]]


def test_post_booking_conflict_lists_unavailable_seats(client, show, auth_headers):
    client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1")),
                content_type="application/json", headers=auth_headers("alice"))

    response = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1", "A2")),
                           content_type="application/json", headers=auth_headers("bob"))

    assert response.status_code == 409
    assert response.get_json()["unavailableSeats"] == ["A1"]
    with app.app_context():
        assert Booking.query.count() == 1


# test a missing seat list in booking creation
def test_post_booking_missing_seats(client, show, auth_headers):
    payload = booking_payload(show)
    del payload["seats"]
    response = client.post("/api/bookings", data=json.dumps(payload),
                           content_type="application/json", headers=auth_headers())

    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Invalid booking payload"
    assert "seats" in body["errors"]


def test_post_booking_duplicate_seats(client, show, auth_headers):
    response = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1", "a1")),
                           content_type="application/json", headers=auth_headers())
    assert response.status_code == 400


def test_post_booking_price_mismatch(client, show, auth_headers):
    payload = booking_payload(show)
    payload["seats"] = [{"seatNumber": "A1", "seatType": "Premium", "price": 1}]
    response = client.post("/api/bookings", data=json.dumps(payload),
                           content_type="application/json", headers=auth_headers())

    assert response.status_code == 400
    assert "A1" in response.get_json()["errors"]


def test_guest_booking_requires_contact(client, show):
    response = client.post("/api/bookings", data=json.dumps(booking_payload(show, "C1")),
                           content_type="application/json")
    assert response.status_code == 400
    assert "guest" in response.get_json()["errors"]


def test_guest_books_and_cancels_by_email(client, show):
    guest = {"name": "Gita", "email": "gita@example.com"}
    response = client.post("/api/bookings", data=json.dumps(booking_payload(show, "C1", guest=guest)),
                           content_type="application/json")
    assert response.status_code == 201
    booking_id = response.get_json()["bookingId"]

    wrong = client.put(f"/api/bookings/{booking_id}/cancel", data=json.dumps({"email": "x@example.com"}),
                       content_type="application/json")
    assert wrong.status_code == 404

    response = client.put(f"/api/bookings/{booking_id}/cancel", data=json.dumps({"email": "gita@example.com"}),
                          content_type="application/json")
    assert response.status_code == 200
    assert response.get_json()["refundAmount"] == 108


def test_cancel_booking_route(client, show, auth_headers):
    headers = auth_headers("alice")
    booking_id = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1", "B2")),
                             content_type="application/json", headers=headers).get_json()["bookingId"]

    response = client.put(f"/api/bookings/{booking_id}/cancel", headers=headers)
    assert response.status_code == 200
    body = response.get_json()
    assert body["message"] == "Booking cancelled successfully"
    assert body["refundAmount"] == 542
    assert body["cancellationCharge"] == 60

    again = client.put(f"/api/bookings/{booking_id}/cancel", headers=headers)
    assert again.status_code == 404

    seats = client.get(f"/api/shows/{show.show_id}/showtimes/{show.show_time_id}/seats").get_json()
    assert seats["availableSeats"] == 12


def test_bookings_require_login(client):
    assert client.get("/api/bookings").status_code == 401
    assert client.get("/api/users/me").status_code == 401


def test_bookings_are_private(client, show, auth_headers):
    booking_id = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1")),
                             content_type="application/json", headers=auth_headers("alice")).get_json()["bookingId"]
    bob = auth_headers("bob")

    assert client.get("/api/bookings", headers=bob).get_json() == []
    assert client.get(f"/api/bookings/{booking_id}", headers=bob).status_code == 404
    assert client.put(f"/api/bookings/{booking_id}/cancel", headers=bob).status_code == 404

    mine = client.get(f"/api/bookings/{booking_id}", headers=auth_headers("alice"))
    assert mine.status_code == 200
    assert mine.get_json()["seats"][0]["seatType"] == "Premium"


def test_ticket_lookup_is_public(client, show, auth_headers):
    booking_id = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1")),
                             content_type="application/json", headers=auth_headers()).get_json()["bookingId"]

    response = client.get(f"/api/bookings/ticket/{booking_id}")
    assert response.status_code == 200
    assert "user" not in response.get_json()
    assert client.get("/api/bookings/ticket/BMS000000NONE").get_json()["message"] == "Invalid ticket"


# SEAT HOLDS
def test_held_seats_are_reserved_for_the_holder(client, show, auth_headers):
    alice = auth_headers("alice")
    hold = {"showTimeId": show.show_time_id, "seats": ["A1"]}
    response = client.put(f"/api/shows/{show.show_id}/book-seats", data=json.dumps(hold),
                          content_type="application/json", headers=alice)
    assert response.status_code == 200
    body = response.get_json()
    assert body["reservedSeats"] == ["A1"]
    assert body["expiresIn"] == "10 minutes"

    taken = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1")),
                        content_type="application/json", headers=auth_headers("bob"))
    assert taken.status_code == 409

    booked = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1")),
                         content_type="application/json", headers=alice)
    assert booked.status_code == 201


def test_release_held_seats(client, show, auth_headers):
    alice = auth_headers("alice")
    hold = {"showTimeId": show.show_time_id, "seats": ["B1", "B2"]}
    client.put(f"/api/shows/{show.show_id}/book-seats", data=json.dumps(hold),
               content_type="application/json", headers=alice)

    other = client.delete(f"/api/shows/{show.show_id}/book-seats", data=json.dumps(hold),
                          content_type="application/json", headers=auth_headers("bob"))
    assert other.get_json()["releasedSeats"] == []

    response = client.delete(f"/api/shows/{show.show_id}/book-seats", data=json.dumps(hold),
                             content_type="application/json", headers=alice)
    assert response.status_code == 200
    assert response.get_json()["releasedSeats"] == ["B1", "B2"]


def test_holding_seats_requires_login(client, show):
    hold = {"showTimeId": show.show_time_id, "seats": ["A1"]}
    response = client.put(f"/api/shows/{show.show_id}/book-seats", data=json.dumps(hold),
                          content_type="application/json")
    assert response.status_code == 401


# ADMIN
def test_admin_creates_theater_and_show(client, auth_headers):
    admin = auth_headers("admin", role="admin")
    theater = {
        "name": "  Metro Cinema ",
        "location": {"address": "2 Park St", "city": "Kolkata", "state": "West Bengal", "pincode": "700016"},
        "screens": [
            {
                "screenId": "M1",
                "name": "Audi 1",
                "capacity": 10,
                "seatLayout": {
                    "rows": 2,
                    "seatsPerRow": 5,
                    "seatTypes": [{"type": "Gold", "price": 250, "rows": ["A"]},
                                  {"type": "Regular", "price": 150, "rows": ["B"]}],
                },
            }
        ],
    }
    response = client.post("/api/theaters", data=json.dumps(theater), content_type="application/json", headers=admin)
    assert response.status_code == 201
    theater_id = response.get_json()["id"]
    assert response.get_json()["name"] == "Metro Cinema"

    show_day = (date.today() + timedelta(days=1)).isoformat()
    show = {
        "movie": {"tmdbId": 27205, "title": "Inception"},
        "theater": theater_id,
        "screen": {"screenId": "M1"},
        "showTimes": [{"date": show_day, "time": "6:30 PM", "price": {"Gold": 300}}],
        "startDate": show_day,
        "endDate": show_day,
    }
    response = client.post("/api/shows", data=json.dumps(show), content_type="application/json", headers=admin)
    assert response.status_code == 201
    show_time = response.get_json()["showTimes"][0]
    assert show_time["capacity"] == 10
    assert show_time["availableSeats"] == 10
    assert show_time["price"] == {"Gold": 300, "Regular": 150}

    listed = client.get("/api/theaters?city=kolkata").get_json()
    assert [entry["id"] for entry in listed] == [theater_id]


def test_show_dates_must_be_ordered(client, show, auth_headers):
    admin = auth_headers("admin", role="admin")
    payload = {
        "movie": {"tmdbId": 27205, "title": "Inception"},
        "theater": show.theater_id,
        "screen": {"screenId": "S1"},
        "showTimes": [{"date": "2030-01-02", "time": "18:00"}],
        "startDate": "2030-01-02",
        "endDate": "2030-01-01",
    }
    response = client.post("/api/shows", data=json.dumps(payload), content_type="application/json", headers=admin)
    assert response.status_code == 400


def test_regular_users_cannot_manage_shows(client, show, auth_headers):
    user = auth_headers("alice")
    assert client.delete(f"/api/shows/{show.show_id}", headers=user).status_code == 403
    assert client.post("/api/theaters", data=json.dumps({}), content_type="application/json",
                       headers=user).status_code == 403
    assert client.get("/api/users", headers=user).status_code == 403


def test_deactivated_show_refuses_bookings(client, show, auth_headers):
    admin = auth_headers("admin", role="admin")
    response = client.put(f"/api/shows/{show.show_id}", data=json.dumps({"status": "Inactive"}),
                          content_type="application/json", headers=admin)
    assert response.status_code == 200
    assert response.get_json()["status"] == "Inactive"

    response = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1")),
                           content_type="application/json", headers=auth_headers())
    assert response.status_code == 409
    with app.app_context():
        assert db.session.get(ShowTime, show.show_time_id).booked_seats == []


def test_admin_deletes_show(client, show, auth_headers):
    response = client.delete(f"/api/shows/{show.show_id}", headers=auth_headers("admin", role="admin"))
    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Show, show.show_id) is None
        assert ShowTime.query.count() == 0
        assert Theater.query.count() == 1


def test_admin_lists_users(client, auth_headers):
    auth_headers("alice")
    response = client.get("/api/users", headers=auth_headers("admin", role="admin"))
    assert response.status_code == 200
    usernames = [user["username"] for user in response.get_json()["users"]]
    assert usernames == ["alice", "admin"]


# CLI
def test_sweep_holds_command(client, show):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["sweep-holds"])
    assert result.exit_code == 0
    assert "Released 0 expired seat holds" in result.output
    assert "Released 0 seats of cancelled bookings" in result.output


def test_update_show_movie_title_only(client, show, auth_headers):
    response = client.put(f"/api/shows/{show.show_id}", data=json.dumps({"movie": {"title": "Arrival (Re-release)"}}),
                          content_type="application/json", headers=auth_headers("admin", role="admin"))

    assert response.status_code == 200
    movie = response.get_json()["movie"]
    assert movie["title"] == "Arrival (Re-release)"
    assert movie["tmdbId"] == 329865
    assert movie["genre"] == ["Sci-Fi"]


def test_holding_seats_outside_the_layout_is_rejected(client, show, auth_headers):
    hold = {"showTimeId": show.show_time_id, "seats": [f"Z{column}" for column in range(1, 13)]}
    response = client.put(f"/api/shows/{show.show_id}/book-seats", data=json.dumps(hold),
                          content_type="application/json", headers=auth_headers("alice"))

    assert response.status_code == 400
    assert "Z1" in response.get_json()["errors"]

    guest = {"name": "Gita", "email": "gita@example.com"}
    booked = client.post("/api/bookings", data=json.dumps(booking_payload(show, "A1", guest=guest)),
                         content_type="application/json")
    assert booked.status_code == 201


def theater_payload(name="Metro Cinema", capacity=10):
    return {
        "name": name,
        "location": {"address": "2 Park St", "city": "Kolkata", "state": "West Bengal", "pincode": "700016"},
        "screens": [
            {
                "screenId": "M1",
                "name": "Audi 1",
                "capacity": capacity,
                "seatLayout": {"rows": 2, "seatsPerRow": 5, "seatTypes": [{"type": "Gold", "price": 250, "rows": ["A"]}]},
            }
        ],
    }


def test_screen_capacity_must_match_layout(client, auth_headers):
    response = client.post("/api/theaters", data=json.dumps(theater_payload(capacity=2)),
                           content_type="application/json", headers=auth_headers("admin", role="admin"))

    assert response.status_code == 400
    assert "capacity" in response.get_json()["errors"]["screens"]["0"]
    with app.app_context():
        assert Theater.query.count() == 0


def test_theater_owner_lists_and_updates_own_theaters(client, auth_headers):
    owner = auth_headers("owner_one", role="theater_owner")
    rival = auth_headers("owner_two", role="theater_owner")
    created = client.post("/api/theaters", data=json.dumps(theater_payload()),
                          content_type="application/json", headers=owner)
    assert created.status_code == 201
    theater_id = created.get_json()["id"]

    mine = client.get("/api/theaters/my-theaters", headers=owner).get_json()
    assert [theater["id"] for theater in mine] == [theater_id]
    assert client.get("/api/theaters/my-theaters", headers=rival).get_json() == []
    assert client.get("/api/theaters/my-theaters", headers=auth_headers("alice")).status_code == 403

    update = {"name": "Metro Cinema Deluxe", "location": {"city": "Howrah"}, "amenities": ["Parking"]}
    response = client.put(f"/api/theaters/{theater_id}", data=json.dumps(update),
                          content_type="application/json", headers=owner)
    assert response.status_code == 200
    body = response.get_json()
    assert body["name"] == "Metro Cinema Deluxe"
    assert body["location"]["city"] == "Howrah"
    assert body["location"]["address"] == "2 Park St"
    assert body["amenities"] == ["Parking"]

    response = client.put(f"/api/theaters/{theater_id}", data=json.dumps({"name": "Taken Over"}),
                          content_type="application/json", headers=rival)
    assert response.status_code == 403


def test_admin_updates_theater_status(client, show, auth_headers):
    admin = auth_headers("admin", role="admin")
    response = client.put(f"/api/theaters/{show.theater_id}", data=json.dumps({"status": "Maintenance"}),
                          content_type="application/json", headers=admin)
    assert response.status_code == 200
    assert response.get_json()["status"] == "Maintenance"

    bad = client.put(f"/api/theaters/{show.theater_id}", data=json.dumps({"status": "Closed"}),
                     content_type="application/json", headers=admin)
    assert bad.status_code == 400
    assert client.put("/api/theaters/9999", data=json.dumps({"status": "Active"}),
                      content_type="application/json", headers=admin).status_code == 404
