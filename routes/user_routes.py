from flask import Blueprint, jsonify

from models import User
from routes.auth_routes import current_user, roles_required

user_bp = Blueprint("user_api", __name__)


@user_bp.route("/api/users", methods=["GET"])
@roles_required("admin")
def list_users():
    users = User.query.order_by(User.id.asc()).all()
    payload = [
        {"id": user.id, "username": user.username, "role": user.role}
        for user in users
    ]
    return jsonify({"users": payload})


@user_bp.route("/api/users/me", methods=["GET"])
def me():
    user = current_user()
    return jsonify(
        {
            "id": user.id,
            "username": user.username,
            "role": user.role,
            "bookingHistory": [entry.booking_id for entry in user.booking_history],
        }
    )
