import os
from functools import wraps

import bcrypt
from dotenv import load_dotenv
from flask import Blueprint, jsonify, request
from flask_jwt_extended import (
    create_access_token,
    get_jwt,
    get_jwt_identity,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)
from loguru import logger
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from models import db, User
from schemas import register_schema
from ticketing.exceptions import Forbidden, Unauthorized

load_dotenv()

pepper_value = os.getenv("PEPPER")
if pepper_value is None:
    raise RuntimeError("PEPPER environment variable is not set.")
PEPPER = pepper_value.encode('utf-8')

auth_bp = Blueprint("auth", __name__)


def hash_password(password):
    salt = bcrypt.gensalt()
    password_with_pepper = password.encode('utf-8') + PEPPER
    hashed_password = bcrypt.hashpw(password_with_pepper, salt)
    return hashed_password, salt


def verify_password(entered_password, stored_hashed_password, stored_salt):
    entered_password_with_pepper = entered_password.encode('utf-8') + PEPPER
    hashed_entered_password = bcrypt.hashpw(entered_password_with_pepper, stored_salt)
    return hashed_entered_password == stored_hashed_password


def current_user(optional=False):
    """Return the User behind the request's JWT, or None for anonymous requests when optional."""
    verify_jwt_in_request(optional=optional)
    username = get_jwt_identity()
    if username is None:
        return None
    user = User.query.filter_by(username=username).first()
    if user is None:
        raise Unauthorized("User not found")
    return user


def roles_required(*roles):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if get_jwt().get("role") not in roles:
                raise Forbidden(f"Access denied. Required role: {' or '.join(roles)}")
            return fn(*args, **kwargs)

        return wrapper

    return decorator


@auth_bp.route("/register", methods=["POST"])
def register():
    try:
        payload = register_schema.load(request.get_json() or {})
    except ValidationError as exc:
        errors = []
        for field, messages in (exc.messages or {}).items():
            for message in messages:
                errors.append({"field": field, "msg": message})
        return jsonify({'message': 'Invalid input', 'errors': errors}), 400

    username = payload["username"]
    password = payload["password"]
    role = payload.get("role", "user")

    if User.query.filter_by(username=username).first():
        return jsonify({'message': 'User already exists'}), 409

    try:
        hashed_password, salt = hash_password(password)
        new_user = User(username=username, password_hash=hashed_password, salt=salt, role=role)
        db.session.add(new_user)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Registration failed for {}", username)
        return jsonify({'message': 'Registration failed'}), 500

    logger.info("Registered user {} ({})", username, role)
    return jsonify({'message': 'User registered successfully'}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json() or {}
    username = data.get('username')
    password = data.get('password') or ''

    user = User.query.filter_by(username=username).first()
    if not user:
        response = jsonify({'message': 'User not found'})
        response.status_code = 404
        unset_jwt_cookies(response)
        return response

    if verify_password(password, user.password_hash, user.salt):
        token = create_access_token(identity=username, additional_claims={"role": user.role})
        response = jsonify({'message': 'Successful login', 'token': token, 'role': user.role})
        set_access_cookies(response, token)
        return response

    response = jsonify({'message': 'Invalid password'})
    response.status_code = 401
    unset_jwt_cookies(response)
    return response


@auth_bp.route("/logout", methods=["POST"])
def logout():
    response = jsonify({'message': 'Logged out'})
    unset_jwt_cookies(response)
    return response
