"""
User Authentication — Flask-Login blueprint.

Provides register, login, logout and current-user JSON routes.
Uses werkzeug.security for salted password hashing.
"""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, jsonify
from flask_login import LoginManager, UserMixin, current_user, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db
from extensions import limiter
from helpers import json_body, str_field

ROLES = ("student", "teacher")

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, username: str, role: str = "student", created_at: str = ""):
        self.id = id
        self.username = username
        self.role = role
        self.created_at = created_at

    @property
    def is_teacher(self):
        return self.role == "teacher"

    def to_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "role": self.role, "createdAt": self.created_at}

    @staticmethod
    def from_row(row) -> "User":
        return User(row["id"], row["username"], row["role"], row["created_at"])

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute(
            "SELECT id, username, role, created_at FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        return User.from_row(row) if row else None

    @staticmethod
    def get_by_username(username: str):
        db = get_db()
        return db.execute(
            "SELECT id, username, password_hash, role, created_at FROM users WHERE username = ?",
            (username,),
        ).fetchone()


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Not logged in"}), 401


def _credentials() -> tuple[str, str, dict]:
    data = json_body()
    password = data.get("password") or ""
    if not isinstance(password, str):
        abort(400, description="password must be a string")
    return str_field(data, "username"), password, data


@auth_bp.route("/api/register", methods=["POST"])
@limiter.limit("10 per hour")
def register():
    username, password, data = _credentials()
    role = str_field(data, "role") or "student"

    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400
    if role not in ROLES:
        return jsonify({"error": "Invalid role specified. Must be either 'student' or 'teacher'"}), 400
    if User.get_by_username(username):
        return jsonify({"error": "Username already exists"}), 400

    db = get_db()
    now = datetime.now().isoformat()
    cur = db.execute(
        "INSERT INTO users (username, password_hash, role, created_at) VALUES (?, ?, ?, ?)",
        (username, generate_password_hash(password), role, now),
    )
    db.commit()

    user = User(cur.lastrowid, username, role, now)
    login_user(user, remember=True)
    log_event("register", user.id, f"username={username} role={role}")
    return jsonify({"message": "Registration successful", "user": user.to_dict()})


@auth_bp.route("/api/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    username, password, _ = _credentials()
    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400

    row = User.get_by_username(username)
    if not row or not check_password_hash(row["password_hash"], password):
        log_event("login_failed", row["id"] if row else None, f"username={username}")
        return jsonify({"error": "Invalid username or password"}), 401

    user = User.from_row(row)
    login_user(user, remember=True)
    log_event("login_success", user.id)
    return jsonify({"message": "Login successful", "user": user.to_dict()})


@auth_bp.route("/api/logout", methods=["POST"])
def logout():
    uid = current_user.id if current_user.is_authenticated else None
    logout_user()
    log_event("logout", uid)
    return jsonify({"message": "Logout successful"})


@auth_bp.route("/api/user")
def current():
    if not current_user.is_authenticated:
        return jsonify({"error": "Not logged in"}), 401
    return jsonify(current_user.to_dict())
