# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

Login issues a bearer token and, for cashiers, opens a fresh billing
session. Logout revokes the token. verify-session reports the time left
on the billing session.
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import BillingError
from ..services import auth_service
from ..services import session_service
from ..services.session_clock import SessionClock
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info and session token on success.
    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s", username)
            return jsonify({"error": "Invalid credentials"}), 401

        token, plaintext = session_service.create_session(
            user,
            billing_window=timedelta(minutes=current_app.config["BILLING_SESSION_MINUTES"]),
            token_lifetime=timedelta(hours=current_app.config["AUTH_TOKEN_HOURS"]),
        )

        return jsonify({
            "user": user.to_dict(),
            "token": plaintext,
            "session": token.to_dict(),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/verify-session")
@require_auth
def verify_session_route():
    """
    Report whether the caller's billing session is still open.

    Clients poll this to show the remaining time. A lapsed or replaced
    session answers 401 with session_expired set.
    """
    try:
        clock = SessionClock.from_config(current_app.config)
        remaining = clock.login_time_remaining(g.actor)

        return jsonify({
            "message": "Session is valid",
            "session_expiry": None if remaining is None else to_utc_z(g.actor.session_expiry),
            "time_remaining_ms": None if remaining is None else int(remaining.total_seconds() * 1000),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify session")
        return jsonify({"error": "Internal server error"}), 500
