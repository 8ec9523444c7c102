"""
JWT authentication helpers and middleware for the Flask API.
"""

from datetime import datetime, timedelta
from functools import wraps
from typing import Dict, Any, Optional

import jwt
from flask import current_app, request, jsonify

from biofactor.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from biofactor.models import Session


def generate_token(session: Session) -> str:
    """Generate a JWT token for an authenticated session."""
    principal = session.principal
    payload = {
        "sub": principal.id,
        "sid": session.key,
        "role": principal.role,
        "display_name": principal.display_name,
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def token_required(f):
    """Decorator that protects endpoints with JWT authentication.

    The token only names a session slot; the principal itself is read back
    from the auth service's storage, so a logged-out token stops working.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        token = None

        if "Authorization" in request.headers:
            auth_header = request.headers["Authorization"]
            try:
                token = auth_header.split(" ")[1]
            except IndexError:
                return jsonify({"error": "Invalid authorization header format"}), 401

        if not token:
            token = request.args.get("token")

        if not token:
            return jsonify({"error": "Authentication token is missing"}), 401

        payload = verify_token(token)
        if not payload:
            return jsonify({"error": "Invalid or expired token"}), 401

        auth = current_app.config["AUTH_SERVICE"]
        sid = payload.get("sid")
        session = auth.restore(sid) if sid else None
        if session is None or session.principal.id != payload.get("sub"):
            return jsonify({"error": "Session not found. Please login again."}), 401

        session.created_at = datetime.utcfromtimestamp(payload["iat"])
        auth.touch(session)
        request.session_data = session
        request.token = token

        return f(*args, **kwargs)

    return decorated
