# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require the acting user's id and put it on g.actor_id.

    Authentication happens upstream; the gateway forwards the verified
    user id in the X-Actor-Id header. Returns 401 when it is missing or not
    a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()

        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": f"Invalid {ACTOR_HEADER} header"}), 401

        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
