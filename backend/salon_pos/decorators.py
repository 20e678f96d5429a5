# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .identity import Actor


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_NAME_HEADER = "X-Actor-Name"


def require_actor(f):
    """
    Require an acting identity on mutating requests.

    Authentication happens in front of this service; the gateway forwards
    the authenticated user in X-Actor-Id / X-Actor-Name. Sets g.actor.

    Returns 401 when X-Actor-Id is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
        if not actor_id:
            return jsonify({"error": "Actor identity required", "header": ACTOR_ID_HEADER}), 401

        actor_name = (request.headers.get(ACTOR_NAME_HEADER) or "").strip() or None
        g.actor = Actor(id=actor_id[:64], name=actor_name)
        return f(*args, **kwargs)

    return decorated_function
