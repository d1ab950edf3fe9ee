"""
middleware/auth_middleware.py — JWT bearer authentication.

SplitCredit does not run sign-up or login itself. Access tokens are issued
by the identity service that registers users (HS256, shared secret), and
every request carries one:

    Authorization: Bearer <token>      sub = "<users.id>"

The @require_auth decorator:
  1. Reads the Authorization header
  2. Verifies signature and expiry with JWT_SECRET_KEY / JWT_ALGORITHM
  3. Attaches the caller's user_id (int) to flask.g

Responsibility boundary:
  - Authentication only (401). Whether the caller may act on a group,
    expense or settlement is decided in the service layer (403).
  - Services receive user_id as a plain integer argument, with no knowledge
    of JWT or HTTP headers.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, invalid signature, or bad payload
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
"""

from __future__ import annotations

import functools
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from flask import current_app, g, request

from splitcredit.app.errors import AppError, ErrorCode

DEFAULT_TOKEN_TTL = timedelta(minutes=15)


def issue_access_token(
        user_id: int,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = DEFAULT_TOKEN_TTL,
) -> str:
    """
    Encodes a token in the shape require_auth accepts.

    Used by the test suite and for local development; production tokens
    come from the identity service with the same claims.
    """
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": str(user_id), "iat": now, "exp": now + ttl},
        secret,
        algorithm=algorithm,
    )


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Raises AppError for all auth failures — the global error handler converts
    these to the correct JSON response. Routes never catch AppError.

    Usage:
        @credit_bp.route("/score")
        @require_auth
        def get_score():
            user_id = g.user_id  # always an int when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _authenticate_request() -> int:
    """
    Verifies the bearer token on the current request and returns its user id.

    Separated from the decorator so tests can call it inside a
    test_request_context without a view function.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    try:
        payload = jwt.decode(
            parts[1],
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        # bad signature, malformed token, invalid claims
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    sub = payload.get("sub")
    if sub is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is missing the required 'sub' claim.",
            401,
        )

    try:
        return int(sub)
    except (TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
            401,
        )
