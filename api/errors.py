"""API error handling utilities."""

from __future__ import annotations

import functools
import logging

from flask import jsonify

logger = logging.getLogger(__name__)


def error_response(message: str, status_code: int) -> tuple:
    """Return a consistent JSON error response."""
    return jsonify({"error": message}), status_code


def handle_errors(f):
    """Decorator that turns application exceptions into JSON errors.

    Only errors that escape the order handler reach this point: bad input,
    failed verification and server misconfiguration.
    """
    from api.exceptions import AppError, ConfigError

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ConfigError as exc:
            logger.error("Configuration error in %s: %s", f.__name__, exc)
            return error_response("Server misconfigured", exc.status_code)
        except AppError as exc:
            return error_response(str(exc), exc.status_code)
        except (SystemExit, KeyboardInterrupt):
            raise
        except Exception:
            logger.exception("Unexpected error in %s", f.__name__)
            return error_response("Internal server error", 500)

    return wrapper
