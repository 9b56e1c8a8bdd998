from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
import logging

from utils.exceptions import (
    CircuitOpenError,
    InvalidProviderError,
    NoRateFoundError,
    OwnerResolutionError,
    TokenInvalidError,
    UnsupportedSymbolError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "TOO_MANY_REQUESTS",
}


def error_response(error: str, message: str, status: int, details: dict | None = None):
    payload = {"error": error, "message": message, "status": status}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def register_error_handlers(app):
    # 404 Not Found
    @app.errorhandler(404)
    def not_found(e):
        return error_response("NOT_FOUND", "Resource not found", 404)

    # Marshmallow validation errors map to 422
    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        # err.messages contains field-level details
        messages = err.messages if isinstance(err.messages, dict) else {"_schema": err.messages}
        return error_response("VALIDATION_ERROR", "Invalid input", 422, details=messages)

    @app.errorhandler(UnsupportedSymbolError)
    def handle_unsupported_symbol(err: UnsupportedSymbolError):
        return error_response("UNSUPPORTED_SYMBOL", str(err), 400, details={"symbols": err.unsupported})

    @app.errorhandler(InvalidProviderError)
    def handle_invalid_provider(err: InvalidProviderError):
        return error_response("INVALID_PROVIDER", str(err), 400, details={"available": err.available})

    @app.errorhandler(CircuitOpenError)
    def handle_circuit_open(err: CircuitOpenError):
        logger.warning("Rejected request, %s", err)
        return error_response(
            "SERVICE_UNAVAILABLE",
            "Service is currently unavailable due to circuit breaker. Please try again later.",
            503,
        )

    # InvalidResponseError is a subclass and lands here too
    @app.errorhandler(UpstreamServiceError)
    def handle_upstream_error(err: UpstreamServiceError):
        logger.error("Upstream failure: %s", err)
        return error_response("UPSTREAM_ERROR", str(err), 502)

    @app.errorhandler(NoRateFoundError)
    def handle_no_rate(err: NoRateFoundError):
        return error_response("NOT_FOUND", str(err), 404)

    @app.errorhandler(OwnerResolutionError)
    def handle_owner_resolution(err: OwnerResolutionError):
        return error_response("NOT_FOUND", "Token not found", 404)

    @app.errorhandler(TokenInvalidError)
    def handle_token_invalid(err: TokenInvalidError):
        return error_response("UNAUTHORIZED", str(err) or "Invalid token", 401)

    # Werkzeug HTTPExceptions map to their status codes
    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        code = err.code or 400
        return error_response(HTTP_ERROR_CODES.get(code, "BAD_REQUEST"), err.description, code)

    # 500 Internal Error (catch-all), ProviderResolutionError included
    @app.errorhandler(Exception)
    def internal_error(err: Exception):
        logger.exception("Unhandled exception", exc_info=err)
        details = None
        # In dev, include exception details to speed up debugging
        if current_app and current_app.debug:
            details = {"type": err.__class__.__name__, "message": str(err)}
        return error_response("INTERNAL_ERROR", "An unexpected error occurred", 500, details=details)
