import logging
import time
import uuid

from flask import Flask, Response, g, has_request_context, request
from flasgger import Swagger
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import get_config
from .errors import register_error_handlers
from services.container import EXTENSION_KEY, build_services, current_services
from services.http import CORRELATION_HEADER
from utils.decorators import bearer_token
from utils.exceptions import TokenInvalidError
from utils.security import read_unverified_subject

logger = logging.getLogger(__name__)

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "FX Gateway API",
        "version": "1.0.0",
        "description": "Authenticated gateway for latest and historical currency exchange rates.",
    },
    "basePath": "/",  # blueprints are mounted under /api/v1
    "schemes": ["http"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


def current_correlation_id():
    if has_request_context():
        return g.get("correlation_id")
    return None


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the current request's correlation id."""

    def filter(self, record):
        record.correlation_id = current_correlation_id() or "-"
        return True


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())


def _client_ip():
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def register_request_logging(app: Flask) -> None:
    @app.before_request
    def start_request():
        g.correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        response.headers[CORRELATION_HEADER] = g.get("correlation_id", "")
        auth = request.headers.get("Authorization", "")
        client_id = None
        if auth.startswith("Bearer "):
            client_id = read_unverified_subject(auth.split(" ", 1)[1].strip())
        elapsed_ms = (time.perf_counter() - g.get("request_started", time.perf_counter())) * 1000
        logger.debug(
            "Request: %s %s %s from %s by %s -> %s in %.1fms",
            request.method,
            request.path,
            request.endpoint,
            _client_ip(),
            client_id or "Anonymous",
            response.status_code,
            elapsed_ms,
        )
        return response


def rate_limit_user_key():
    """Bucket authenticated callers by their verified `sub`, everyone else by address."""
    token = bearer_token()
    if token:
        try:
            return f"user:{current_services().token_factory.decode_access_token(token)['sub']}"
        except TokenInvalidError:
            logger.debug("Rate limiting by address, bearer token did not verify")
    return f"ip:{get_remote_address()}"


def register_rate_limits(app: Flask, auth_bp, currencies_bp) -> Limiter:
    """
    Fixed-window limits per blueprint: auth endpoints per client address,
    currency endpoints per authenticated user.
    """
    limiter = Limiter(key_func=get_remote_address, app=app)
    limiter.limit(app.config["AUTH_RATE_LIMIT"], key_func=get_remote_address)(auth_bp)
    limiter.limit(app.config["CURRENCIES_RATE_LIMIT"], key_func=rate_limit_user_key)(currencies_bp)
    return limiter


def create_app(config_name: str | None = None, **service_overrides) -> Flask:
    """
    Application factory: creates and configures the Flask app.
    `service_overrides` are passed to build_services (clock, kv, http_transport)
    so tests can swap the clock, the key-value store and the upstream transport.
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))
    configure_logging(app.config["LOG_LEVEL"])

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    # Register global error handlers that return the uniform error envelope
    register_error_handlers(app)
    register_request_logging(app)

    service_overrides.setdefault("correlation_id", current_correlation_id)
    app.extensions[EXTENSION_KEY] = build_services(app.config, **service_overrides)

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .currencies import bp as currencies_bp

    register_rate_limits(app, auth_bp, currencies_bp)

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1" + auth_bp.url_prefix)
    app.register_blueprint(currencies_bp, url_prefix="/api/v1" + currencies_bp.url_prefix)

    @app.route("/metrics")
    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    @app.route("/")
    def root():
        return {
            "message": "Welcome to FX Gateway API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
