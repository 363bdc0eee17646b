"""
labcon API Server

RESTful API for lab-instrument driver coordination.
Handles driver registration, state and status reporting, operation dispatch
and disconnection.
"""

import logging
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .config import ServerConfig, load_config
from .coordinator import DriverCoordinator, TokenGenerator
from .errors import (
    DriverBusyError,
    DriverExistsError,
    DriverNotFoundError,
    LabconError,
    UnauthorizedError,
    ValidationError,
)
from .logs import configure_logging
from .models import DriverStatus, Operation
from .repository import DriverRepository
from .storage import Store
from .tokens import generate_token

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Driver-Token"

STATUS_CODES = {
    ValidationError: 400,
    UnauthorizedError: 401,
    DriverNotFoundError: 404,
    DriverExistsError: 409,
    DriverBusyError: 409,
}


def _status_code(error: LabconError) -> int:
    for error_type in type(error).__mro__:
        if error_type in STATUS_CODES:
            return STATUS_CODES[error_type]
    return 500


def _json_body() -> dict[str, Any]:
    """Return the request's JSON object body, raising ValidationError."""
    if not request.is_json:
        raise ValidationError("Content-Type must be application/json")
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _driver_token() -> str:
    token = request.headers.get(TOKEN_HEADER, "")
    if not token:
        raise ValidationError(f"missing {TOKEN_HEADER} header")
    return token


def create_app(
    database_path: Optional[str] = None,
    config_path: Optional[str] = None,
    token_generator: Optional[TokenGenerator] = None,
    config: Optional[ServerConfig] = None,
) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)

    config = config or load_config(config_path)
    CORS(
        app,
        origins=config.cors_origins,
        allow_headers=["Accept", "Authorization", "Content-Type", TOKEN_HEADER],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        supports_credentials=True,
    )

    # Initialize services
    store = Store(database_path or config.database_path)
    coordinator = DriverCoordinator(
        DriverRepository(store),
        token_generator or partial(generate_token, config.token_bytes),
    )
    app.extensions["labcon"] = coordinator

    # ========================================================================
    # Request Logging & Error Mapping
    # ========================================================================

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get("request_started")
        elapsed_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        logger.info(
            "%s %s %s -> %d (%.1f ms)",
            request.environ.get("SERVER_PROTOCOL", "HTTP/1.1"),
            request.method,
            request.full_path.rstrip("?"),
            response.status_code,
            elapsed_ms,
        )
        return response

    @app.errorhandler(LabconError)
    def handle_labcon_error(error: LabconError):
        status_code = _status_code(error)
        if status_code >= 500:
            logger.exception("Request %s %s failed", request.method, request.path)
            return jsonify({"error": "Internal server error", "code": error.code}), status_code
        return jsonify({"error": str(error), "code": error.code}), status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description, "code": "http"}), error.code
        logger.exception("Request %s %s failed", request.method, request.path)
        return jsonify({"error": "Internal server error", "code": "internal"}), 500

    # ========================================================================
    # Health Endpoint
    # ========================================================================

    @app.route('/api/v1/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "drivers": len(coordinator.list()),
        }), 200

    # ========================================================================
    # Driver Registry Endpoints
    # ========================================================================

    @app.route('/api/v1/drivers', methods=['GET'])
    def list_drivers():
        """List registered driver names."""
        names = coordinator.list()
        return jsonify({
            "count": len(names),
            "drivers": names,
        }), 200

    @app.route('/api/v1/drivers', methods=['POST'])
    def register_driver():
        """Register a new driver and return its token."""
        data = _json_body()

        name = data.get('name')
        if not isinstance(name, str) or not name:
            raise ValidationError("name is required")
        if "/" in name:
            # Unroutable: /drivers/<name> never matches a slash
            raise ValidationError("name must not contain '/'")
        if data.get('state') is None:
            raise ValidationError("state is required")

        token = coordinator.register(name, data['state'])

        return jsonify({
            "message": "Driver registered",
            "name": name,
            "token": token,
        }), 201

    @app.route('/api/v1/drivers/<name>', methods=['DELETE'])
    def disconnect_driver(name: str):
        """Remove a driver from the registry."""
        coordinator.delete(name, token=_driver_token())
        return jsonify({
            "message": "Driver disconnected",
            "name": name,
        }), 200

    # ========================================================================
    # State & Status Endpoints
    # ========================================================================

    @app.route('/api/v1/drivers/<name>/state', methods=['GET'])
    def get_state(name: str):
        """Get the driver's current state."""
        return jsonify({
            "name": name,
            "state": coordinator.get_state(name),
        }), 200

    @app.route('/api/v1/drivers/<name>/state', methods=['PUT'])
    def set_state(name: str):
        """Replace the driver's state."""
        token = _driver_token()
        data = _json_body()
        if 'state' not in data:
            raise ValidationError("state is required")

        coordinator.set_state(name, data['state'], token=token)

        return jsonify({
            "message": "State updated",
            "name": name,
        }), 200

    @app.route('/api/v1/drivers/<name>/status', methods=['GET'])
    def get_status(name: str):
        """Get the driver's current status."""
        return jsonify({
            "name": name,
            "status": coordinator.get_status(name).value,
        }), 200

    @app.route('/api/v1/drivers/<name>/status', methods=['PUT'])
    def set_status(name: str):
        """Update the driver's status. Clears any pending operation."""
        token = _driver_token()
        data = _json_body()
        if 'status' not in data:
            raise ValidationError("status is required")
        status = DriverStatus.parse(data['status'])

        coordinator.set_status(name, status, token=token)

        return jsonify({
            "message": f"Status updated to {status.value}",
            "name": name,
            "status": status.value,
        }), 200

    # ========================================================================
    # Operation Endpoints
    # ========================================================================

    @app.route('/api/v1/drivers/<name>/operation', methods=['GET'])
    def get_operation(name: str):
        """Get the operation pending for the driver, if any."""
        operation = coordinator.get_operation(name, token=_driver_token())
        return jsonify({
            "name": name,
            "operation": operation.to_dict() if operation else None,
        }), 200

    @app.route('/api/v1/drivers/<name>/operation', methods=['POST'])
    def dispatch_operation(name: str):
        """Dispatch an operation to an idle driver."""
        operation = Operation.from_dict(_json_body())

        coordinator.dispatch(name, operation)

        return jsonify({
            "message": "Operation dispatched",
            "name": name,
            "operation": operation.to_dict(),
        }), 200

    return app


def main():
    """Run the API server."""
    config = load_config()
    configure_logging(config.log_level, config.log_file)

    app = create_app(config=config)

    print(f"""
    ╔══════════════════════════════════════════════════════════════╗
    ║  labcon API Server                                           ║
    ║  Lab-Instrument Driver Coordination                          ║
    ║                                                              ║
    ║  Running on http://{config.host}:{config.port:<5}{' ' * max(0, 36 - len(config.host))}║
    ║  Database: {config.database_path[:50]:<50}║
    ║                                                              ║
    ║  Endpoints:                                                  ║
    ║  - GET    /api/v1/drivers                 List drivers       ║
    ║  - POST   /api/v1/drivers                 Register driver    ║
    ║  - DELETE /api/v1/drivers/:name           Disconnect driver  ║
    ║  - GET    /api/v1/drivers/:name/state     Get state          ║
    ║  - PUT    /api/v1/drivers/:name/state     Set state          ║
    ║  - GET    /api/v1/drivers/:name/status    Get status         ║
    ║  - PUT    /api/v1/drivers/:name/status    Set status         ║
    ║  - GET    /api/v1/drivers/:name/operation Poll operation     ║
    ║  - POST   /api/v1/drivers/:name/operation Dispatch operation ║
    ╚══════════════════════════════════════════════════════════════╝
    """)

    app.run(host=config.host, port=config.port, debug=config.debug, threaded=True)


if __name__ == '__main__':
    main()
