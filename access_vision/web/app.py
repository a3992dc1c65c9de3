"""Flask web application factory for Access Vision."""
from __future__ import annotations

from typing import Any, Optional

from flask import Flask, jsonify
from flask_socketio import SocketIO

from access_vision.config import (
    DetectionConfig,
    RecognitionConfig,
    get_allowed_origins_from_env,
    get_detection_config_from_env,
    get_recognition_config_from_env,
)
from access_vision.core.gateway import RosterLogGateway
from access_vision.core.logger import get_logger
from access_vision.core.recognition_client import RecognitionClient
from access_vision.web.api import DashboardRuntime, register_api_routes

logger = get_logger("web")

# Global SocketIO instance (initialized in create_app)
socketio: Optional[SocketIO] = None


def create_app(
    gateway: Optional[RosterLogGateway] = None,
    recognition_client: Optional[RecognitionClient] = None,
    recognition_config: Optional[RecognitionConfig] = None,
    detection_config: Optional[DetectionConfig] = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        gateway: Roster/log gateway; defaults to Postgres from DB_* env vars.
        recognition_client: Recognition client; defaults to RECOGNITION_* env vars.
        recognition_config: Used when no client is passed.
        detection_config: Tick interval and cooldown; defaults to env vars.

    Returns:
        Configured Flask application instance.
    """
    global socketio

    recognition_config = recognition_config or get_recognition_config_from_env()
    detection_config = detection_config or get_detection_config_from_env()

    if gateway is None:
        from access_vision.core.storage_postgres import get_gateway_from_env

        gateway = get_gateway_from_env()

    if recognition_client is None:
        if not recognition_config.is_configured:
            logger.warning("RECOGNITION_URL is not set; detection cycles will fail")
        recognition_client = RecognitionClient.from_config(recognition_config)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 8 * 1024 * 1024

    allowed_origins = get_allowed_origins_from_env()
    if allowed_origins == "*":
        logger.warning("ALLOWED_ORIGINS is '*' - allowing all origins")

    socketio = SocketIO(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode="threading",
        max_http_buffer_size=8 * 1024 * 1024,
        logger=False,
        engineio_logger=False,
    )
    logger.info(f"SocketIO initialized, allowed_origins={allowed_origins}")

    runtime = DashboardRuntime(
        gateway=gateway,
        client=recognition_client,
        detection=detection_config,
    )
    app.extensions["access_vision"] = runtime
    register_api_routes(app=app, socketio=socketio, runtime=runtime)

    @app.route("/health", methods=["GET"])
    def health() -> tuple[Any, int]:
        """Health check with gateway and recognition configuration status."""
        checks: dict[str, Any] = {}

        try:
            roster_size = len(gateway.list_enrollable())
            checks["gateway"] = {"status": "healthy", "roster_size": roster_size}
            checks["gateway"].update(gateway.health())
        except Exception as e:
            logger.error(f"Gateway health check failed: {e}", exc_info=True)
            checks["gateway"] = {"status": "unhealthy", "message": str(e)}

        if recognition_client.url:
            checks["recognition"] = {"status": "healthy", "url": recognition_client.url}
        else:
            checks["recognition"] = {
                "status": "unhealthy",
                "message": "RECOGNITION_URL is not set",
            }

        if checks["gateway"]["status"] == "unhealthy":
            status, http_status = "unhealthy", 503
        elif checks["recognition"]["status"] == "unhealthy":
            status, http_status = "degraded", 200
        else:
            status, http_status = "healthy", 200

        return (
            jsonify(
                {
                    "status": status,
                    "interval_ms": detection_config.interval_ms,
                    "cooldown_ms": detection_config.cooldown_ms,
                    "active_sessions": runtime.sessions.count(),
                    "checks": checks,
                }
            ),
            http_status,
        )

    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Any, int]:
        return jsonify({"success": False, "error": "Endpoint not found"}), 404

    @app.errorhandler(413)
    def request_entity_too_large(error: Any) -> tuple[Any, int]:
        return jsonify({"success": False, "error": "Payload too large"}), 413

    return app


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    ssl_cert: Optional[str] = None,
    ssl_key: Optional[str] = None,
) -> None:
    """Run the development server with WebSocket support.

    Args:
        host: Host to bind to.
        port: Port to bind to.
        debug: Enable debug mode.
        ssl_cert: Path to SSL certificate file (for HTTPS).
        ssl_key: Path to SSL private key file (for HTTPS).
    """
    app = create_app()
    if socketio is None:
        raise RuntimeError("SocketIO not initialized")

    run_kwargs: dict[str, Any] = {
        "host": host,
        "port": port,
        "debug": debug,
        "use_reloader": False,
        "allow_unsafe_werkzeug": True,
    }
    if ssl_cert and ssl_key:
        run_kwargs["ssl_context"] = (ssl_cert, ssl_key)
        logger.info(f"Starting HTTPS server on https://{host}:{port}")
    else:
        logger.info(f"Starting HTTP server on http://{host}:{port}")
        logger.info("Note: browsers only grant camera access over HTTPS or on localhost.")

    try:
        socketio.run(app, **run_kwargs)
    finally:
        app.extensions["access_vision"].shutdown()
