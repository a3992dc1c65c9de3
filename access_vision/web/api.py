"""Flask API routes and Socket.IO handlers for Access Vision."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import cv2
import numpy as np
from flask import Blueprint, Flask, Response, request
from flask_socketio import SocketIO, emit

from access_vision.config import DetectionConfig
from access_vision.core.capture import PushedFrameSource
from access_vision.core.event_loop import BackgroundEventLoop
from access_vision.core.exceptions import (
    GatewayError,
    SessionNotFoundError,
    ValidationError,
)
from access_vision.core.gateway import RosterLogGateway
from access_vision.core.logger import get_logger
from access_vision.core.overlay import overlays_for_faces
from access_vision.core.recognition_client import RecognitionClient
from access_vision.core.render import OverlayRenderer, encode_jpeg
from access_vision.core.session import DetectionSession, SessionManager
from access_vision.core.types import AccessEvent, DetectedFace
from access_vision.core.validation import validate_interval_ms, validate_limit
from access_vision.web.response_utils import (
    list_response,
    not_found_response,
    success_response,
    unavailable_response,
    validation_error_response,
)

logger = get_logger("api")


@dataclass
class DashboardRuntime:
    """Long-lived collaborators shared by every request and socket handler."""

    gateway: RosterLogGateway
    client: RecognitionClient
    detection: DetectionConfig
    loop: BackgroundEventLoop = field(default_factory=BackgroundEventLoop)
    sessions: SessionManager = field(default_factory=SessionManager)
    renderer: OverlayRenderer = field(default_factory=OverlayRenderer)
    frame_max_age_s: float = 5.0

    def shutdown(self) -> None:
        """Close every session, then the recognition client and the loop."""
        if self.loop.is_running:
            for session in self.sessions.clear_all():
                self.loop.run(session.close())
            self.loop.run(self.client.aclose())
            self.loop.stop()
        self.gateway.close()


def register_api_routes(app: Flask, socketio: SocketIO, runtime: DashboardRuntime) -> None:
    """Register REST routes and Socket.IO handlers.

    Args:
        app: Flask application instance.
        socketio: Socket.IO server bound to ``app``.
        runtime: Shared gateway, recognition client, loop and sessions.
    """
    api_bp = Blueprint("api", __name__, url_prefix="/api")
    gateway = runtime.gateway
    sessions = runtime.sessions
    loop = runtime.loop

    def _get_session(session_id: str) -> Optional[DetectionSession]:
        try:
            return sessions.get(session_id)
        except SessionNotFoundError:
            return None

    @api_bp.route("/roster", methods=["GET"])
    def list_roster() -> tuple[Response, int]:
        """List identities currently eligible for matching."""
        try:
            roster = gateway.list_enrollable()
        except GatewayError as e:
            logger.error(f"Gateway error listing roster: {e}", exc_info=True)
            return unavailable_response("Roster")
        return list_response([entry.to_dict() for entry in roster])

    @api_bp.route("/access-events", methods=["GET"])
    def list_access_events() -> tuple[Response, int]:
        """List the most recent access events.

        Query parameters:
            limit: Number of events (default: 50, max: 500)
        """
        try:
            limit = int(request.args.get("limit", 50))
            validate_limit(limit)
        except (TypeError, ValueError):
            return validation_error_response("limit must be an integer")
        except ValidationError as e:
            return validation_error_response(str(e))

        try:
            events = gateway.recent_access_events(limit)
        except GatewayError as e:
            logger.error(f"Gateway error listing access events: {e}", exc_info=True)
            return unavailable_response("Access log")
        return list_response([event.to_dict() for event in events], limit=limit)

    @api_bp.route("/sessions", methods=["GET"])
    def list_sessions() -> tuple[Response, int]:
        """List every detection session and its status."""
        statuses = [loop.call(session.status) for session in sessions.all()]
        return list_response(statuses)

    @api_bp.route("/sessions/<session_id>", methods=["GET"])
    def get_session(session_id: str) -> tuple[Response, int]:
        """Return one session's status, current faces and overlays."""
        session = _get_session(session_id)
        if session is None:
            return not_found_response("Session")
        return success_response(loop.call(session.status))

    @api_bp.route("/sessions/<session_id>/stop", methods=["POST"])
    def stop_session(session_id: str) -> tuple[Response, int]:
        """Stop a session; its cooldown map and detections are discarded."""
        session = _get_session(session_id)
        if session is None:
            return not_found_response("Session")
        loop.call(session.stop)
        return success_response(loop.call(session.status))

    @api_bp.route("/sessions/<session_id>/snapshot.jpg", methods=["GET"])
    def session_snapshot(session_id: str) -> Any:
        """Return the latest frame, mirrored, with face overlays drawn."""
        session = _get_session(session_id)
        if session is None:
            return not_found_response("Session")

        image = session.capture.latest_image()
        if image is None:
            return not_found_response("Frame")

        frame_bgr = cv2.cvtColor(np.asarray(image), cv2.COLOR_RGB2BGR)
        rendered = runtime.renderer.render(frame_bgr, session.faces)
        return Response(encode_jpeg(rendered), mimetype="image/jpeg")

    app.register_blueprint(api_bp)

    def _create_session(session_id: str) -> DetectionSession:
        session = DetectionSession(
            session_id=session_id,
            client=runtime.client,
            gateway=gateway,
            capture=PushedFrameSource(max_age_s=runtime.frame_max_age_s),
            interval_ms=runtime.detection.interval_ms,
            cooldown_ms=runtime.detection.cooldown_ms,
        )

        def on_faces(faces: tuple[DetectedFace, ...]) -> None:
            socketio.emit(
                "faces_detected",
                {
                    "faces": [face.to_dict() for face in faces],
                    "overlays": overlays_for_faces(faces),
                },
                to=session_id,
            )

        def on_event(event: AccessEvent) -> None:
            socketio.emit("access_granted", {"event": event.to_dict()}, to=session_id)

        session.subscribe_faces(on_faces)
        session.subscribe_events(on_event)
        return session

    @socketio.on("connect")
    def handle_connect(auth: Optional[dict[str, Any]] = None) -> None:
        logger.info(f"WebSocket client connected: {request.sid}")
        emit("connected", {"status": "ok", "session_id": request.sid})

    @socketio.on("disconnect")
    def handle_disconnect(*args: Any) -> None:
        session_id = request.sid
        logger.info(f"WebSocket client disconnected: {session_id}")
        session = sessions.remove(session_id)
        if session is not None:
            loop.run(session.close())

    @socketio.on("start_detection")
    def handle_start_detection(data: Optional[dict[str, Any]] = None) -> None:
        """Start a detection session fed by frames from this client."""
        session_id = request.sid
        data = data or {}

        try:
            interval_ms = int(data.get("interval_ms", runtime.detection.interval_ms))
            validate_interval_ms(interval_ms)
        except (TypeError, ValueError, ValidationError) as e:
            emit("detection_error", {"error": f"Invalid interval: {e}"})
            return

        session = sessions.get_or_create(session_id, lambda: _create_session(session_id))

        frame = data.get("frame")
        if frame:
            try:
                session.capture.push(frame, device_id=data.get("device_id"))
            except ValidationError as e:
                emit("detection_error", {"error": str(e)})
                return

        loop.start()
        loop.call(session.start, interval_ms)
        logger.info(f"Detection started for session {session_id}")
        # A repeated start leaves the running cadence untouched; report the one in effect.
        emit("detection_started", {"session_id": session_id, "interval_ms": session.interval_ms})

    @socketio.on("frame")
    def handle_frame(data: Optional[dict[str, Any]] = None) -> None:
        """Store the client's latest camera frame for the next tick."""
        session = _get_session(request.sid)
        if session is None:
            return

        data = data or {}
        try:
            session.capture.push(data.get("frame", ""), device_id=data.get("device_id"))
        except ValidationError as e:
            emit("detection_error", {"error": str(e)})

    @socketio.on("stop_detection")
    def handle_stop_detection(*args: Any) -> None:
        session = _get_session(request.sid)
        if session is not None:
            loop.call(session.stop)
        emit("detection_stopped", {"status": "ok"})
