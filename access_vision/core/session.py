"""Detection sessions: one controller, one reconciler, one cooldown map."""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from access_vision.config import DEFAULT_COOLDOWN_MS, DEFAULT_INTERVAL_MS
from access_vision.core.capture import CaptureSource
from access_vision.core.controller import DetectionLoopController
from access_vision.core.exceptions import SessionNotFoundError
from access_vision.core.gateway import RosterLogGateway
from access_vision.core.logger import get_logger, get_session_logger
from access_vision.core.overlay import overlays_for_faces
from access_vision.core.reconciler import AccessEventReconciler, epoch_millis
from access_vision.core.recognition_client import RecognitionClient
from access_vision.core.types import AccessEvent, DetectedFace, RosterEntry

logger = get_logger("session")

EventCallback = Callable[[AccessEvent], None]


class DetectionSession:
    """Wires the detection loop to access-event reconciliation.

    The roster is re-read from the gateway on every cycle; the snapshot used
    for a cycle also supplies names and person types to the reconciler. The
    cooldown map lives exactly as long as one start/stop run.
    """

    def __init__(
        self,
        session_id: str,
        client: RecognitionClient,
        gateway: RosterLogGateway,
        capture: CaptureSource,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        """Initialize a session.

        Args:
            session_id: Identifier (e.g. Socket.IO sid).
            client: Recognition client.
            gateway: Roster source and access log sink.
            capture: Frame source for this session.
            interval_ms: Detection tick interval.
            cooldown_ms: Per-person access event cooldown.
            clock: Epoch-millis clock for the reconciler.
        """
        self.session_id = session_id
        self._log = get_session_logger("session", session_id)
        self.gateway = gateway
        self.capture = capture
        self.interval_ms = interval_ms
        self.controller = DetectionLoopController(client)
        self.reconciler = AccessEventReconciler(gateway, cooldown_ms=cooldown_ms, clock=clock)
        self._roster: dict[str, RosterEntry] = {}
        self._event_subscribers: list[EventCallback] = []
        self.controller.subscribe(self._on_faces)

    @property
    def is_running(self) -> bool:
        return self.controller.is_running

    @property
    def faces(self) -> tuple[DetectedFace, ...]:
        return self.controller.detections

    def subscribe_faces(
        self, callback: Callable[[tuple[DetectedFace, ...]], None]
    ) -> Callable[[], None]:
        """Observe every published detection set (empty on stop)."""
        return self.controller.subscribe(callback)

    def subscribe_events(self, callback: EventCallback) -> Callable[[], None]:
        """Observe every access event as it is dispatched to the gateway."""
        self._event_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._event_subscribers:
                self._event_subscribers.remove(callback)

        return unsubscribe

    def start(self, interval_ms: Optional[int] = None) -> None:
        """Start detection. Must be called on the event loop.

        A no-op while already running; the interval in effect is kept.
        """
        if self.controller.is_running:
            self._log.debug("start() ignored: session already running")
            return
        interval = self.interval_ms if interval_ms is None else interval_ms
        self.controller.start(self.capture, self._read_roster, interval)
        self.interval_ms = interval

    def stop(self) -> None:
        """Stop detection and discard the cooldown map."""
        if not self.controller.is_running:
            return
        self.controller.stop()
        self.reconciler.reset()
        self._log.info("Detection stopped, cooldown map cleared")

    async def close(self) -> None:
        """Stop, then wait for the outstanding cycle and pending log writes."""
        self.stop()
        await self.controller.wait_for_cycle()
        await self.reconciler.drain()
        self.capture.close()

    def _read_roster(self) -> list[RosterEntry]:
        roster = self.gateway.list_enrollable()
        self._roster = {entry.id: entry for entry in roster}
        return roster

    def _on_faces(self, faces: tuple[DetectedFace, ...]) -> None:
        if not faces or not self.controller.is_running:
            return
        events = self.reconciler.process(faces, roster=self._roster)
        for event in events:
            for callback in list(self._event_subscribers):
                try:
                    callback(event)
                except Exception as e:
                    self._log.error(f"Access event subscriber failed: {e}", exc_info=True)

    def status(self) -> dict[str, Any]:
        """Return a JSON-ready snapshot of this session."""
        controller = self.controller
        return {
            "session_id": self.session_id,
            "state": controller.state.value,
            "interval_ms": self.interval_ms,
            "cooldown_ms": self.reconciler.cooldown_ms,
            "device_id": self.capture.device_id,
            "in_flight": controller.in_flight,
            "cycles_issued": controller.cycles_issued,
            "ticks_skipped": controller.ticks_skipped,
            "failures": controller.failures,
            "last_error": controller.last_error,
            "events_logged": self.reconciler.events_logged,
            "writes_dropped": self.reconciler.writes_dropped,
            "faces": [face.to_dict() for face in self.faces],
            "overlays": overlays_for_faces(self.faces),
        }


class SessionManager:
    """Thread-safe registry of detection sessions.

    Keeps per-client sessions out of module globals so several dashboards (or
    tests) can run independent sessions side by side.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, DetectionSession] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self, session_id: str, factory: Callable[[], DetectionSession]
    ) -> DetectionSession:
        """Return the session for ``session_id``, creating it with ``factory``."""
        with self._lock:
            if session_id not in self._sessions:
                logger.debug(f"Creating detection session: {session_id}")
                self._sessions[session_id] = factory()
            return self._sessions[session_id]

    def get(self, session_id: str) -> DetectionSession:
        """Return an existing session.

        Raises:
            SessionNotFoundError: If no such session exists.
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def remove(self, session_id: str) -> Optional[DetectionSession]:
        """Forget a session and return it (the caller closes it)."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug(f"Removed detection session: {session_id}")
        return session

    def all(self) -> list[DetectionSession]:
        with self._lock:
            return list(self._sessions.values())

    def clear_all(self) -> list[DetectionSession]:
        """Forget every session and return them."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        logger.info("Cleared all detection sessions")
        return sessions

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
