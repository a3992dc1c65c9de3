"""Detection loop controller: fixed-cadence capture -> recognize -> publish."""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Iterable, Optional

from access_vision.config import DEFAULT_INTERVAL_MS
from access_vision.core.capture import CaptureSource
from access_vision.core.logger import get_logger
from access_vision.core.recognition_client import RecognitionClient
from access_vision.core.types import DetectedFace, RosterEntry
from access_vision.core.validation import validate_interval_ms

logger = get_logger("controller")

FacesCallback = Callable[[tuple[DetectedFace, ...]], None]
RosterProvider = Callable[[], Iterable[RosterEntry]]


class ControllerState(Enum):
    """Externally visible controller states."""

    IDLE = "idle"
    RUNNING = "running"


class DetectionLoopController:
    """Runs detection cycles on an asyncio loop, one recognition call at a time.

    Each tick either issues a cycle or, when the previous call is still
    outstanding, is dropped. Since at most one call is ever in flight, results
    are applied in issue order without any sequencing beyond the guard.

    :meth:`stop` does not abort an outstanding call; its result is discarded on
    arrival. A generation counter, bumped on every stop, ties each cycle to the
    run that issued it, so a late result from a previous run is discarded even
    if the controller was restarted in the meantime.
    """

    def __init__(self, client: RecognitionClient) -> None:
        self.client = client
        self._state = ControllerState.IDLE
        self._detections: tuple[DetectedFace, ...] = ()
        self._subscribers: list[FacesCallback] = []
        self._capture: Optional[CaptureSource] = None
        self._roster_provider: Optional[RosterProvider] = None
        self._interval_ms = DEFAULT_INTERVAL_MS
        self._timer: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._in_flight = False
        self._generation = 0

        self.cycles_issued = 0
        self.ticks_skipped = 0
        self.failures = 0
        self.last_error: Optional[str] = None

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ControllerState.RUNNING

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def detections(self) -> tuple[DetectedFace, ...]:
        """Latest successfully resolved detection set."""
        return self._detections

    def subscribe(self, callback: FacesCallback) -> Callable[[], None]:
        """Register a callback for every published detection set.

        Returns:
            A function that removes the callback.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def start(
        self,
        capture: CaptureSource,
        roster: RosterProvider,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        """Idle -> Running. Issues one cycle now, then one per interval.

        A no-op while already running. Must be called on the event loop.

        Args:
            capture: Frame source, read once per cycle.
            roster: Called every cycle, in a worker thread, for the current
                roster snapshot.
            interval_ms: Tick interval in milliseconds.

        Raises:
            ValidationError: If the interval is not a positive integer.
            CameraUnavailableError: If the capture source cannot be opened.
        """
        if self.is_running:
            logger.debug("start() ignored: detection already running")
            return

        validate_interval_ms(interval_ms)
        loop = asyncio.get_running_loop()
        capture.open()

        self._capture = capture
        self._roster_provider = roster
        self._interval_ms = interval_ms
        self._state = ControllerState.RUNNING
        self.last_error = None
        logger.info(f"Detection started (interval={interval_ms}ms)")

        self._tick()
        self._timer = loop.create_task(self._schedule(self._generation))

    def stop(self) -> None:
        """Running -> Idle. Cancels the timer and clears the published set.

        A no-op while idle. Safe to call from a subscriber callback.
        """
        if not self.is_running:
            return

        self._state = ControllerState.IDLE
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._in_flight = False
        logger.info("Detection stopped")
        self._publish(())

    async def wait_for_cycle(self) -> None:
        """Wait until the most recently issued cycle has finished."""
        task = self._cycle_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def _schedule(self, generation: int) -> None:
        interval_s = self._interval_ms / 1000.0
        while generation == self._generation:
            await asyncio.sleep(interval_s)
            if generation != self._generation:
                break
            self._tick()

    def _tick(self) -> None:
        if self._in_flight:
            self.ticks_skipped += 1
            logger.debug("Tick skipped: recognition call still in flight")
            return

        self._in_flight = True
        self.cycles_issued += 1
        loop = asyncio.get_running_loop()
        self._cycle_task = loop.create_task(self._run_cycle(self._generation))

    async def _run_cycle(self, generation: int) -> None:
        try:
            # Camera reads and roster queries block; keep them off the loop.
            frame = await asyncio.to_thread(self._capture.capture_frame) if self._capture else None
            if frame is None:
                logger.debug("No frame available, skipping cycle")
                return

            roster = await asyncio.to_thread(self._read_roster)
            result = await self.client.detect(frame, roster)

            if generation != self._generation or not self.is_running:
                logger.debug("Discarding detection result from a stopped run")
                return

            self._publish(result.faces)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.warning(f"Detection cycle failed: {e}")
        finally:
            if generation == self._generation:
                self._in_flight = False

    def _read_roster(self) -> list[RosterEntry]:
        if self._roster_provider is None:
            return []
        return list(self._roster_provider())

    def _publish(self, faces: tuple[DetectedFace, ...]) -> None:
        self._detections = tuple(faces)
        for callback in list(self._subscribers):
            try:
                callback(self._detections)
            except Exception as e:
                logger.error(f"Detection subscriber failed: {e}", exc_info=True)
