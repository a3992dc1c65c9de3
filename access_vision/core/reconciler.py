"""Turn noisy, repeating detections into one access event per person per cooldown."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from access_vision.config import DEFAULT_COOLDOWN_MS
from access_vision.core.gateway import RosterLogGateway
from access_vision.core.logger import get_logger
from access_vision.core.types import AccessEvent, CooldownMap, DetectedFace, RosterEntry
from access_vision.core.validation import validate_cooldown_ms

logger = get_logger("reconciler")

COOLDOWN_MS = DEFAULT_COOLDOWN_MS


def epoch_millis() -> int:
    return int(time.time() * 1000)


def reconcile(
    faces: Iterable[DetectedFace],
    cooldown_map: CooldownMap,
    now_millis: int,
    *,
    roster: Optional[Mapping[str, RosterEntry]] = None,
    cooldown_ms: int = COOLDOWN_MS,
) -> list[AccessEvent]:
    """Decide which registered faces are new access events.

    A registered face yields an event when its person has no cooldown entry or
    the last event is more than ``cooldown_ms`` old; the entry is then set to
    ``now_millis``. Cooldown is keyed by person id, so two faces of the same
    person in one frame produce a single event. Unregistered faces never do.

    When ``roster`` is given, the person's display name and type come from it,
    and a person missing from it is skipped without touching the cooldown map.

    Args:
        faces: Latest published detection set.
        cooldown_map: Per-session map, updated in place.
        now_millis: Current time in epoch milliseconds.
        roster: Optional roster snapshot keyed by person id.
        cooldown_ms: Cooldown window.

    Returns:
        Events to log, in face order.
    """
    events: list[AccessEvent] = []

    for face in faces:
        if not face.is_registered or face.matched_person_id is None:
            continue

        person_id = face.matched_person_id
        person_name = face.matched_person_name or person_id
        person_type = None

        if roster is not None:
            entry = roster.get(person_id)
            if entry is None:
                logger.debug(f"Matched person {person_id} is no longer enrollable")
                continue
            person_name = entry.display_name
            person_type = entry.person_type

        last_logged = cooldown_map.get(person_id)
        if last_logged is not None and now_millis - last_logged <= cooldown_ms:
            continue

        cooldown_map[person_id] = now_millis
        events.append(
            AccessEvent(
                person_id=person_id,
                person_name=person_name,
                person_type=person_type,
                timestamp=datetime.fromtimestamp(now_millis / 1000, tz=timezone.utc),
            )
        )

    return events


class AccessEventReconciler:
    """Owns one session's cooldown map and hands events to the gateway.

    Writes are fire-and-forget: a failed write is logged and dropped, and the
    cooldown entry stays spent.
    """

    def __init__(
        self,
        gateway: RosterLogGateway,
        cooldown_ms: int = COOLDOWN_MS,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        validate_cooldown_ms(cooldown_ms)
        self.gateway = gateway
        self.cooldown_ms = cooldown_ms
        self._clock = clock
        self._cooldown: CooldownMap = {}
        self._pending: set[asyncio.Task] = set()
        self.events_logged = 0
        self.writes_dropped = 0

    @property
    def cooldown_map(self) -> CooldownMap:
        return dict(self._cooldown)

    def process(
        self,
        faces: Iterable[DetectedFace],
        roster: Optional[Mapping[str, RosterEntry]] = None,
    ) -> list[AccessEvent]:
        """Reconcile a detection set and dispatch the resulting writes.

        Must be called from a running event loop.
        """
        events = reconcile(
            faces,
            self._cooldown,
            self._clock(),
            roster=roster,
            cooldown_ms=self.cooldown_ms,
        )
        if not events:
            return events

        loop = asyncio.get_running_loop()
        for event in events:
            logger.info(f"Access granted: {event.person_name} ({event.person_id})")
            task = loop.create_task(self._write(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return events

    async def _write(self, event: AccessEvent) -> None:
        try:
            await self.gateway.append_access_event(event)
            self.events_logged += 1
        except Exception as e:
            self.writes_dropped += 1
            logger.warning(f"Dropped access event for {event.person_id}: {e}")

    def reset(self) -> None:
        """Forget every cooldown entry (session stop)."""
        self._cooldown.clear()

    async def drain(self) -> None:
        """Wait for every dispatched write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
