"""Roster/log gateway interface and an in-memory implementation."""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from access_vision.core.exceptions import GatewayError
from access_vision.core.types import AccessEvent, RosterEntry


class RosterLogGateway(ABC):
    """Supplies the enrollable roster and persists access events."""

    @abstractmethod
    def list_enrollable(self) -> list[RosterEntry]:
        """Return active identities that have facial data."""

    @abstractmethod
    async def append_access_event(self, event: AccessEvent) -> None:
        """Persist one access event.

        Raises:
            GatewayError: If the write fails.
        """

    @abstractmethod
    def recent_access_events(self, limit: int = 50) -> list[AccessEvent]:
        """Return the newest access events first."""

    def health(self) -> dict[str, Any]:
        """Extra details for the health endpoint."""
        return {}

    def close(self) -> None:
        """Release held resources."""


@dataclass
class Person:
    """A person record as the in-memory gateway stores it."""

    id: str
    first_name: str
    last_name: str
    person_type: str = "student"
    has_facial_data: bool = False
    active: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_enrollable(self) -> bool:
        return self.active and self.has_facial_data


class InMemoryGateway(RosterLogGateway):
    """Process-local gateway for tests, demos and dry runs.

    Set ``fail_writes`` to make every append raise ``GatewayError``.
    """

    def __init__(self, people: list[Person] | None = None) -> None:
        self._people: dict[str, Person] = {p.id: p for p in people or []}
        self._events: list[AccessEvent] = []
        self._lock = threading.Lock()
        self.fail_writes = False
        self.roster_reads = 0

    def upsert_person(self, person: Person) -> None:
        with self._lock:
            self._people[person.id] = person

    def remove_person(self, person_id: str) -> None:
        with self._lock:
            self._people.pop(person_id, None)

    def list_enrollable(self) -> list[RosterEntry]:
        with self._lock:
            self.roster_reads += 1
            return [
                RosterEntry(id=p.id, display_name=p.display_name, person_type=p.person_type)
                for p in self._people.values()
                if p.is_enrollable
            ]

    async def append_access_event(self, event: AccessEvent) -> None:
        if self.fail_writes:
            raise GatewayError("access log write rejected")
        with self._lock:
            self._events.append(event)

    def recent_access_events(self, limit: int = 50) -> list[AccessEvent]:
        with self._lock:
            return list(reversed(self._events))[:limit]

    @property
    def events(self) -> list[AccessEvent]:
        with self._lock:
            return list(self._events)
